"""Run summaries written to the console or to a logger."""

from __future__ import annotations

import json
import logging
import sys
from abc import ABC, abstractmethod
from typing import Mapping, Optional, TextIO

from ..classification.accuracy import ConfusionMatrix


def format_confusion_matrix(cm: ConfusionMatrix, names: Optional[Mapping[int, str]] = None) -> str:
    """Render actual (rows) by predicted (columns) counts as a text table."""
    names = names or {}
    headers = [str(names.get(c, c)) for c in cm.labels]
    width = max([len(h) for h in headers] + [len(str(cm.matrix.max())), 6])
    lines = [" " * width + " | " + " ".join(h.rjust(width) for h in headers)]
    lines.append("-" * len(lines[0]))
    for header, row in zip(headers, cm.matrix):
        lines.append(header.rjust(width) + " | " + " ".join(str(v).rjust(width) for v in row))
    return "\n".join(lines)


def _render(value) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, default=str)


class Reporter(ABC):
    """Output port for the run summary."""

    @abstractmethod
    def section(self, title: str, value) -> None:
        """Report one titled value."""

    @abstractmethod
    def error(self, message: str) -> None:
        """Report a failure that did not stop the run."""

    def confusion_matrix(self, cm: ConfusionMatrix, names: Optional[Mapping[int, str]] = None) -> None:
        self.section("Confusion Matrix:", format_confusion_matrix(cm, names))
        self.section("Overall Accuracy:", f"{cm.accuracy():.4f}")


class ConsoleReporter(Reporter):
    def __init__(self, stream: TextIO | None = None):
        self.stream = stream

    def section(self, title, value):
        print(title, _render(value), file=self.stream or sys.stdout)

    def error(self, message):
        print(f"ERROR: {message}", file=self.stream or sys.stderr)


class LoggingReporter(Reporter):
    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger("tree_canopy.report")

    def section(self, title, value):
        self.logger.info("%s %s", title, _render(value))

    def error(self, message):
        self.logger.error(message)
