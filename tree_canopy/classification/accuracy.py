from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import numpy as np

from ..errors import EmptyTestSetError


def _safe_divide(numerator: float, denominator: float) -> Optional[float]:
    if denominator == 0:
        return None
    return float(numerator) / float(denominator)


@dataclass(frozen=True, eq=False)
class ConfusionMatrix:
    """Actual (rows) by predicted (columns) counts over a fixed label order."""

    labels: tuple
    matrix: np.ndarray

    @property
    def total(self) -> int:
        return int(self.matrix.sum())

    def accuracy(self) -> float:
        return float(np.trace(self.matrix)) / self.total

    def producers_accuracy(self) -> Dict[int, Optional[float]]:
        """Per-class recall: correct / actual count of the class."""
        row_sums = self.matrix.sum(axis=1)
        return {
            lbl: _safe_divide(self.matrix[i, i], row_sums[i])
            for i, lbl in enumerate(self.labels)
        }

    def consumers_accuracy(self) -> Dict[int, Optional[float]]:
        """Per-class precision: correct / predicted count of the class."""
        col_sums = self.matrix.sum(axis=0)
        return {
            lbl: _safe_divide(self.matrix[i, i], col_sums[i])
            for i, lbl in enumerate(self.labels)
        }

    def kappa(self) -> Optional[float]:
        total = self.total
        observed = self.accuracy()
        expected = float((self.matrix.sum(axis=0) * self.matrix.sum(axis=1)).sum()) / total**2
        if expected == 1:
            return None
        return (observed - expected) / (1 - expected)

    def to_dict(self) -> Dict[str, object]:
        return {
            "classes": [int(c) for c in self.labels],
            "confusion_matrix": self.matrix.tolist(),
            "overall_accuracy": self.accuracy(),
            "kappa": self.kappa(),
            "producer_accuracy": {str(k): v for k, v in self.producers_accuracy().items()},
            "user_accuracy": {str(k): v for k, v in self.consumers_accuracy().items()},
        }


def error_matrix(actual, predicted, labels: Sequence[int]) -> ConfusionMatrix:
    """Build the confusion matrix of ``actual`` vs ``predicted`` labels.

    Every label in ``labels`` gets a row and a column, even when its counts
    are all zero.

    Raises
    ------
    EmptyTestSetError
        When there is nothing to evaluate.
    ValueError
        When a label is not in ``labels`` (this includes missing predictions).
    """
    actual = np.asarray(actual, dtype=float).ravel()
    predicted = np.asarray(predicted, dtype=float).ravel()
    if actual.shape != predicted.shape:
        raise ValueError(f"{actual.size} actual labels but {predicted.size} predictions")
    if actual.size == 0:
        raise EmptyTestSetError("Test set is empty; accuracy is undefined")

    class_ids = sorted(int(c) for c in labels)
    class_to_index = {cls: idx for idx, cls in enumerate(class_ids)}
    for name, values in (("actual", actual), ("predicted", predicted)):
        unknown = sorted({v for v in np.unique(values).tolist() if v not in class_to_index})
        if unknown:
            raise ValueError(f"{name} labels {unknown} are outside the class set {class_ids}")

    matrix = np.zeros((len(class_ids), len(class_ids)), dtype=int)
    rows = np.array([class_to_index[int(v)] for v in actual])
    cols = np.array([class_to_index[int(v)] for v in predicted])
    np.add.at(matrix, (rows, cols), 1)
    return ConfusionMatrix(labels=tuple(class_ids), matrix=matrix)
