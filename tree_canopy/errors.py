"""Exceptions raised by the land-cover workflow."""


class WorkflowError(Exception):
    """Base class for every error raised by :mod:`tree_canopy`."""


class ConfigError(WorkflowError, ValueError):
    """The run configuration is missing a key or holds an invalid value."""


class MissingBandError(WorkflowError, KeyError):
    """A band referenced by name is not present in the stack."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the message readable.
        return str(self.args[0]) if self.args else ""


class QualityMaskError(WorkflowError, ValueError):
    """A QA bit position is undefined or out of range."""


class EmptyCollectionError(WorkflowError):
    """No scene is left after filtering, so there is no data for the period."""


class ExpressionError(WorkflowError, ValueError):
    """A band-math expression uses unsupported syntax or unbound names."""


class RegionNotFoundError(WorkflowError, LookupError):
    """The region selector matched no feature."""


class TrainingDataError(WorkflowError, ValueError):
    """Training samples are empty, unlabeled or carry missing values."""


class EmptyTestSetError(WorkflowError, ValueError):
    """Accuracy is undefined because the test partition has no rows."""


class ResourceBudgetError(WorkflowError):
    """A zonal reduction exceeds ``max_pixels`` and best effort is disabled."""


class ExportError(WorkflowError):
    """Writing a result table failed."""
