from __future__ import annotations

from collections.abc import Sequence


class LibraryError(Exception):
    """Base error for library execution failures."""


class InputValidationError(LibraryError):
    """Raised when operation input parameters fail validation."""


class OperationNotFoundError(LibraryError):
    """Raised when an operation key is not registered."""


class DataValidationError(InputValidationError):
    """Raised when a dataset, its schema, or a run configuration is inconsistent.

    Always fatal: raised at ingestion or before the first chain starts.
    """


class PoolingError(LibraryError):
    """Raised when pooling preconditions are violated."""


class ModelFitError(LibraryError):
    """Raised by an imputation model whose fit is singular or separating.

    Attributes:
        offending (tuple[str, ...]): Predictor names the fit blames. Empty
            when the failure cannot be attributed to specific predictors.
    """

    def __init__(self, message: str, *, offending: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.offending = tuple(offending)


class ModelFitWarning(UserWarning):
    """Issued when a chain recovers from a `ModelFitError`."""


class ConvergenceWarning(UserWarning):
    """Issued by `check_convergence` when chains have not mixed."""
