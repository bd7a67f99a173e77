from __future__ import annotations

from typing import Literal

from mipool.utils.checks import beartype
from mipool.utils.errors import OperationNotFoundError
from mipool.utils.metadata import ComponentMetadata, resolve_component_metadata

from .base import FittedModel, ImputationMethod, draw_marginal
from .design import DesignMatrix, build_design, dependent_columns
from .logreg import LogisticRegressionImputation
from .passive import NoImputation, PassiveDerivation
from .pmm import PredictiveMeanMatching, match_donors
from .polyreg import MultinomialImputation, draw_categorical

MethodKind = Literal["pmm", "logreg", "polyreg", "passive", "none"]
MODEL_METHODS: tuple[MethodKind, ...] = ("pmm", "logreg", "polyreg")

_METHODS: dict[str, type] = {
    "pmm": PredictiveMeanMatching,
    "logreg": LogisticRegressionImputation,
    "polyreg": MultinomialImputation,
    "passive": PassiveDerivation,
    "none": NoImputation,
}


@beartype
def method_class(kind: str) -> type:
    """Resolve a method key to its implementing class."""

    try:
        return _METHODS[kind]
    except KeyError as exc:
        raise OperationNotFoundError(
            f"Unknown imputation method `{kind}`. Available: "
            + ", ".join(_METHODS)
            + "."
        ) from exc


@beartype
def model_method(kind: str) -> ImputationMethod:
    """Instantiate one of the model-based methods (`pmm`, `logreg`, `polyreg`)."""

    method = method_class(kind)()
    if not isinstance(method, ImputationMethod):
        raise OperationNotFoundError(f"Method `{kind}` does not fit a model.")
    return method


@beartype
def list_imputation_methods() -> tuple[ComponentMetadata, ...]:
    """Return catalog metadata for every available method."""

    return tuple(resolve_component_metadata(cls) for cls in _METHODS.values())


__all__ = [
    "DesignMatrix",
    "FittedModel",
    "ImputationMethod",
    "LogisticRegressionImputation",
    "MODEL_METHODS",
    "MethodKind",
    "MultinomialImputation",
    "NoImputation",
    "PassiveDerivation",
    "PredictiveMeanMatching",
    "build_design",
    "dependent_columns",
    "draw_categorical",
    "draw_marginal",
    "list_imputation_methods",
    "match_donors",
    "method_class",
    "model_method",
]
