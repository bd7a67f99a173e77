from __future__ import annotations

import pandas as pd

from mipool.data import PassiveFormula, evaluate_formula
from mipool.utils.checks import beartype
from mipool.utils.metadata import ComponentMetadata


@beartype
class PassiveDerivation:
    """Deterministic recomputation of a derived variable from its formula."""

    metadata = ComponentMetadata(
        name="passive",
        full_name="Passive Derivation",
        abstract_description=(
            "Recompute a derived variable from the current values of its inputs."
        ),
        supported_types=("continuous", "binary", "categorical"),
    )

    @beartype
    def derive(self, formula: PassiveFormula, data: pd.DataFrame) -> pd.Series:
        return evaluate_formula(formula, data)


@beartype
class NoImputation:
    """Leave a variable untouched; used for complete or excluded variables."""

    metadata = ComponentMetadata(
        name="none",
        full_name="No Imputation",
        abstract_description="Variable is never modelled nor modified.",
        supported_types=("continuous", "binary", "categorical"),
    )
