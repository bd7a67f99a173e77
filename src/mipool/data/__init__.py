from .dataset import CASE_ID_COLUMN, Dataset
from .formulas import (
    Aggregate,
    Arithmetic,
    Column,
    Constant,
    Cut,
    PassiveFormula,
    evaluate_formula,
    formula_inputs,
    parse_formula,
)
from .schema import (
    DatasetSchema,
    VariableRole,
    VariableSpec,
    VariableType,
    infer_schema,
    schema_from_mapping,
)

__all__ = [
    "Aggregate",
    "Arithmetic",
    "CASE_ID_COLUMN",
    "Column",
    "Constant",
    "Cut",
    "Dataset",
    "DatasetSchema",
    "PassiveFormula",
    "VariableRole",
    "VariableSpec",
    "VariableType",
    "evaluate_formula",
    "formula_inputs",
    "infer_schema",
    "parse_formula",
    "schema_from_mapping",
]
