from __future__ import annotations

import importlib
from typing import Any

from mipool.utils.errors import (
    ConvergenceWarning,
    DataValidationError,
    InputValidationError,
    LibraryError,
    ModelFitError,
    ModelFitWarning,
    OperationNotFoundError,
    PoolingError,
)

_LAZY_EXPORTS: dict[str, tuple[str, str]] = {
    "Dataset": ("mipool.data", "Dataset"),
    "DatasetSchema": ("mipool.data", "DatasetSchema"),
    "VariableSpec": ("mipool.data", "VariableSpec"),
    "infer_schema": ("mipool.data", "infer_schema"),
    "ImputationConfig": ("mipool.config", "ImputationConfig"),
    "PoolingConfig": ("mipool.config", "PoolingConfig"),
    "QuickpredConfig": ("mipool.config", "QuickpredConfig"),
    "analyze_missingness": ("mipool.missingness", "analyze_missingness"),
    "PredictorMatrix": ("mipool.predictors", "PredictorMatrix"),
    "quickpred": ("mipool.predictors", "quickpred"),
    "ChainedEquationsImputer": ("mipool.imputation", "ChainedEquationsImputer"),
    "ImputationResult": ("mipool.imputation", "ImputationResult"),
    "MethodRegistry": ("mipool.imputation", "MethodRegistry"),
    "VisitSequence": ("mipool.imputation", "VisitSequence"),
    "check_convergence": ("mipool.imputation", "check_convergence"),
    "list_imputation_methods": ("mipool.imputation", "list_imputation_methods"),
    "PooledEstimate": ("mipool.pooling", "PooledEstimate"),
    "pool_analyses": ("mipool.pooling", "pool_analyses"),
    "pool_scalar": ("mipool.pooling", "pool_scalar"),
    "pool_vector": ("mipool.pooling", "pool_vector"),
}

__all__ = [
    "ConvergenceWarning",
    "DataValidationError",
    "InputValidationError",
    "LibraryError",
    "ModelFitError",
    "ModelFitWarning",
    "OperationNotFoundError",
    "PoolingError",
    *_LAZY_EXPORTS,
]


def __getattr__(name: str) -> Any:
    target = _LAZY_EXPORTS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_path, symbol_name = target
    module = importlib.import_module(module_path)
    symbol = getattr(module, symbol_name)
    globals()[name] = symbol
    return symbol


def __dir__() -> list[str]:
    return sorted(set(globals()) | set(__all__))
