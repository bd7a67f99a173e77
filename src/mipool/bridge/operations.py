from __future__ import annotations

import math
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass
from typing import Any

import numpy as np
import pandas as pd

from mipool.config import ImputationConfig, PoolingConfig, QuickpredConfig
from mipool.data import Dataset, infer_schema, schema_from_mapping
from mipool.imputation import ChainedEquationsImputer, list_imputation_methods
from mipool.missingness import analyze_missingness, pattern_frame
from mipool.pooling import pool_scalar, pool_vector, wald_test_d1
from mipool.predictors import PredictorMatrix, quickpred
from mipool.utils.coercion import as_bool, as_name_tuple
from mipool.utils.errors import InputValidationError, OperationNotFoundError

OperationHandler = Callable[[Mapping[str, Any]], dict[str, Any]]


@dataclass(frozen=True)
class BridgeOperation:
    """One JSON-callable entry point.

    Attributes:
        name (str): Dotted key, `<component>.<action>`.
        handler (OperationHandler): Maps request params to a JSON-ready result.
        description (str): One-line summary listed by `core.catalog`.
    """

    name: str
    handler: OperationHandler
    description: str


_OPERATIONS: dict[str, BridgeOperation] = {}


def _operation(
    name: str, description: str
) -> Callable[[OperationHandler], OperationHandler]:
    def register(handler: OperationHandler) -> OperationHandler:
        if name in _OPERATIONS:
            raise ValueError(f"Bridge operation registered twice: {name}")
        _OPERATIONS[name] = BridgeOperation(name, handler, description)
        return handler

    return register


def execute_operation(operation: str, params: Mapping[str, Any]) -> dict[str, Any]:
    """Execute one bridge operation with JSON-friendly output.

    Args:
        operation (str): Dotted operation key, e.g. `imputation.run`.
        params (Mapping[str, Any]): Request parameters.

    Returns:
        dict[str, Any]: Operation result.

    Raises:
        OperationNotFoundError: If no operation is registered under the key.
    """

    entry = _OPERATIONS.get(operation.strip())
    if entry is None:
        known = ", ".join(sorted(_OPERATIONS))
        raise OperationNotFoundError(
            f"Unknown operation `{operation}`; expected one of: {known}."
        )
    return entry.handler(params)


def list_operations() -> list[dict[str, str]]:
    return [
        {"name": name, "description": _OPERATIONS[name].description}
        for name in sorted(_OPERATIONS)
    ]


@_operation("core.catalog", "List bridge operations.")
def _op_catalog(params: Mapping[str, Any]) -> dict[str, Any]:
    _ = params
    return {"operations": list_operations()}


@_operation("imputation.methods.catalog", "List imputation methods.")
def _op_method_catalog(params: Mapping[str, Any]) -> dict[str, Any]:
    _ = params
    return {"methods": [asdict(item) for item in list_imputation_methods()]}


@_operation(
    "missingness.analyze",
    "Missingness proportions, pair counts, flux and patterns.",
)
def _op_analyze_missingness(params: Mapping[str, Any]) -> dict[str, Any]:
    dataset = _dataset_from_params(params)
    report = analyze_missingness(dataset)
    return {
        "overview": asdict(report.overview),
        "variables": _frame_to_mapping(report.variables),
        "usable_cases": _frame_to_mapping(report.usable_cases),
        "outbound": _frame_to_mapping(report.outbound),
        "flux": _frame_to_mapping(report.flux),
        "patterns": _records(pattern_frame(dataset)),
    }


@_operation("predictors.quickpred", "Select predictors per target from correlations.")
def _op_quickpred(params: Mapping[str, Any]) -> dict[str, Any]:
    dataset = _dataset_from_params(params)
    matrix = _quickpred_from_params(dataset, params)
    return _matrix_payload(matrix)


@_operation(
    "imputation.run", "Run chained-equations imputation and return long data."
)
def _op_impute(params: Mapping[str, Any]) -> dict[str, Any]:
    dataset = _dataset_from_params(params)
    config = ImputationConfig.from_mapping(_as_object(params, "config"))
    if "predictor_matrix" in params:
        matrix = _matrix_from_params(dataset, _as_object(params, "predictor_matrix"))
    else:
        matrix = _quickpred_from_params(dataset, params)
    visit = params.get("visit_sequence")
    if visit is not None and not isinstance(visit, str):
        visit = list(as_name_tuple(visit, field_name="visit_sequence"))

    result = ChainedEquationsImputer(config).impute(
        dataset,
        predictor_matrix=matrix,
        methods=_as_object(params, "methods") or None,
        visit_sequence=visit,
    )
    include_original = as_bool(
        params.get("include_original", False), field_name="include_original"
    )
    return {
        "m": result.m,
        "seed": result.seed,
        "iterations": list(result.iterations),
        "methods": result.methods.as_dict(),
        "visit_sequence": list(result.visit_sequence),
        "predictor_matrix": _matrix_payload(result.predictor_matrix),
        "long": _records(result.long(include_original=include_original)),
        "trace": _records(result.trace.to_frame()),
        "events": _records(result.trace.events_frame()),
    }


@_operation("pooling.pool", "Pool per-imputation estimates with Rubin's rules.")
def _op_pool(params: Mapping[str, Any]) -> dict[str, Any]:
    config = PoolingConfig.from_mapping(
        {key: params[key] for key in ("alpha", "dfcom") if key in params}
    )
    estimates = params.get("estimates")
    if not isinstance(estimates, list):
        raise InputValidationError("`estimates` must be a list.")

    if "covariances" in params:
        names = params.get("names")
        pooled = pool_vector(
            np.asarray(estimates, dtype="float64"),
            np.asarray(params["covariances"], dtype="float64"),
            names=as_name_tuple(names, field_name="names") if names else None,
            config=config,
        )
        payload: dict[str, Any] = {
            "components": {
                name: item.as_dict()
                for name, item in zip(pooled.names, pooled.components)
            },
        }
        if pooled.m > 1:
            payload["wald"] = wald_test_d1(pooled).as_dict()
        return payload

    variances = params.get("variances")
    if not isinstance(variances, list):
        raise InputValidationError("`variances` must be a list.")
    pooled = pool_scalar(
        [float(value) for value in estimates],
        [float(value) for value in variances],
        require_between=as_bool(
            params.get("require_between", False), field_name="require_between"
        ),
        config=config,
    )
    return pooled.as_dict()


def _dataset_from_params(params: Mapping[str, Any]) -> Dataset:
    raw = params.get("data")
    if isinstance(raw, list):
        frame = pd.DataFrame.from_records(raw)
    elif isinstance(raw, dict):
        frame = pd.DataFrame(raw)
    else:
        raise InputValidationError(
            "`data` must be a list of records or a mapping of columns."
        )
    schema_raw = params.get("schema")
    if schema_raw is None:
        schema = infer_schema(frame)
    elif isinstance(schema_raw, dict):
        schema = schema_from_mapping(schema_raw)
    else:
        raise InputValidationError("`schema` must be an object.")
    return Dataset.from_frame(frame, schema)


def _quickpred_from_params(
    dataset: Dataset, params: Mapping[str, Any]
) -> PredictorMatrix:
    options = _as_object(params, "quickpred")
    return quickpred(
        dataset,
        config=QuickpredConfig.from_mapping(
            {key: options[key] for key in ("mincor", "minpuc") if key in options}
        ),
        include=as_name_tuple(options.get("include"), field_name="include"),
        exclude=as_name_tuple(options.get("exclude"), field_name="exclude"),
    )


def _matrix_from_params(
    dataset: Dataset, raw: Mapping[str, Any]
) -> PredictorMatrix:
    matrix = PredictorMatrix(dataset.names)
    for target, predictors in raw.items():
        matrix = matrix.with_predictors(
            str(target), as_name_tuple(predictors, field_name=f"{target}")
        )
    return matrix


def _matrix_payload(matrix: PredictorMatrix) -> dict[str, Any]:
    return {
        "variables": list(matrix.names),
        "matrix": matrix.values.astype(int).tolist(),
        "predictors": {name: list(matrix.predictors_of(name)) for name in matrix.names},
    }


def _as_object(params: Mapping[str, Any], key: str) -> dict[str, Any]:
    value = params.get(key, {})
    if not isinstance(value, dict):
        raise InputValidationError(f"`{key}` must be an object.")
    return value


def _records(frame: pd.DataFrame) -> list[dict[str, Any]]:
    return [
        {str(key): _json_value(value) for key, value in row.items()}
        for row in frame.to_dict(orient="records")
    ]


def _frame_to_mapping(frame: pd.DataFrame) -> dict[str, dict[str, Any]]:
    return {
        str(index): {str(column): _json_value(value) for column, value in row.items()}
        for index, row in frame.to_dict(orient="index").items()
    }


def _json_value(value: Any) -> Any:
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, tuple):
        return list(value)
    return value

