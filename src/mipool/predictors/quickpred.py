from __future__ import annotations

import warnings
from collections.abc import Iterable

import numpy as np
import pandas as pd

from mipool.config import QuickpredConfig
from mipool.data import Dataset, DatasetSchema
from mipool.missingness import usable_cases
from mipool.utils.checks import beartype
from mipool.utils.errors import DataValidationError

from .matrix import PredictorMatrix


@beartype
def quickpred(
    dataset: Dataset,
    *,
    mincor: float | None = None,
    minpuc: float | None = None,
    include: Iterable[str] = (),
    exclude: Iterable[str] = (),
    config: QuickpredConfig | None = None,
) -> PredictorMatrix:
    """Select predictors per target from correlations and usable cases.

    A predictor enters the model of a target when the larger of two absolute
    pairwise correlations exceeds `mincor`: the correlation of the two
    variables' values and the correlation between the target's response
    indicator and the predictor's values. Pairs whose proportion of usable
    cases falls below `minpuc` are dropped afterwards.

    Role rules applied on top:
        - `exclude` removes a predictor column, `include` forces it in and wins
          when a name is in both lists.
        - `excluded` variables are never targets nor predictors.
        - passive variables are never predictors; targets that would use one
          get its formula inputs instead, minus any name in `exclude`. A
          passive row lists its inputs.
        - fully observed variables and predictor-only variables get an empty
          row, i.e. no model.

    Construction never fails on unsatisfiable thresholds: a target may end up
    with no predictors, which the imputer treats as a marginal draw.

    Args:
        dataset (Dataset): Ingested dataset.
        mincor (float | None): Correlation threshold. Defaults to config.
        minpuc (float | None): Usable-case threshold. Defaults to config.
        include (Iterable[str]): Predictors forced into every target row.
        exclude (Iterable[str]): Predictors removed from every target row.
        config (QuickpredConfig | None): Threshold defaults.

    Returns:
        PredictorMatrix: The realised predictor matrix.
    """

    settings = config or QuickpredConfig.from_mapping()
    overrides = {}
    if mincor is not None:
        overrides["mincor"] = mincor
    if minpuc is not None:
        overrides["minpuc"] = minpuc
    if overrides:
        settings = QuickpredConfig(
            mincor=overrides.get("mincor", settings.mincor),
            minpuc=overrides.get("minpuc", settings.minpuc),
        )

    schema = dataset.schema
    names = list(schema.names)
    include = _known_names(include, schema, label="include")
    exclude = _known_names(exclude, schema, label="exclude")

    numeric = numeric_codes(dataset)
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=RuntimeWarning)
        value_corr = _absolute(numeric.corr(min_periods=2))
    indicator_corr = _indicator_correlations(numeric)
    strongest = np.maximum(value_corr.to_numpy(), indicator_corr.to_numpy())
    selected = strongest > settings.mincor

    puc = usable_cases(dataset).to_numpy()
    with np.errstate(invalid="ignore"):
        selected &= ~(puc < settings.minpuc)

    positions = {name: index for index, name in enumerate(names)}
    for name in exclude:
        selected[:, positions[name]] = False
    for name in include:
        selected[:, positions[name]] = True

    return _apply_roles(
        selected,
        dataset=dataset,
        positions=positions,
        blocked=frozenset(exclude) - frozenset(include),
    )


@beartype
def full_predictor_matrix(dataset: Dataset) -> PredictorMatrix:
    """Every eligible variable predicts every imputed target.

    The same role rules as `quickpred` apply; only the correlation and
    usable-case screens are skipped.
    """

    names = dataset.names
    selected = np.ones((len(names), len(names)), dtype=bool)
    positions = {name: index for index, name in enumerate(names)}
    return _apply_roles(selected, dataset=dataset, positions=positions)


@beartype
def numeric_codes(dataset: Dataset) -> pd.DataFrame:
    """Continuous values as-is, discrete variables as level positions."""

    frame = dataset.to_frame()
    coded = {}
    for spec in dataset.schema.variables:
        column = frame[spec.name]
        if spec.type == "continuous":
            coded[spec.name] = column.astype("float64")
        else:
            mapping = {
                level: float(index) for index, level in enumerate(spec.levels or ())
            }
            coded[spec.name] = column.map(mapping).astype("float64")
    return pd.DataFrame(coded, index=frame.index)


def _apply_roles(
    selected: np.ndarray,
    *,
    dataset: Dataset,
    positions: dict[str, int],
    blocked: frozenset[str] = frozenset(),
) -> PredictorMatrix:
    schema = dataset.schema
    names = list(schema.names)
    np.fill_diagonal(selected, False)

    for spec in schema.variables:
        row = positions[spec.name]
        if (
            spec.role in ("excluded", "predictor")
            or dataset.missing_count(spec.name) == 0
        ):
            selected[row, :] = False
        if spec.role == "excluded":
            selected[:, row] = False

    passive = [name for name in names if schema[name].role == "passive"]
    for target in names:
        row = positions[target]
        if schema[target].role != "target":
            continue
        for name in passive:
            column = positions[name]
            if not selected[row, column]:
                continue
            selected[row, column] = False
            for input_name in _base_inputs(name, schema):
                if input_name != target and input_name not in blocked:
                    selected[row, positions[input_name]] = True

    for name in passive:
        selected[:, positions[name]] = False
    for name in passive:
        row = positions[name]
        selected[row, :] = False
        if dataset.missing_count(name) == 0:
            continue
        for input_name in _base_inputs(name, schema):
            selected[row, positions[input_name]] = True

    return PredictorMatrix(names, selected)


def _base_inputs(name: str, schema: DatasetSchema) -> tuple[str, ...]:
    """Non-passive variables a passive variable is ultimately derived from."""

    resolved: list[str] = []
    for input_name in schema.passive_inputs(name):
        if schema[input_name].role == "passive":
            resolved.extend(_base_inputs(input_name, schema))
        else:
            resolved.append(input_name)
    return tuple(dict.fromkeys(resolved))


def _indicator_correlations(numeric: pd.DataFrame) -> pd.DataFrame:
    names = list(numeric.columns)
    rows = {}
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=RuntimeWarning)
        for target in names:
            indicator = numeric[target].isna().astype("float64")
            if indicator.nunique() < 2:
                rows[target] = pd.Series(0.0, index=names)
                continue
            rows[target] = numeric.corrwith(indicator).abs()
    return pd.DataFrame(rows).T.reindex(index=names, columns=names).fillna(0.0)


def _absolute(corr: pd.DataFrame) -> pd.DataFrame:
    return corr.abs().fillna(0.0)


def _known_names(
    names: Iterable[str], schema: DatasetSchema, *, label: str
) -> tuple[str, ...]:
    resolved = tuple(dict.fromkeys(names))
    unknown = sorted(name for name in resolved if name not in schema)
    if unknown:
        raise DataValidationError(
            f"`{label}` references unknown variables: {', '.join(unknown)}."
        )
    return resolved
