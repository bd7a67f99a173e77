from __future__ import annotations

from collections import Counter
from dataclasses import dataclass

import numpy as np
import pandas as pd

from mipool.data import Dataset
from mipool.utils.checks import beartype

MissingnessPattern = frozenset[str]
PatternTable = dict[MissingnessPattern, int]


@beartype
@dataclass(frozen=True)
class MissingPairs:
    """Pairwise response-pattern counts.

    Rows index the target variable `j`, columns the predictor `k`:

    - `rr[j, k]`: both observed.
    - `rm[j, k]`: `j` observed, `k` missing.
    - `mr[j, k]`: `j` missing, `k` observed.
    - `mm[j, k]`: both missing.

    Every cell satisfies `rr + rm + mr + mm == n_cases`.
    """

    rr: pd.DataFrame
    rm: pd.DataFrame
    mr: pd.DataFrame
    mm: pd.DataFrame

    @property
    def n_cases(self) -> int:
        if self.rr.empty:
            return 0
        first = self.rr.columns[0]
        return int(
            self.rr.loc[first, first]
            + self.rm.loc[first, first]
            + self.mr.loc[first, first]
            + self.mm.loc[first, first]
        )


@beartype
@dataclass(frozen=True)
class MissingnessOverview:
    """Dataset-level missingness proportions.

    Attributes:
        n_cases (int): Number of cases.
        n_variables (int): Number of variables.
        missing_cells (int): Number of missing cells.
        cell_proportion (float): Share of cells that are missing.
        variable_proportion (float): Share of variables with any missing cell.
        case_proportion (float): Share of cases with any missing cell.
    """

    n_cases: int
    n_variables: int
    missing_cells: int
    cell_proportion: float
    variable_proportion: float
    case_proportion: float


@beartype
@dataclass(frozen=True)
class MissingnessReport:
    """Everything the analyzer computes for one dataset."""

    overview: MissingnessOverview
    variables: pd.DataFrame
    cases: pd.DataFrame
    pairs: MissingPairs
    usable_cases: pd.DataFrame
    outbound: pd.DataFrame
    flux: pd.DataFrame
    patterns: PatternTable


@beartype
def response_indicators(data: Dataset | pd.DataFrame) -> pd.DataFrame:
    """Return a 0/1 frame where 1 marks an observed cell."""

    frame = data.to_frame() if isinstance(data, Dataset) else data
    return frame.notna().astype("int64")


@beartype
def variable_missingness(data: Dataset | pd.DataFrame) -> pd.DataFrame:
    """Per-variable missing count and proportion, in column order."""

    missing = 1 - response_indicators(data)
    n_cases = len(missing)
    counts = missing.sum(axis=0)
    return pd.DataFrame(
        {
            "missing": counts.astype("int64"),
            "proportion": counts / n_cases if n_cases else counts * np.nan,
        }
    )


@beartype
def case_missingness(data: Dataset | pd.DataFrame) -> pd.DataFrame:
    """Per-case missing count and proportion, indexed by case identifier."""

    missing = 1 - response_indicators(data)
    n_variables = missing.shape[1]
    counts = missing.sum(axis=1)
    return pd.DataFrame(
        {
            "missing": counts.astype("int64"),
            "proportion": counts / n_variables if n_variables else counts * np.nan,
        }
    )


@beartype
def overall_missingness(data: Dataset | pd.DataFrame) -> MissingnessOverview:
    missing = 1 - response_indicators(data)
    n_cases, n_variables = missing.shape
    missing_cells = int(missing.to_numpy().sum())
    total = n_cases * n_variables
    return MissingnessOverview(
        n_cases=n_cases,
        n_variables=n_variables,
        missing_cells=missing_cells,
        cell_proportion=missing_cells / total if total else 0.0,
        variable_proportion=(
            float((missing.sum(axis=0) > 0).mean()) if n_variables else 0.0
        ),
        case_proportion=float((missing.sum(axis=1) > 0).mean()) if n_cases else 0.0,
    )


@beartype
def missing_pairs(data: Dataset | pd.DataFrame) -> MissingPairs:
    """Count the four response patterns for every ordered variable pair."""

    indicators = response_indicators(data)
    names = list(indicators.columns)
    observed = indicators.to_numpy()
    missing = 1 - observed

    def _frame(values: np.ndarray) -> pd.DataFrame:
        return pd.DataFrame(values.astype("int64"), index=names, columns=names)

    return MissingPairs(
        rr=_frame(observed.T @ observed),
        rm=_frame(observed.T @ missing),
        mr=_frame(missing.T @ observed),
        mm=_frame(missing.T @ missing),
    )


@beartype
def usable_cases(data: Dataset | pd.DataFrame | MissingPairs) -> pd.DataFrame:
    """Proportion of usable cases, `mr / (mr + mm)`.

    Entry `[target, predictor]` is the share of cases missing `target` for
    which `predictor` is observed. Undefined (`NaN`) when `target` is fully
    observed.
    """

    pairs = data if isinstance(data, MissingPairs) else missing_pairs(data)
    return _ratio(pairs.mr, pairs.mr + pairs.mm)


@beartype
def outbound(data: Dataset | pd.DataFrame | MissingPairs) -> pd.DataFrame:
    """Outbound statistic, rows = target and columns = predictor.

    Entry `[target, predictor]` is the share of cases observing `predictor`
    in which `target` is missing, i.e. `rm / (rm + rr)` taken from the
    predictor's row.
    """

    pairs = data if isinstance(data, MissingPairs) else missing_pairs(data)
    return _ratio(pairs.rm.T, pairs.rm.T + pairs.rr.T)


@beartype
def flux(data: Dataset | pd.DataFrame) -> pd.DataFrame:
    """Per-variable influx and outflux with their companion statistics.

    Columns:
        - `pobs`: proportion observed.
        - `influx`: missing-`j` / observed-`k` pairs over all observed cells.
        - `outflux`: observed-`j` / missing-`k` pairs over all missing cells.
        - `ainb`: average proportion of usable cases over the other variables.
        - `aout`: average outbound proportion over the other variables.
        - `fico`: share of incomplete cases among cases observing `j`.
    """

    indicators = response_indicators(data)
    pairs = missing_pairs(data)
    names = list(indicators.columns)

    influx_den = (pairs.mr + pairs.rr).sum(axis=1)
    outflux_den = (pairs.rm + pairs.mm).sum(axis=1)
    influx = _ratio(pairs.mr.sum(axis=1), influx_den)
    outflux = _ratio(pairs.rm.sum(axis=1), outflux_den)

    off_diagonal = ~np.eye(len(names), dtype=bool)
    inbound = _ratio(pairs.mr, pairs.mr + pairs.mm).where(off_diagonal)
    outbound_rows = _ratio(pairs.rm, pairs.rm + pairs.rr).where(off_diagonal)
    others = max(len(names) - 1, 1)

    complete = indicators.all(axis=1).to_numpy()
    observed = indicators.to_numpy().astype(bool)
    observed_counts = observed.sum(axis=0)
    incomplete_observed = (observed & ~complete[:, None]).sum(axis=0)

    return pd.DataFrame(
        {
            "pobs": indicators.mean(axis=0),
            "influx": influx,
            "outflux": outflux,
            "ainb": inbound.sum(axis=1, min_count=1) / others,
            "aout": outbound_rows.sum(axis=1, min_count=1) / others,
            "fico": pd.Series(
                _safe_divide(incomplete_observed, observed_counts), index=names
            ),
        },
        index=names,
    )


@beartype
def case_patterns(data: Dataset | pd.DataFrame) -> pd.Series:
    """Missingness pattern (set of missing variable names) of every case."""

    indicators = response_indicators(data)
    names = np.asarray(indicators.columns)
    patterns = [
        frozenset(names[row == 0].tolist()) for row in indicators.to_numpy()
    ]
    return pd.Series(patterns, index=indicators.index, dtype=object)


@beartype
def pattern_table(data: Dataset | pd.DataFrame) -> PatternTable:
    """Count how often each missingness pattern occurs."""

    return dict(Counter(case_patterns(data)))


@beartype
def pattern_frame(data: Dataset | pd.DataFrame) -> pd.DataFrame:
    """Tabulate patterns as 1 (observed) / 0 (missing) rows with counts.

    Rows are ordered by number of missing variables, then by frequency.
    """

    indicators = response_indicators(data)
    names = list(indicators.columns)
    rows = [
        {
            **{name: int(name not in pattern) for name in names},
            "count": count,
            "n_missing": len(pattern),
        }
        for pattern, count in pattern_table(data).items()
    ]
    table = pd.DataFrame(rows, columns=[*names, "count", "n_missing"])
    return table.sort_values(
        ["n_missing", "count"], ascending=[True, False], kind="stable"
    ).reset_index(drop=True)


@beartype
def analyze_missingness(data: Dataset | pd.DataFrame) -> MissingnessReport:
    """Run every analyzer statistic over one dataset."""

    pairs = missing_pairs(data)
    return MissingnessReport(
        overview=overall_missingness(data),
        variables=variable_missingness(data),
        cases=case_missingness(data),
        pairs=pairs,
        usable_cases=usable_cases(pairs),
        outbound=outbound(pairs),
        flux=flux(data),
        patterns=pattern_table(data),
    )


def _ratio(
    numerator: pd.DataFrame | pd.Series,
    denominator: pd.DataFrame | pd.Series,
) -> pd.DataFrame | pd.Series:
    values = _safe_divide(numerator.to_numpy(), denominator.to_numpy())
    if isinstance(numerator, pd.DataFrame):
        return pd.DataFrame(values, index=numerator.index, columns=numerator.columns)
    return pd.Series(values, index=numerator.index)


def _safe_divide(numerator: np.ndarray, denominator: np.ndarray) -> np.ndarray:
    numerator = np.asarray(numerator, dtype="float64")
    denominator = np.asarray(denominator, dtype="float64")
    out = np.full(np.broadcast(numerator, denominator).shape, np.nan)
    np.divide(numerator, denominator, out=out, where=denominator != 0)
    return out
