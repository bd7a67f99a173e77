from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
import pandas as pd

from mipool.data import DatasetSchema
from mipool.utils.checks import beartype

_SCALE_TOLERANCE = 1e-10
_RANK_TOLERANCE = 1e-8


@beartype
@dataclass(frozen=True)
class DesignMatrix:
    """Numeric model matrix for a set of predictor variables.

    Attributes:
        values (np.ndarray): `(n_cases, n_columns)` float matrix, no intercept.
        columns (tuple[str, ...]): Column labels, `name` for continuous and
            binary predictors, `name[level]` for categorical dummies.
        sources (tuple[str, ...]): Predictor variable behind each column.
    """

    values: np.ndarray
    columns: tuple[str, ...]
    sources: tuple[str, ...]

    @property
    def n_columns(self) -> int:
        return len(self.columns)


@beartype
def build_design(
    data: pd.DataFrame,
    predictors: Sequence[str],
    schema: DatasetSchema,
) -> DesignMatrix:
    """Encode predictor columns: binary as 0/1, categorical as dummies."""

    blocks: list[np.ndarray] = []
    columns: list[str] = []
    sources: list[str] = []
    for name in predictors:
        spec = schema[name]
        column = data[name]
        if spec.type == "continuous":
            blocks.append(column.to_numpy(dtype="float64")[:, None])
            columns.append(name)
            sources.append(name)
            continue
        levels = spec.levels or ()
        if spec.type == "binary":
            success = levels[-1] if levels else None
            blocks.append((column == success).to_numpy(dtype="float64")[:, None])
            columns.append(name)
            sources.append(name)
            continue
        for level in levels[1:]:
            blocks.append((column == level).to_numpy(dtype="float64")[:, None])
            columns.append(f"{name}[{level}]")
            sources.append(name)

    values = np.hstack(blocks) if blocks else np.empty((len(data), 0))
    return DesignMatrix(values=values, columns=tuple(columns), sources=tuple(sources))


@beartype
def dependent_columns(values: np.ndarray) -> tuple[int, ...]:
    """Indices of columns that are constant or linearly dependent.

    Columns are screened left to right after standardising; a column is kept
    only when it raises the rank of the kept set, so the later of two
    collinear columns is the one reported.
    """

    if values.shape[1] == 0:
        return ()
    centred = values - values.mean(axis=0)
    scale = centred.std(axis=0)
    dependent: list[int] = []
    kept: list[int] = []
    for index in range(values.shape[1]):
        if scale[index] < _SCALE_TOLERANCE:
            dependent.append(index)
            continue
        candidate = centred[:, [*kept, index]] / scale[[*kept, index]]
        if np.linalg.matrix_rank(candidate, tol=_RANK_TOLERANCE * len(values)) == len(
            kept
        ) + 1:
            kept.append(index)
        else:
            dependent.append(index)
    return tuple(dependent)


def with_intercept(values: np.ndarray) -> np.ndarray:
    return np.hstack([np.ones((values.shape[0], 1)), values])
