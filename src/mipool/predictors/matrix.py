from __future__ import annotations

from collections.abc import Iterable, Sequence

import numpy as np
import pandas as pd

from mipool.utils.checks import beartype
from mipool.utils.errors import DataValidationError


@beartype
class PredictorMatrix:
    """Immutable square relation `target -> predictors`.

    `matrix[target, predictor]` is true when `predictor` enters the imputation
    model of `target`. The diagonal is always false. Editing methods return a
    new matrix, so a matrix handed to an imputation run never changes under it.
    """

    def __init__(self, names: Sequence[str], values: np.ndarray | None = None) -> None:
        self._names = tuple(names)
        if len(set(self._names)) != len(self._names):
            raise DataValidationError("Predictor matrix names must be unique.")
        size = len(self._names)
        if values is None:
            matrix = np.zeros((size, size), dtype=bool)
        else:
            matrix = np.array(values, dtype=bool, copy=True)
            if matrix.shape != (size, size):
                raise DataValidationError(
                    f"Predictor matrix must be {size}x{size}, got {matrix.shape}."
                )
        if matrix.diagonal().any():
            offenders = [
                name for name, flag in zip(self._names, matrix.diagonal()) if flag
            ]
            raise DataValidationError(
                f"Variables cannot predict themselves: {', '.join(offenders)}."
            )
        matrix.setflags(write=False)
        self._values = matrix
        self._positions = {name: index for index, name in enumerate(self._names)}

    @classmethod
    @beartype
    def from_frame(cls, frame: pd.DataFrame) -> PredictorMatrix:
        """Build from a square frame indexed by target with predictor columns."""

        names = [str(name) for name in frame.index]
        if [str(column) for column in frame.columns] != names:
            raise DataValidationError(
                "Predictor matrix frame must have identical, identically ordered "
                "index and columns."
            )
        return cls(names, frame.to_numpy(dtype=bool))

    @property
    def names(self) -> tuple[str, ...]:
        return self._names

    @property
    def values(self) -> np.ndarray:
        """Read-only boolean array, rows = targets."""

        return self._values

    def __getitem__(self, key: tuple[str, str]) -> bool:
        target, predictor = key
        return bool(self._values[self._index(target), self._index(predictor)])

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PredictorMatrix):
            return NotImplemented
        return self._names == other._names and bool(
            np.array_equal(self._values, other._values)
        )

    def __hash__(self) -> int:
        return hash((self._names, self._values.tobytes()))

    def __repr__(self) -> str:
        edges = int(self._values.sum())
        return f"PredictorMatrix(variables={len(self._names)}, edges={edges})"

    def predictors_of(self, target: str) -> tuple[str, ...]:
        """Predictors of `target`, in variable order."""

        row = self._values[self._index(target)]
        return tuple(name for name, flag in zip(self._names, row) if flag)

    def targets_of(self, predictor: str) -> tuple[str, ...]:
        column = self._values[:, self._index(predictor)]
        return tuple(name for name, flag in zip(self._names, column) if flag)

    def with_predictor(self, target: str, predictor: str) -> PredictorMatrix:
        return self._edited([(target, predictor)], value=True)

    def without_predictor(self, target: str, predictor: str) -> PredictorMatrix:
        return self._edited([(target, predictor)], value=False)

    def with_predictors(
        self, target: str, predictors: Iterable[str]
    ) -> PredictorMatrix:
        """Replace the whole row of `target`."""

        values = self._values.copy()
        row = self._index(target)
        values[row, :] = False
        for predictor in predictors:
            values[row, self._index(predictor)] = True
        return PredictorMatrix(self._names, values)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            self._values.copy(), index=list(self._names), columns=list(self._names)
        )

    def _edited(
        self, edges: Iterable[tuple[str, str]], *, value: bool
    ) -> PredictorMatrix:
        values = self._values.copy()
        for target, predictor in edges:
            values[self._index(target), self._index(predictor)] = value
        return PredictorMatrix(self._names, values)

    def _index(self, name: str) -> int:
        try:
            return self._positions[name]
        except KeyError:
            raise DataValidationError(
                f"Predictor matrix has no variable `{name}`."
            ) from None
