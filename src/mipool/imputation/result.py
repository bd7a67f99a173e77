from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass

import pandas as pd

from mipool.config import ImputationConfig
from mipool.data import CASE_ID_COLUMN, Dataset
from mipool.predictors import PredictorMatrix
from mipool.utils.checks import beartype
from mipool.utils.errors import InputValidationError

from .chain import ChainState
from .registry import MethodRegistry
from .trace import ConvergenceTrace
from .visit import VisitSequence

IMPUTATION_COLUMN = "imputation"


@beartype
@dataclass(frozen=True)
class ImputedDataset:
    """One completed copy of the dataset.

    Attributes:
        imputation (int): Imputation index, 1..m.
        iterations (int): Iterations the chain actually completed; lower than
            the requested `maxit` when the run was stopped early.
        frame (pd.DataFrame): Completed data indexed by case identifier.
        coefficients (Mapping[str, Mapping[str, float]]): Point estimates of
            the last fit per modelled variable. Variables imputed by a
            marginal draw in the last iteration have no entry.
    """

    imputation: int
    iterations: int
    frame: pd.DataFrame
    coefficients: Mapping[str, Mapping[str, float]]


@beartype
class ImputationResult:
    """The `m` completed datasets of one run plus its diagnostics.

    The realised predictor matrix, method registry, visit sequence and
    convergence trace are exposed read-only for reporting.
    """

    def __init__(
        self,
        *,
        original: Dataset,
        datasets: Sequence[ImputedDataset],
        trace: ConvergenceTrace,
        predictor_matrix: PredictorMatrix,
        methods: MethodRegistry,
        visit_sequence: VisitSequence,
        config: ImputationConfig,
        seed: int,
        states: Sequence[ChainState],
    ) -> None:
        self._original = original
        self._datasets = tuple(datasets)
        self._trace = trace
        self._predictor_matrix = predictor_matrix
        self._methods = methods
        self._visit_sequence = visit_sequence
        self._config = config
        self._seed = seed
        self._states = tuple(states)

    @property
    def m(self) -> int:
        return len(self._datasets)

    @property
    def original(self) -> Dataset:
        return self._original

    @property
    def datasets(self) -> tuple[ImputedDataset, ...]:
        return self._datasets

    @property
    def trace(self) -> ConvergenceTrace:
        return self._trace

    @property
    def predictor_matrix(self) -> PredictorMatrix:
        return self._predictor_matrix

    @property
    def methods(self) -> MethodRegistry:
        return self._methods

    @property
    def visit_sequence(self) -> VisitSequence:
        return self._visit_sequence

    @property
    def config(self) -> ImputationConfig:
        return self._config

    @property
    def seed(self) -> int:
        return self._seed

    @property
    def iterations(self) -> tuple[int, ...]:
        """Iterations completed by each chain."""

        return tuple(dataset.iterations for dataset in self._datasets)

    @property
    def states(self) -> tuple[ChainState, ...]:
        return self._states

    def __len__(self) -> int:
        return self.m

    def __iter__(self) -> Iterator[pd.DataFrame]:
        return (dataset.frame.copy() for dataset in self._datasets)

    def __repr__(self) -> str:
        return f"ImputationResult(m={self.m}, iterations={self.iterations})"

    def complete(self, imputation: int) -> pd.DataFrame:
        """Return a copy of completed dataset `imputation` (1..m).

        Index `0` returns the original incomplete data.
        """

        if imputation == 0:
            return self._original.to_frame()
        if not 1 <= imputation <= self.m:
            raise InputValidationError(
                f"imputation must be between 0 and {self.m}, got {imputation}."
            )
        return self._datasets[imputation - 1].frame.copy()

    def long(self, *, include_original: bool = False) -> pd.DataFrame:
        """Stack the completed datasets into one long frame.

        Columns are `imputation`, `case_id`, then the variables. With
        `include_original`, the incomplete data is prepended as imputation 0.
        """

        start = 0 if include_original else 1
        blocks = []
        for imputation in range(start, self.m + 1):
            block = self.complete(imputation).reset_index()
            block.insert(0, IMPUTATION_COLUMN, imputation)
            blocks.append(block)
        stacked = pd.concat(blocks, ignore_index=True)
        return stacked[
            [IMPUTATION_COLUMN, CASE_ID_COLUMN, *self._original.schema.names]
        ]
