from __future__ import annotations

import copy
import os
import threading
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any

import numpy as np
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from mipool.config import ImputationConfig
from mipool.data import Dataset
from mipool.predictors import PredictorMatrix, quickpred
from mipool.utils.checks import beartype
from mipool.utils.errors import DataValidationError, InputValidationError
from mipool.utils.metadata import ComponentMetadata

from .chain import ChainState, ImputationPlan, run_chain, start_chain
from .registry import MethodRegistry
from .result import ImputationResult, ImputedDataset
from .trace import ConvergenceTrace
from .visit import VisitSequence

_CONSOLE = Console()
_AUTO_PARALLEL_WORKER_CAP = 8


@beartype
class ChainedEquationsImputer:
    """Multiple imputation by chained equations.

    Runs `m` independent chains. Each chain fills its private copy of the
    data by marginal draws, then iterates `maxit` Gibbs sweeps in which every
    visited variable is re-imputed from its conditional model given the
    current values of its predictors. Chain `i` draws from a generator seeded
    with `(seed, i)`, so results do not depend on whether chains run
    sequentially or in a thread pool.

    Examples:
        ```python
        from mipool.config import ImputationConfig
        from mipool.imputation import ChainedEquationsImputer

        imputer = ChainedEquationsImputer(ImputationConfig(m=5, maxit=10, seed=1))
        result = imputer.impute(dataset)
        long_frame = result.long()
        ```
    """

    metadata = ComponentMetadata(
        name="mice",
        full_name="Chained Equations Imputer",
        abstract_description=(
            "Fully conditional specification imputation producing m completed "
            "datasets and a convergence trace."
        ),
    )

    def __init__(self, config: ImputationConfig | None = None) -> None:
        self._config = config or ImputationConfig.from_mapping()

    @property
    def config(self) -> ImputationConfig:
        return self._config

    @beartype
    def impute(
        self,
        dataset: Dataset,
        *,
        predictor_matrix: PredictorMatrix | None = None,
        methods: MethodRegistry | Mapping[str, str] | None = None,
        visit_sequence: VisitSequence | Sequence[str] | str | None = None,
        stop_event: threading.Event | None = None,
    ) -> ImputationResult:
        """Impute `dataset` `m` times.

        Args:
            dataset (Dataset): Ingested dataset; never modified.
            predictor_matrix (PredictorMatrix | None): Realised predictor
                matrix. Defaults to `quickpred(dataset)`.
            methods (MethodRegistry | Mapping[str, str] | None): Method
                registry, or per-variable overrides of the default methods.
            visit_sequence (VisitSequence | Sequence[str] | str | None):
                Visit sequence, explicit order, or one of `column`,
                `monotone`, `revmonotone`. Defaults to the configured order.
            stop_event (threading.Event | None): When set, chains stop after
                their current iteration and report the iterations reached.

        Returns:
            ImputationResult: Completed datasets and diagnostics.

        Raises:
            DataValidationError: If the predictor matrix, method registry or
                visit sequence is inconsistent with the dataset roles.
        """

        registry = (
            methods
            if isinstance(methods, MethodRegistry)
            else MethodRegistry.for_dataset(dataset, methods)
        )
        matrix = (
            predictor_matrix if predictor_matrix is not None else quickpred(dataset)
        )
        if isinstance(visit_sequence, VisitSequence):
            visit = visit_sequence
        else:
            visit = VisitSequence.for_registry(
                dataset,
                registry,
                (
                    visit_sequence
                    if visit_sequence is not None
                    else self._config.visit_order
                ),
            )
        validate_plan(dataset, matrix, registry, visit)

        plan = ImputationPlan(
            dataset=dataset,
            predictor_matrix=matrix,
            methods=registry,
            visit_sequence=visit,
            config=self._config,
        )
        seed = self._resolve_seed()

        def _start_and_run(index: int) -> ChainState:
            state = start_chain(plan, index=index, seed=seed)
            return run_chain(
                plan, state, iterations=self._config.maxit, stop_event=stop_event
            )

        states = self._execute(
            _start_and_run,
            range(1, self._config.m + 1),
            description="Imputing chains...",
        )
        return _build_result(plan, states, seed=seed)

    @beartype
    def resume(
        self,
        result: ImputationResult,
        iterations: int,
        *,
        stop_event: threading.Event | None = None,
    ) -> ImputationResult:
        """Continue every chain of `result` for more iterations.

        Chains continue from their stored working copies and random streams,
        so `impute` with `maxit=a` followed by `resume(..., b)` reproduces a
        single run with `maxit=a+b`. `result` itself is left unchanged.
        """

        if iterations < 0:
            raise InputValidationError("iterations must be >= 0.")
        plan = ImputationPlan(
            dataset=result.original,
            predictor_matrix=result.predictor_matrix,
            methods=result.methods,
            visit_sequence=result.visit_sequence,
            config=result.config,
        )
        previous = {state.index: state for state in result.states}

        def _continue(index: int) -> ChainState:
            state = copy.deepcopy(previous[index])
            return run_chain(plan, state, iterations=iterations, stop_event=stop_event)

        states = self._execute(
            _continue, sorted(previous), description="Resuming chains..."
        )
        return _build_result(plan, states, seed=result.seed)

    def _resolve_seed(self) -> int:
        if self._config.seed is not None:
            return self._config.seed
        return int(np.random.SeedSequence().entropy)

    def _execute(
        self,
        task: Callable[[int], ChainState],
        indices: Sequence[int] | range,
        *,
        description: str,
    ) -> list[ChainState]:
        indices = list(indices)
        if not self._config.show_progress:
            return self._dispatch(task, indices, advance=None)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TimeElapsedColumn(),
            console=_CONSOLE,
            transient=False,
        ) as progress:
            task_id = progress.add_task(description, total=len(indices))
            return self._dispatch(
                task, indices, advance=lambda: progress.advance(task_id)
            )

    def _dispatch(
        self,
        task: Callable[[int], ChainState],
        indices: list[int],
        *,
        advance: Callable[[], Any] | None,
    ) -> list[ChainState]:
        states: list[ChainState] = []
        if not self._config.parallel or len(indices) <= 1:
            for index in indices:
                states.append(task(index))
                if advance is not None:
                    advance()
            return states

        worker_count = _resolve_worker_count(
            requested=self._config.max_workers, chain_count=len(indices)
        )
        with ThreadPoolExecutor(max_workers=worker_count) as executor:
            futures = {executor.submit(task, index): index for index in indices}
            for future in as_completed(futures):
                states.append(future.result())
                if advance is not None:
                    advance()
        return sorted(states, key=lambda state: state.index)


@beartype
def validate_plan(
    dataset: Dataset,
    matrix: PredictorMatrix,
    registry: MethodRegistry,
    visit: VisitSequence,
) -> None:
    """Check the run configuration against the dataset before any chain starts.

    Raises:
        DataValidationError: On the first inconsistency found.
    """

    schema = dataset.schema
    if tuple(matrix.names) != schema.names:
        raise DataValidationError(
            "Predictor matrix variables must match the dataset variables in order."
        )
    registry.validate(dataset)
    visit.validate(dataset, registry)

    for spec in schema.variables:
        if spec.role not in ("passive", "excluded"):
            continue
        targets = matrix.targets_of(spec.name)
        if targets:
            raise DataValidationError(
                f"{spec.role.capitalize()} variable `{spec.name}` cannot predict "
                f"{', '.join(targets)}."
            )
    for name in registry.modelled():
        excluded = [
            predictor
            for predictor in matrix.predictors_of(name)
            if schema[predictor].role == "excluded"
        ]
        if excluded:
            raise DataValidationError(
                f"`{name}` uses excluded predictors: {', '.join(excluded)}."
            )


def _build_result(
    plan: ImputationPlan, states: list[ChainState], *, seed: int
) -> ImputationResult:
    datasets = [
        ImputedDataset(
            imputation=state.index,
            iterations=state.iteration,
            frame=state.frame.copy(),
            coefficients={
                name: dict(values) for name, values in state.coefficients.items()
            },
        )
        for state in states
    ]
    trace = ConvergenceTrace(
        (entry for state in states for entry in state.entries),
        (event for state in states for event in state.events),
    )
    return ImputationResult(
        original=plan.dataset,
        datasets=datasets,
        trace=trace,
        predictor_matrix=plan.predictor_matrix,
        methods=plan.methods,
        visit_sequence=plan.visit_sequence,
        config=plan.config,
        seed=seed,
        states=states,
    )


@beartype
def _resolve_worker_count(*, requested: int | None, chain_count: int) -> int:
    """Resolve effective worker count for parallel chains."""

    if chain_count <= 1:
        return 1
    if requested is not None:
        return max(1, min(requested, chain_count))
    cpu_count = os.cpu_count() or 1
    return max(1, min(cpu_count, chain_count, _AUTO_PARALLEL_WORKER_CAP))
