from __future__ import annotations

import threading
import warnings
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd

from mipool.config import ImputationConfig
from mipool.data import Dataset
from mipool.predictors import PredictorMatrix
from mipool.utils.checks import beartype
from mipool.utils.errors import DataValidationError, ModelFitError, ModelFitWarning

from .methods import (
    ImputationMethod,
    PassiveDerivation,
    build_design,
    draw_marginal,
    model_method,
)
from .registry import MethodRegistry
from .trace import ModelFitEvent, TraceEntry
from .visit import VisitSequence


@beartype
@dataclass(frozen=True)
class ImputationPlan:
    """Read-only inputs shared by every chain of one run."""

    dataset: Dataset
    predictor_matrix: PredictorMatrix
    methods: MethodRegistry
    visit_sequence: VisitSequence
    config: ImputationConfig
    missing: dict[str, np.ndarray] = field(init=False, repr=False)
    observed: dict[str, np.ndarray] = field(init=False, repr=False)
    models: dict[str, ImputationMethod] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        mask = self.dataset.missing_mask()
        imputed = self.methods.imputed()
        object.__setattr__(
            self, "missing", {name: mask[name].to_numpy() for name in imputed}
        )
        object.__setattr__(
            self,
            "observed",
            {name: self.dataset.observed_values(name) for name in imputed},
        )
        object.__setattr__(
            self,
            "models",
            {
                name: model_method(self.methods[name])
                for name in self.methods.modelled()
            },
        )


@dataclass
class ChainState:
    """Mutable working copy of one chain.

    Attributes:
        index (int): Imputation index, 1-based.
        frame (pd.DataFrame): Working copy; imputed cells overwritten in place.
        rng (np.random.Generator): The chain's private random stream.
        iteration (int): Completed iterations.
        coefficients (dict[str, dict[str, float]]): Point estimates of the
            latest fit per modelled variable.
        entries (list[TraceEntry]): Recorded statistics.
        events (list[ModelFitEvent]): Recovered fit failures.
    """

    index: int
    frame: pd.DataFrame
    rng: np.random.Generator
    iteration: int = 0
    coefficients: dict[str, dict[str, float]] = field(default_factory=dict)
    entries: list[TraceEntry] = field(default_factory=list)
    events: list[ModelFitEvent] = field(default_factory=list)


@beartype
def chain_generator(seed: int, index: int) -> np.random.Generator:
    """Independent stream for chain `index` derived from the master seed."""

    return np.random.default_rng(np.random.SeedSequence([seed, index]))


@beartype
def start_chain(plan: ImputationPlan, *, index: int, seed: int) -> ChainState:
    """Init state: fill every imputed variable by a marginal draw.

    Passive variables are then derived from the filled inputs.
    """

    state = ChainState(
        index=index, frame=plan.dataset.to_frame(), rng=chain_generator(seed, index)
    )
    for name in plan.visit_sequence:
        if plan.methods[name] == "passive":
            continue
        missing = plan.missing[name]
        _write(
            state.frame,
            name,
            missing,
            draw_marginal(plan.observed[name], int(missing.sum()), state.rng),
        )
    for name in plan.visit_sequence:
        if plan.methods[name] == "passive":
            _derive(plan, state, name)
    return state


@beartype
def run_chain(
    plan: ImputationPlan,
    state: ChainState,
    *,
    iterations: int,
    stop_event: threading.Event | None = None,
) -> ChainState:
    """Advance a chain by up to `iterations` iterations.

    The stop event is checked between iterations; a stopped chain keeps the
    state of its last completed iteration.
    """

    for _ in range(iterations):
        if stop_event is not None and stop_event.is_set():
            break
        iterate(plan, state)
    return state


@beartype
def iterate(plan: ImputationPlan, state: ChainState) -> None:
    """One Gibbs sweep over the visit sequence, then record diagnostics."""

    state.iteration += 1
    for name in plan.visit_sequence:
        if plan.methods[name] == "passive":
            _derive(plan, state, name)
        else:
            _update(plan, state, name)
    state.entries.extend(_statistics(plan, state))


def _update(plan: ImputationPlan, state: ChainState, name: str) -> None:
    schema = plan.dataset.schema
    missing = plan.missing[name]
    if not missing.any():
        return
    spec = schema[name]
    method = plan.models[name]
    predictors = list(plan.predictor_matrix.predictors_of(name))
    target = state.frame[name].to_numpy()

    dropped: list[str] = []
    messages: list[str] = []
    values: np.ndarray | None = None
    while predictors:
        design = build_design(state.frame, predictors, schema)
        if design.n_columns == 0:
            messages.append("Predictors contribute no design columns")
            dropped.extend(predictors)
            predictors = []
            break
        train = ~missing & ~np.isnan(design.values).any(axis=1)
        try:
            model = method.fit(
                x=design.values[train],
                y=target[train],
                columns=design.columns,
                sources=design.sources,
                levels=spec.levels,
                rng=state.rng,
                config=plan.config,
            )
        except ModelFitError as exc:
            messages.append(str(exc))
            blamed = [p for p in exc.offending if p in predictors] or predictors
            dropped.extend(blamed)
            predictors = [p for p in predictors if p not in blamed]
            continue
        values = method.draw(model, x=design.values[missing], rng=state.rng)
        state.coefficients[name] = model.coefficients
        break

    if values is None:
        values = draw_marginal(plan.observed[name], int(missing.sum()), state.rng)
        state.coefficients.pop(name, None)
    _write(state.frame, name, missing, values)

    if messages:
        event = ModelFitEvent(
            chain=state.index,
            iteration=state.iteration,
            variable=name,
            message=" | ".join(messages),
            dropped=tuple(dropped),
            marginal=not predictors,
        )
        state.events.append(event)
        fallback = "marginal draw" if event.marginal else "reduced model"
        warnings.warn(
            f"Chain {event.chain}, iteration {event.iteration}, variable "
            f"`{name}`: {event.message}. Dropped {', '.join(dropped)}; "
            f"imputed with {fallback}.",
            ModelFitWarning,
            stacklevel=2,
        )


def _derive(plan: ImputationPlan, state: ChainState, name: str) -> None:
    """Recompute a passive variable for every case from its current inputs."""

    formula = plan.dataset.spec(name).formula
    if formula is None:
        raise DataValidationError(f"Passive variable `{name}` has no formula.")
    derived = PassiveDerivation().derive(formula, state.frame).to_numpy()
    if pd.isna(derived).any():
        raise DataValidationError(
            f"Passive formula of `{name}` produced missing values from complete "
            "inputs."
        )
    _write(state.frame, name, np.ones(len(derived), dtype=bool), derived)


def _write(frame: pd.DataFrame, name: str, mask: np.ndarray, values: Any) -> None:
    if not mask.any():
        return
    column = frame.columns.get_loc(name)
    frame.iloc[np.flatnonzero(mask), column] = values


def _statistics(plan: ImputationPlan, state: ChainState) -> list[TraceEntry]:
    """Mean/sd or level shares over each variable's imputed cells."""

    entries: list[TraceEntry] = []
    for name in plan.visit_sequence:
        missing = plan.missing[name]
        values = state.frame[name].to_numpy()[missing]
        spec = plan.dataset.spec(name)
        if spec.type == "continuous":
            numeric = values.astype("float64")
            statistics = {
                "mean": float(numeric.mean()) if len(numeric) else float("nan"),
                "sd": (
                    float(numeric.std(ddof=1)) if len(numeric) > 1 else float("nan")
                ),
            }
        else:
            statistics = {
                f"level[{level}]": float(np.mean(values == level))
                if len(values)
                else float("nan")
                for level in spec.levels or ()
            }
        entries.extend(
            TraceEntry(
                chain=state.index,
                iteration=state.iteration,
                variable=name,
                statistic=statistic,
                value=value,
            )
            for statistic, value in statistics.items()
        )
    return entries
