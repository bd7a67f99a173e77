from __future__ import annotations

import warnings
from collections.abc import Iterable
from dataclasses import dataclass

import numpy as np
import pandas as pd
from rich import box
from rich.console import Console
from rich.table import Table

from mipool.utils.checks import beartype
from mipool.utils.errors import ConvergenceWarning

_CONSOLE = Console()
_ENTRY_COLUMNS = ["chain", "iteration", "variable", "statistic", "value"]


@beartype
@dataclass(frozen=True)
class TraceEntry:
    """One monitored statistic of one variable after one iteration.

    Attributes:
        chain (int): Imputation index, 1-based.
        iteration (int): Completed iteration, 1-based.
        variable (str): Monitored variable.
        statistic (str): `mean`/`sd` for continuous variables, `level[<label>]`
            (share of imputed cells holding that level) for discrete ones.
        value (float): Statistic over the variable's imputed cells.
    """

    chain: int
    iteration: int
    variable: str
    statistic: str
    value: float


@beartype
@dataclass(frozen=True)
class ModelFitEvent:
    """A recovered model-fit failure.

    Attributes:
        chain (int): Imputation index, 1-based.
        iteration (int): Iteration in which the fit failed, 1-based.
        variable (str): Target whose model failed.
        message (str): Failure reported by the model.
        dropped (tuple[str, ...]): Predictors removed before the final fit.
        marginal (bool): Whether the variable fell back to a marginal draw.
    """

    chain: int
    iteration: int
    variable: str
    message: str
    dropped: tuple[str, ...]
    marginal: bool


@beartype
class ConvergenceTrace:
    """Read-only per-chain, per-iteration diagnostics of an imputation run."""

    def __init__(
        self,
        entries: Iterable[TraceEntry] = (),
        events: Iterable[ModelFitEvent] = (),
    ) -> None:
        self._entries = tuple(
            sorted(entries, key=lambda entry: (entry.chain, entry.iteration))
        )
        self._events = tuple(
            sorted(events, key=lambda event: (event.chain, event.iteration))
        )

    @property
    def entries(self) -> tuple[TraceEntry, ...]:
        return self._entries

    @property
    def events(self) -> tuple[ModelFitEvent, ...]:
        return self._events

    @property
    def variables(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(entry.variable for entry in self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return (
            f"ConvergenceTrace(entries={len(self._entries)}, "
            f"events={len(self._events)})"
        )

    def to_frame(self) -> pd.DataFrame:
        """Long frame with one row per recorded statistic."""

        return pd.DataFrame(
            [
                (e.chain, e.iteration, e.variable, e.statistic, e.value)
                for e in self._entries
            ],
            columns=_ENTRY_COLUMNS,
        )

    def events_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                (e.chain, e.iteration, e.variable, e.message, e.dropped, e.marginal)
                for e in self._events
            ],
            columns=[
                "chain",
                "iteration",
                "variable",
                "message",
                "dropped",
                "marginal",
            ],
        )

    def series(self, variable: str, statistic: str = "mean") -> pd.DataFrame:
        """One statistic as an `iteration x chain` frame."""

        frame = self.to_frame()
        selected = frame[
            (frame["variable"] == variable) & (frame["statistic"] == statistic)
        ]
        return selected.pivot(index="iteration", columns="chain", values="value")

    def degraded(self, variable: str | None = None) -> tuple[ModelFitEvent, ...]:
        """Model-fit events, optionally for one variable only."""

        if variable is None:
            return self._events
        return tuple(event for event in self._events if event.variable == variable)

    def is_degraded(self, variable: str) -> bool:
        return bool(self.degraded(variable))


@beartype
def potential_scale_reduction(chains: np.ndarray) -> float:
    """Gelman-Rubin R-hat for an `iterations x chains` matrix."""

    n_iterations, n_chains = chains.shape
    if n_iterations < 2 or n_chains < 2:
        return float("nan")
    within = chains.var(axis=0, ddof=1).mean()
    between = n_iterations * chains.mean(axis=0).var(ddof=1)
    if within == 0:
        return 1.0 if between == 0 else float("inf")
    pooled = (n_iterations - 1) / n_iterations * within + between / n_iterations
    return float(np.sqrt(pooled / within))


@beartype
def check_convergence(
    trace: ConvergenceTrace, *, threshold: float = 1.1
) -> pd.DataFrame:
    """Compute R-hat per monitored statistic over the second half of the run.

    Issues one `ConvergenceWarning` listing every statistic above `threshold`.
    The check is informational and never alters the run.

    Returns:
        pd.DataFrame: Columns `variable`, `statistic`, `rhat`, `converged`.
    """

    frame = trace.to_frame()
    rows = []
    for (variable, statistic), group in frame.groupby(
        ["variable", "statistic"], sort=False
    ):
        chains = group.pivot(index="iteration", columns="chain", values="value")
        chains = chains.dropna()
        tail = chains.iloc[len(chains) // 2 :].to_numpy()
        rhat = potential_scale_reduction(tail)
        rows.append(
            {
                "variable": variable,
                "statistic": statistic,
                "rhat": rhat,
                "converged": not rhat > threshold,
            }
        )

    result = pd.DataFrame(rows, columns=["variable", "statistic", "rhat", "converged"])
    flagged = result[~result["converged"]]
    if not flagged.empty:
        labels = ", ".join(
            f"{row.variable}:{row.statistic} ({row.rhat:.3f})"
            for row in flagged.itertuples()
        )
        warnings.warn(
            f"Chains have not mixed (R-hat > {threshold}): {labels}.",
            ConvergenceWarning,
            stacklevel=2,
        )
    return result


@beartype
def build_trace_table(trace: ConvergenceTrace) -> Table:
    """Final-iteration statistics per chain, with degradation flags."""

    frame = trace.to_frame()
    chains = sorted(frame["chain"].unique().tolist()) if not frame.empty else []
    table = Table(title="Convergence trace (last iteration)", box=box.SIMPLE_HEAVY)
    table.add_column("Variable", style="bold")
    table.add_column("Statistic")
    for chain in chains:
        table.add_column(f"Chain {chain}", justify="right")
    table.add_column("Degraded", justify="center")

    if frame.empty:
        return table
    final = frame.groupby("chain")["iteration"].transform("max")
    last = frame[frame["iteration"] == final]
    for (variable, statistic), group in last.groupby(
        ["variable", "statistic"], sort=False
    ):
        values = group.set_index("chain")["value"]
        table.add_row(
            str(variable),
            str(statistic),
            *(
                f"{values[chain]:.4f}" if chain in values.index else "-"
                for chain in chains
            ),
            "[red]yes[/red]" if trace.is_degraded(str(variable)) else "",
        )
    return table


@beartype
def print_trace_summary(
    trace: ConvergenceTrace, *, console: Console | None = None
) -> None:
    (console or _CONSOLE).print(build_trace_table(trace))
