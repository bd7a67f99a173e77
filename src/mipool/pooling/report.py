from __future__ import annotations

from collections.abc import Mapping

from rich import box
from rich.console import Console
from rich.table import Table

from mipool.utils.checks import beartype

from .multivariate import PooledVector
from .rubin import PooledEstimate

_CONSOLE = Console()


@beartype
def build_pooled_table(
    pooled: PooledEstimate | PooledVector | Mapping[str, PooledEstimate],
) -> Table:
    """Regression-style table of pooled estimates."""

    if isinstance(pooled, PooledEstimate):
        rows = {"estimate": pooled}
    elif isinstance(pooled, PooledVector):
        rows = dict(zip(pooled.names, pooled.components))
    else:
        rows = dict(pooled)

    table = Table(title="Pooled estimates (Rubin's rules)", box=box.SIMPLE_HEAVY)
    table.add_column("Term", style="bold")
    for label in ("Estimate", "Std. error", "df", "p", "CI", "FMI", "m"):
        table.add_column(label, justify="right")

    for name, item in rows.items():
        level = f"{1 - item.alpha:.0%}"
        table.add_row(
            name,
            f"{item.estimate:.4f}",
            f"{item.std_error:.4f}",
            f"{item.df:.1f}",
            f"{item.p_value:.4f}",
            f"{level} [{item.ci_lower:.4f}, {item.ci_upper:.4f}]",
            f"{item.fmi:.3f}" if item.between_defined else "[yellow]n/a[/yellow]",
            str(item.m),
        )
    return table


@beartype
def print_pooled_estimates(
    pooled: PooledEstimate | PooledVector | Mapping[str, PooledEstimate],
    *,
    console: Console | None = None,
) -> None:
    (console or _CONSOLE).print(build_pooled_table(pooled))
