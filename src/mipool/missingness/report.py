from __future__ import annotations

from rich import box
from rich.console import Console
from rich.table import Table

from mipool.utils.checks import beartype

from .analyzer import MissingnessReport

_CONSOLE = Console()


@beartype
def build_missingness_table(report: MissingnessReport) -> Table:
    """Render per-variable missingness and flux as one rich table."""

    overview = report.overview
    table = Table(
        title="Missingness summary",
        caption=(
            f"cases={overview.n_cases}  variables={overview.n_variables}  "
            f"missing cells={overview.cell_proportion:.1%}  "
            f"incomplete variables={overview.variable_proportion:.1%}  "
            f"incomplete cases={overview.case_proportion:.1%}"
        ),
        box=box.SIMPLE_HEAVY,
    )
    table.add_column("Variable", style="bold")
    for label in ("Missing", "Prop.", "Influx", "Outflux", "FICO"):
        table.add_column(label, justify="right")

    for name, row in report.variables.iterrows():
        flux_row = report.flux.loc[name]
        table.add_row(
            str(name),
            str(int(row["missing"])),
            f"{row['proportion']:.3f}",
            f"{flux_row['influx']:.3f}",
            f"{flux_row['outflux']:.3f}",
            f"{flux_row['fico']:.3f}",
        )
    return table


@beartype
def print_missingness_report(
    report: MissingnessReport,
    *,
    console: Console | None = None,
) -> None:
    """Print the missingness summary table."""

    (console or _CONSOLE).print(build_missingness_table(report))
