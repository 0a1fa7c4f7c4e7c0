"""``ledgerload list`` — show the scenarios available to ``ledgerload run``."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ledgerload._internal.errors import ConfigError, ScenarioError
from ledgerload.dsl.catalog import register_canonical_scenarios
from ledgerload.dsl.loader import load_scenarios
from ledgerload.dsl.scenario import registry

console = Console()


def list_cmd(
    file: Path | None = typer.Option(
        None,
        "--file",
        "-f",
        help="List the scenarios defined in this Python file instead of the catalog.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
) -> None:
    """List catalog scenarios, or the scenarios defined in a file."""
    if file is not None:
        try:
            scenarios = load_scenarios(file)
        except (ConfigError, ScenarioError) as exc:
            Console(stderr=True).print(f"[red]Error:[/red] {escape(str(exc))}")
            raise typer.Exit(code=2) from exc
    else:
        scenarios = register_canonical_scenarios(registry).get_all()

    table = Table(title="Scenarios", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="bold")
    table.add_column("Shape")
    table.add_column("Accepts", justify="center")
    table.add_column("Thresholds")

    for scenario in scenarios:
        table.add_row(
            scenario.name,
            scenario.describe(),
            ", ".join(str(status) for status in sorted(scenario.accepted_statuses)),
            "\n".join(t.threshold_id for t in scenario.thresholds) or "-",
        )
    console.print(table)
