"""Main Typer application — entry point for the ``ledgerload`` CLI."""

from __future__ import annotations

import typer

from ledgerload import __version__
from ledgerload.cli.list_cmd import list_cmd
from ledgerload.cli.run import run_cmd

app = typer.Typer(
    name="ledgerload",
    help="Load-generation harness for the ledger write API.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.command("run", help="Run a scenario and evaluate its thresholds.")(run_cmd)
app.command("list", help="List available scenarios.")(list_cmd)


def _version_callback(value: bool) -> None:
    """Print version and exit.

    Args:
        value: True if --version was passed.
    """
    if value:
        typer.echo(f"ledgerload {__version__}")
        raise typer.Exit


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """ledgerload — drive the ledger write API at a fixed arrival rate or concurrency."""
