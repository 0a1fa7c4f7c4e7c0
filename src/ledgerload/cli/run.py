"""``ledgerload run`` — execute a scenario with live terminal output."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import typer
from rich.console import Console
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ledgerload._internal.config import load_config
from ledgerload._internal.errors import ConfigError, EngineError, ScenarioError
from ledgerload._internal.logging import setup_logging
from ledgerload.dsl.catalog import register_canonical_scenarios
from ledgerload.dsl.loader import load_scenario
from ledgerload.dsl.scenario import ExecutionMode, registry
from ledgerload.engine.controller import run_scenario
from ledgerload.metrics.models import BUILTIN_METRICS, MetricKind
from ledgerload.metrics.thresholds import parse_threshold_option

if TYPE_CHECKING:
    from ledgerload.dsl.scenario import Scenario
    from ledgerload.metrics.models import MetricSnapshot, RunReport

console = Console(stderr=True)

EXIT_THRESHOLD_FAILED = 1
EXIT_HARNESS_ERROR = 2


# ---------------------------------------------------------------------------
# Scenario resolution
# ---------------------------------------------------------------------------


def _resolve_scenario(name: str | None, file: Path | None) -> Scenario:
    """Return the scenario named on the command line.

    Raises:
        ScenarioError: If the scenario cannot be found.
    """
    if file is not None:
        return load_scenario(file, name)
    if name is None:
        msg = "Pass a scenario name or --file"
        raise ScenarioError(msg)
    register_canonical_scenarios(registry)
    return registry.require(name)


def _apply_overrides(
    scenario: Scenario,
    *,
    rate: float | None,
    vus: int | None,
    duration: float | None,
    max_vus: int | None,
    pre_allocated_vus: int | None,
    iterations: int | None,
    pacing: float | None,
    thresholds: list[str],
) -> Scenario:
    """Return ``scenario`` with the CLI overrides applied and re-validated.

    ``--iterations`` is the total budget in rate mode and the per-VU budget
    in closed mode.

    Raises:
        ConfigError: If an override is invalid or does not apply to the
            scenario's mode.
    """
    changes: dict[str, Any] = {}
    if duration is not None:
        changes["duration"] = duration
    if rate is not None:
        changes["rate"] = rate
    if max_vus is not None:
        changes["max_vus"] = max_vus
    if pre_allocated_vus is not None:
        changes["pre_allocated_vus"] = pre_allocated_vus
    if vus is not None:
        changes["vus"] = vus
    if pacing is not None:
        changes["pacing"] = pacing
    if iterations is not None:
        if scenario.mode is ExecutionMode.CONSTANT_ARRIVAL_RATE:
            changes["max_iterations"] = iterations
        else:
            changes["iterations_per_vu"] = iterations
    if thresholds:
        extra = tuple(parse_threshold_option(value) for value in thresholds)
        changes["thresholds"] = scenario.thresholds + extra

    if not changes:
        return scenario
    return scenario.replace(**changes)


# ---------------------------------------------------------------------------
# Rich output
# ---------------------------------------------------------------------------


def _make_live_table(snapshot: MetricSnapshot | None) -> Table:
    """Build a Rich table summarising the latest interval."""
    table = Table(show_header=True, header_style="bold cyan", expand=True)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    if snapshot is None:
        table.add_row("Status", "Starting...")
        return table

    table.add_row("Elapsed", f"{snapshot.elapsed_seconds:.0f}s")
    table.add_row("Busy / Pool VUs", f"{snapshot.active_vus} / {snapshot.pool_size}")
    table.add_row("Requests/sec", f"{snapshot.requests_per_second:.1f}")
    table.add_row("Iterations", str(snapshot.iterations))
    table.add_row("Dropped", str(snapshot.dropped))
    table.add_row("p95 Latency", f"{snapshot.latency_p95:.1f}ms")
    table.add_row("p99 Latency", f"{snapshot.latency_p99:.1f}ms")
    table.add_row("Failure Rate", f"{snapshot.failure_rate * 100:.2f}%")
    return table


def _format_values(kind: MetricKind, values: dict[str, float]) -> str:
    if kind is MetricKind.TREND:
        return "  ".join(
            f"{key}={values[key]:.2f}ms" if key != "count" else f"count={values[key]:.0f}"
            for key in ("count", "avg", "min", "med", "max", "p(90)", "p(95)", "p(99)")
        )
    if kind is MetricKind.RATE:
        return (
            f"{values['rate'] * 100:.2f}%  "
            f"({values['passes']:.0f} of {values['passes'] + values['fails']:.0f})"
        )
    return f"{values['count']:.0f}  ({values['rate']:.1f}/s)"


def _print_summary(report: RunReport) -> None:
    """Print the final counts, metrics and threshold verdicts."""
    table = Table(title="Run Complete", show_header=True, header_style="bold green", expand=True)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Scenario", report.scenario_name)
    table.add_row("Mode", report.mode)
    table.add_row("Duration", f"{report.duration_seconds:.1f}s")
    table.add_row("Peak VUs", str(report.peak_vus))
    table.add_row("Responses", str(report.total))
    table.add_row("Accepted", str(report.accepted))
    table.add_row("Rejected", str(report.rejected))
    table.add_row("Transport Errors", str(report.errored))
    table.add_row("Dropped", str(report.dropped))
    table.add_row("Interrupted", str(report.interrupted))
    table.add_row("Harness Errors", str(report.harness_errors))
    table.add_row("Failure Rate", f"{report.failure_rate * 100:.2f}%")
    console.print(table)

    metrics_table = Table(title="Metrics", show_header=True, header_style="bold cyan", expand=True)
    metrics_table.add_column("Metric")
    metrics_table.add_column("Values")
    for name, summary in report.metrics.items():
        metrics_table.add_row(name, _format_values(BUILTIN_METRICS[name], summary.values))
    console.print(metrics_table)

    if report.thresholds:
        verdicts = Table(title="Thresholds", show_header=True, header_style="bold cyan", expand=True)
        verdicts.add_column("Threshold")
        verdicts.add_column("Observed", justify="right")
        verdicts.add_column("Result", justify="center")
        for result in report.thresholds.values():
            verdicts.add_row(
                result.threshold_id,
                f"{result.observed:.4g}",
                "[green]PASS[/green]" if result.passed else "[red]FAIL[/red]",
            )
        console.print(verdicts)

    if report.aborted_by is not None:
        console.print(f"[yellow]Run aborted early by threshold:[/yellow] {report.aborted_by}")


# ---------------------------------------------------------------------------
# Command
# ---------------------------------------------------------------------------


def run_cmd(
    scenario_name: str | None = typer.Argument(
        None,
        metavar="SCENARIO",
        help="Name of a catalog scenario, or of a scenario in --file.",
    ),
    file: Path | None = typer.Option(
        None,
        "--file",
        "-f",
        help="Python file defining custom scenarios.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
    rate: float | None = typer.Option(None, "--rate", help="Arrivals per time unit (rate mode)."),
    vus: int | None = typer.Option(None, "--vus", help="Fixed VU count (closed mode)."),
    duration: float | None = typer.Option(
        None, "--duration", "-d", help="Run duration in seconds."
    ),
    max_vus: int | None = typer.Option(None, "--max-vus", help="VU ceiling (rate mode)."),
    pre_allocated_vus: int | None = typer.Option(
        None, "--pre-allocated-vus", help="VUs created at warm-up (rate mode)."
    ),
    iterations: int | None = typer.Option(
        None,
        "--iterations",
        "-i",
        help="Iteration budget: total in rate mode, per VU in closed mode.",
    ),
    pacing: float | None = typer.Option(
        None, "--pacing", help="Seconds between a VU's iterations (closed mode)."
    ),
    threshold: list[str] | None = typer.Option(
        None,
        "--threshold",
        "-t",
        help="Extra threshold as METRIC:EXPRESSION, e.g. http_req_failed:rate<0.01.",
    ),
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print the final report as JSON on stdout.",
    ),
    log_json: bool = typer.Option(
        False,
        "--log-json",
        help="Emit log records as one JSON object per line.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose (DEBUG) logging.",
    ),
) -> None:
    """Run a scenario against the ledger service."""
    setup_logging(logging.DEBUG if verbose else logging.INFO, json_format=log_json)

    try:
        config = load_config()
        scenario = _apply_overrides(
            _resolve_scenario(scenario_name, file),
            rate=rate,
            vus=vus,
            duration=duration,
            max_vus=max_vus,
            pre_allocated_vus=pre_allocated_vus,
            iterations=iterations,
            pacing=pacing,
            thresholds=threshold or [],
        )
    except (ConfigError, ScenarioError) as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(code=EXIT_HARNESS_ERROR) from exc

    console.print(
        Panel(
            f"[bold]Scenario:[/bold] {scenario.name}\n"
            f"[bold]Shape:[/bold]    {scenario.describe()}\n"
            f"[bold]Target:[/bold]   {config.base_url}\n"
            f"[bold]Accepts:[/bold]  {', '.join(map(str, sorted(scenario.accepted_statuses)))}",
            title="ledgerload",
            border_style="cyan",
        )
    )

    try:
        with Live(
            _make_live_table(None),
            console=console,
            refresh_per_second=2,
            transient=True,
        ) as live:

            def _on_snapshot(snapshot: MetricSnapshot) -> None:
                live.update(_make_live_table(snapshot))

            report = run_scenario(scenario, config, on_snapshot=_on_snapshot)
    except EngineError as exc:
        console.print(f"[red]Run failed:[/red] {escape(str(exc))}")
        raise typer.Exit(code=EXIT_HARNESS_ERROR) from exc

    _print_summary(report)
    if as_json:
        typer.echo(json.dumps(report.to_dict(), indent=2))

    if report.harness_errors:
        console.print(f"[red]FAIL:[/red] {report.harness_errors} harness errors during the run")
        raise typer.Exit(code=EXIT_HARNESS_ERROR)
    if not report.passed:
        console.print("[red]FAIL:[/red] one or more thresholds failed")
        raise typer.Exit(code=EXIT_THRESHOLD_FAILED)

    console.print("[green]All thresholds passed.[/green]")
