"""Run lifecycle: wiring, metric pump, signal handling and the final report."""

from __future__ import annotations

import asyncio
import contextlib
import signal
import sys
import time
from datetime import UTC, datetime
from enum import Enum, auto
from typing import TYPE_CHECKING

from ledgerload._internal.config import HarnessConfig, load_config
from ledgerload._internal.errors import EngineError, LedgerLoadError
from ledgerload._internal.logging import get_logger
from ledgerload.dsl.classifier import ResponseClassifier
from ledgerload.dsl.http_client import HttpClient
from ledgerload.dsl.payload import RequestBuilder
from ledgerload.engine.iteration import IterationBody
from ledgerload.engine.scheduler import ArrivalScheduler
from ledgerload.metrics.aggregator import MetricsAggregator
from ledgerload.metrics.sink import MetricSink
from ledgerload.metrics.store import MetricStore

if TYPE_CHECKING:
    from collections.abc import Callable

    from ledgerload.dsl.scenario import Scenario
    from ledgerload.metrics.models import MetricSnapshot, RunReport, ThresholdResult

logger = get_logger("engine.controller")


class RunState(Enum):
    """State machine for a run."""

    CREATED = auto()
    STARTING = auto()
    RUNNING = auto()
    STOPPING = auto()
    COMPLETED = auto()
    FAILED = auto()


class RunController:
    """Executes one scenario end to end and returns its :class:`RunReport`.

    Owns the metric sink, the aggregator and the shared HTTP client. While
    the scheduler runs, a pump task drains the sink every tick, stores a
    snapshot and evaluates thresholds marked ``abort_on_fail``.

    State machine: CREATED -> STARTING -> RUNNING -> STOPPING -> COMPLETED
                                                  -> FAILED (on error)

    Args:
        scenario: Scenario to execute.
        config: Harness configuration; read from the environment if omitted.
        on_snapshot: Called with every interval snapshot.
    """

    def __init__(
        self,
        scenario: Scenario,
        config: HarnessConfig | None = None,
        *,
        on_snapshot: Callable[[MetricSnapshot], None] | None = None,
    ) -> None:
        self._scenario = scenario
        self._config = config if config is not None else load_config()
        self._on_snapshot = on_snapshot

        self._state = RunState.CREATED
        self._sink = MetricSink(scenario.name)
        self._aggregator = MetricsAggregator(store=MetricStore())
        self._stop_event = asyncio.Event()
        self._scheduler: ArrivalScheduler | None = None
        self._aborted_by: str | None = None
        self._abort_result: ThresholdResult | None = None

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def aggregator(self) -> MetricsAggregator:
        return self._aggregator

    async def run(self) -> RunReport:
        """Execute the run.

        Returns:
            The final report, including threshold verdicts.

        Raises:
            EngineError: If the harness itself fails during the run.
        """
        scenario = self._scenario
        self._state = RunState.STARTING
        logger.info("Starting run: scenario=%s, %s", scenario.name, scenario.describe())
        logger.info("Target: %s (tenant %s)", self._config.base_url, self._config.tenant_id)

        self._install_signal_handlers()
        started_at = datetime.now(UTC)
        start = time.monotonic()
        scheduler = ArrivalScheduler(scenario, self._sink, self._stop_event)
        self._scheduler = scheduler

        try:
            async with HttpClient(
                self._config.base_url,
                timeout=self._config.request_timeout,
                connection_limit=scenario.vu_ceiling,
            ) as client:
                body = IterationBody(
                    scenario,
                    RequestBuilder(self._config),
                    client,
                    ResponseClassifier(self._sink),
                )
                pump = asyncio.create_task(self._pump(start), name="metrics-pump")
                pump.add_done_callback(self._on_pump_done)
                self._state = RunState.RUNNING
                try:
                    result = await scheduler.run(body)
                finally:
                    self._state = RunState.STOPPING
                    if not pump.done():
                        pump.cancel()
                        with contextlib.suppress(asyncio.CancelledError):
                            await pump
                pump_error = None if pump.cancelled() else pump.exception()
                if pump_error is not None:
                    msg = f"Metric pump of scenario {scenario.name!r} failed: {pump_error}"
                    raise EngineError(msg) from pump_error
        except LedgerLoadError:
            self._state = RunState.FAILED
            raise
        except Exception as exc:
            self._state = RunState.FAILED
            logger.exception("Run failed")
            msg = f"Run of scenario {scenario.name!r} failed"
            raise EngineError(msg) from exc
        finally:
            self._remove_signal_handlers()

        self._aggregator.drain(self._sink)
        self._aggregator.snapshot(result.elapsed_seconds, active_vus=0, pool_size=0)

        report = self._aggregator.build_report(
            scenario_name=scenario.name,
            mode=scenario.mode.value,
            started_at=started_at,
            elapsed_seconds=result.elapsed_seconds,
            thresholds=scenario.thresholds,
            peak_vus=result.peak_vus,
            interrupted=result.interrupted,
        )
        if self._abort_result is not None:
            # A threshold that recovered during the drain still aborted the run
            report.thresholds[self._abort_result.threshold_id] = self._abort_result
        report.aborted_by = self._aborted_by

        self._state = RunState.COMPLETED
        logger.info(
            "Run completed: duration=%.1fs, total=%d, accepted=%d, rejected=%d, "
            "errored=%d, dropped=%d, failure_rate=%.2f%%",
            report.duration_seconds,
            report.total,
            report.accepted,
            report.rejected,
            report.errored,
            report.dropped,
            report.failure_rate * 100,
        )
        for verdict in report.thresholds.values():
            if not verdict.passed:
                logger.warning(
                    "Threshold failed: %s (observed %.4g)", verdict.threshold_id, verdict.observed
                )
        return report

    async def stop(self) -> None:
        """Request graceful shutdown.

        Arrivals stop immediately; in-flight iterations get the scenario's
        graceful-stop window to finish.
        """
        if self._state in (RunState.STARTING, RunState.RUNNING):
            logger.info("Graceful shutdown requested")
            self._state = RunState.STOPPING
            self._stop_event.set()

    async def _pump(self, start: float) -> None:
        while True:
            await asyncio.sleep(self._config.tick_interval)
            self._tick(time.monotonic() - start)

    def _tick(self, elapsed: float) -> None:
        """Drain pending samples, snapshot, and apply abort thresholds."""
        self._aggregator.drain(self._sink)
        pool = self._scheduler.pool if self._scheduler is not None else None
        snapshot = self._aggregator.snapshot(
            elapsed,
            active_vus=pool.busy_count if pool is not None else 0,
            pool_size=pool.size if pool is not None else 0,
        )
        logger.debug(
            "Tick %.1fs: vus=%d/%d, rps=%.1f, p95=%.1fms, failure_rate=%.4f, dropped=%d",
            elapsed,
            snapshot.active_vus,
            snapshot.pool_size,
            snapshot.requests_per_second,
            snapshot.latency_p95,
            snapshot.failure_rate,
            snapshot.dropped,
        )
        if self._on_snapshot is not None:
            self._on_snapshot(snapshot)

        if self._aborted_by is not None:
            return
        abort_thresholds = [t for t in self._scenario.thresholds if t.abort_on_fail]
        if not abort_thresholds:
            return
        for result in self._aggregator.evaluate(abort_thresholds, elapsed).values():
            if not result.passed:
                self._aborted_by = result.threshold_id
                self._abort_result = result
                logger.warning(
                    "Aborting run: threshold %s failed (observed %.4g)",
                    result.threshold_id,
                    result.observed,
                )
                self._stop_event.set()
                break

    def _on_pump_done(self, task: asyncio.Task[None]) -> None:
        """Stop the run as soon as the metric pump dies."""
        if task.cancelled() or task.exception() is None:
            return
        logger.error("Metric pump failed, stopping run", exc_info=task.exception())
        self._stop_event.set()

    def _install_signal_handlers(self) -> None:
        """Install SIGINT and SIGTERM handlers that trigger a graceful stop."""
        loop = asyncio.get_running_loop()

        def _signal_handler() -> None:
            logger.info("Signal received, initiating graceful shutdown")
            self._state = RunState.STOPPING
            self._stop_event.set()

        if sys.platform != "win32":
            loop.add_signal_handler(signal.SIGINT, _signal_handler)
            loop.add_signal_handler(signal.SIGTERM, _signal_handler)
        else:
            # Windows doesn't support add_signal_handler
            signal.signal(signal.SIGINT, lambda _s, _f: _signal_handler())
            signal.signal(signal.SIGTERM, lambda _s, _f: _signal_handler())

    def _remove_signal_handlers(self) -> None:
        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
        else:
            signal.signal(signal.SIGINT, signal.default_int_handler)
            signal.signal(signal.SIGTERM, signal.SIG_DFL)


def run_scenario(
    scenario: Scenario,
    config: HarnessConfig | None = None,
    *,
    on_snapshot: Callable[[MetricSnapshot], None] | None = None,
) -> RunReport:
    """Run ``scenario`` on a fresh event loop and return its report."""
    controller = RunController(scenario, config, on_snapshot=on_snapshot)
    return asyncio.run(controller.run())
