"""Arrival scheduling for both execution modes.

In ``constant-arrival-rate`` mode arrival ``k`` is due at
``start + k * interval``. The schedule is computed from absolute offsets, so
a slow tick never shifts later arrivals: late ones are dispatched at once.
An arrival that finds no idle virtual user and a pool at its ceiling is
dropped and counted, never queued.

In ``closed-workload`` mode every virtual user loops on its own and the
scheduler only decides when the run is over.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ledgerload._internal.logging import get_logger
from ledgerload.dsl.scenario import ExecutionMode
from ledgerload.engine.pool import VirtualUserPool
from ledgerload.metrics.models import DROPPED_ITERATIONS

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator

    from ledgerload.dsl.scenario import Scenario
    from ledgerload.engine.pool import Iteration
    from ledgerload.metrics.models import Outcome
    from ledgerload.metrics.sink import MetricSink

logger = get_logger("engine.scheduler")

# Waits shorter than this use a plain sleep instead of racing the stop event.
_SHORT_WAIT = 0.05
# Arrivals dispatched back to back before yielding to the event loop.
_BURST_YIELD = 100


def iter_arrival_offsets(interval: float, duration: float | None) -> Iterator[float]:
    """Yield the offset in seconds of every arrival from run start.

    Args:
        interval: Seconds between two arrivals.
        duration: Run length; offsets are strictly below it. None yields
            forever.

    Yields:
        ``0, interval, 2 * interval, ...``
    """
    for k in itertools.count():
        offset = k * interval
        if duration is not None and offset >= duration:
            return
        yield offset


@dataclass(frozen=True)
class ScheduleResult:
    """What the scheduler did during one run.

    Attributes:
        elapsed_seconds: Wall-clock time from first arrival to the end of
            the graceful stop.
        dispatched: Iterations handed to a virtual user (rate mode) or
            started by the looping users (closed mode).
        dropped: Arrivals dropped because the pool was exhausted.
        interrupted: Iterations cancelled after the graceful-stop window.
        peak_vus: Largest pool size reached.
    """

    elapsed_seconds: float
    dispatched: int
    dropped: int
    interrupted: int
    peak_vus: int


class ArrivalScheduler:
    """Drives a scenario's iterations through a :class:`VirtualUserPool`.

    Args:
        scenario: Scenario to execute.
        sink: Metric sink shared with the virtual users.
        stop_event: Set to end the run early; also set by the scheduler
            itself when the run ends.
    """

    def __init__(self, scenario: Scenario, sink: MetricSink, stop_event: asyncio.Event) -> None:
        self._scenario = scenario
        self._sink = sink
        self._stop_event = stop_event
        self._dispatched = 0
        self._dropped = 0

        if scenario.mode is ExecutionMode.CONSTANT_ARRIVAL_RATE:
            pre_allocated = scenario.pre_allocated_vus
        else:
            pre_allocated = scenario.vu_ceiling
        self.pool = VirtualUserPool(
            scenario.name,
            sink,
            max_size=scenario.vu_ceiling,
            pre_allocated=pre_allocated,
        )

    @property
    def dispatched(self) -> int:
        return self._dispatched

    @property
    def dropped(self) -> int:
        return self._dropped

    async def run(self, body: Callable[[Iteration], Awaitable[Outcome]]) -> ScheduleResult:
        """Run the scenario to completion.

        The run ends when its duration elapses, its iteration budget is
        spent or the stop event is set. In-flight iterations then get
        ``graceful_stop`` seconds to finish before they are cancelled.
        """
        scenario = self._scenario
        self.pool.warm_up()
        start = time.monotonic()
        interrupted = 0

        try:
            if scenario.mode is ExecutionMode.CONSTANT_ARRIVAL_RATE:
                await self._run_arrivals(body, start)
            else:
                await self._run_closed(body)
        finally:
            self._stop_event.set()
            interrupted = await self.pool.drain(scenario.graceful_stop)
            if scenario.mode is ExecutionMode.CLOSED_WORKLOAD:
                self._dispatched = sum(vu.iteration_count for vu in self.pool.members)
            self.pool.retire_all()

        elapsed = time.monotonic() - start
        logger.debug(
            "Schedule finished: dispatched=%d, dropped=%d, interrupted=%d, peak_vus=%d",
            self._dispatched,
            self._dropped,
            interrupted,
            self.pool.peak_size,
        )
        return ScheduleResult(
            elapsed_seconds=elapsed,
            dispatched=self._dispatched,
            dropped=self._dropped,
            interrupted=interrupted,
            peak_vus=self.pool.peak_size,
        )

    async def _run_arrivals(
        self,
        body: Callable[[Iteration], Awaitable[Outcome]],
        start: float,
    ) -> None:
        scenario = self._scenario
        budget = scenario.max_iterations
        burst = 0

        for offset in iter_arrival_offsets(scenario.arrival_interval, scenario.duration):
            if budget is not None and self._dispatched >= budget:
                break

            delay = start + offset - time.monotonic()
            if delay > 0:
                burst = 0
                if await self._wait(delay):
                    break
            else:
                burst += 1
                if burst >= _BURST_YIELD:
                    burst = 0
                    await asyncio.sleep(0)

            if self._stop_event.is_set():
                break

            vu = self.pool.acquire()
            if vu is None:
                self._drop()
                continue
            self.pool.dispatch(vu, body)
            self._dispatched += 1
        else:
            # Schedule exhausted: hold the run open until its duration ends.
            if scenario.duration is not None:
                await self._wait(start + scenario.duration - time.monotonic())

    async def _run_closed(self, body: Callable[[Iteration], Awaitable[Outcome]]) -> None:
        scenario = self._scenario
        loops = self.pool.launch_loops(
            body,
            self._stop_event,
            pacing=scenario.pacing,
            iterations=scenario.iterations_per_vu,
        )
        all_done = asyncio.ensure_future(asyncio.wait(loops))
        stopped = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait(
                {all_done, stopped},
                timeout=scenario.duration,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            all_done.cancel()
            stopped.cancel()

    async def _wait(self, delay: float) -> bool:
        """Sleep ``delay`` seconds; return True if the stop event fired."""
        if delay <= 0:
            return self._stop_event.is_set()
        if delay < _SHORT_WAIT:
            await asyncio.sleep(delay)
            return self._stop_event.is_set()
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        return self._stop_event.is_set()

    def _drop(self) -> None:
        if self._dropped == 0:
            logger.warning(
                "VU pool exhausted at %d VUs, dropping arrivals for scenario %s",
                self.pool.max_size,
                self._scenario.name,
            )
        self._dropped += 1
        self._sink.emit_value(DROPPED_ITERATIONS, 1.0)
