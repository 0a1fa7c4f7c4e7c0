"""Virtual users and the bounded pool that owns them."""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING

from ledgerload._internal.logging import get_logger
from ledgerload.metrics.models import HARNESS_ERRORS, ITERATION_DURATION

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ledgerload.metrics.models import Outcome
    from ledgerload.metrics.sink import MetricSink

logger = get_logger("engine.pool")


@dataclass
class Iteration:
    """One execution of the scenario body by one virtual user.

    Attributes:
        scenario_name: Scenario being executed.
        vu_index: Index of the executing virtual user.
        sequence: Iteration number within that virtual user, from 0.
        started_at: Monotonic start time.
        ended_at: Monotonic end time, None while running.
        idempotency_key: Key of the request sent, set by the body.
        outcome: Result, None while running or after a harness fault.
    """

    scenario_name: str
    vu_index: int
    sequence: int
    started_at: float
    ended_at: float | None = None
    idempotency_key: str | None = None
    outcome: Outcome | None = None

    @property
    def duration_ms(self) -> float:
        end = self.ended_at if self.ended_at is not None else time.monotonic()
        return (end - self.started_at) * 1000


class VirtualUserState(Enum):
    """Lifecycle of a virtual user."""

    IDLE = auto()
    EXECUTING = auto()
    RETIRING = auto()


class VirtualUser:
    """A reusable execution context that runs iterations one at a time.

    A virtual user never starts iteration N+1 before iteration N has been
    recorded. Only the owning pool changes its membership; only the user
    itself writes its current iteration.

    Attributes:
        index: 1-based identity, never reused within a run.
        state: Current lifecycle state.
        current: The running iteration, or None.
        iteration_count: Iterations started so far.
    """

    def __init__(self, index: int, scenario_name: str, sink: MetricSink) -> None:
        self.index = index
        self.state = VirtualUserState.IDLE
        self.current: Iteration | None = None
        self.iteration_count = 0
        self._scenario_name = scenario_name
        self._sink = sink

    async def run_iteration(self, body: Callable[[Iteration], Awaitable[Outcome]]) -> Iteration:
        """Execute one iteration of ``body`` and record its duration.

        An exception escaping ``body`` is a harness fault: it is logged with
        its traceback and counted, and the user stays usable.
        """
        iteration = Iteration(
            scenario_name=self._scenario_name,
            vu_index=self.index,
            sequence=self.iteration_count,
            started_at=time.monotonic(),
        )
        self.iteration_count += 1
        self.current = iteration
        self.state = VirtualUserState.EXECUTING

        try:
            iteration.outcome = await body(iteration)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                "Harness fault in iteration %d of VU %d", iteration.sequence, self.index
            )
            self._sink.emit_value(HARNESS_ERRORS, 1.0)
        finally:
            iteration.ended_at = time.monotonic()
            self.current = None
            if self.state is VirtualUserState.EXECUTING:
                self.state = VirtualUserState.IDLE

        if iteration.outcome is not None:
            self._sink.emit_value(
                ITERATION_DURATION,
                iteration.duration_ms,
                {"outcome": iteration.outcome.value},
            )
        return iteration

    async def run_loop(
        self,
        body: Callable[[Iteration], Awaitable[Outcome]],
        stop_event: asyncio.Event,
        *,
        pacing: float = 0.0,
        iterations: int | None = None,
    ) -> None:
        """Run iterations back to back until stopped or the budget is spent."""
        while not stop_event.is_set():
            if iterations is not None and self.iteration_count >= iterations:
                break
            await self.run_iteration(body)
            if pacing > 0:
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(stop_event.wait(), timeout=pacing)
            else:
                # Yield so a body that never suspends cannot starve the loop
                await asyncio.sleep(0)


class VirtualUserPool:
    """Bounded set of virtual users for one run.

    Users are created at warm-up up to ``pre_allocated`` and lazily up to
    ``max_size``; idle users are reused most-recently-released first.
    All membership changes happen through the scheduler that owns the pool.

    Args:
        scenario_name: Scenario name stamped on samples.
        sink: Metric sink shared by all users.
        max_size: Hard ceiling on pool membership.
        pre_allocated: Users created by :meth:`warm_up`.
    """

    def __init__(
        self,
        scenario_name: str,
        sink: MetricSink,
        *,
        max_size: int,
        pre_allocated: int = 0,
    ) -> None:
        self._scenario_name = scenario_name
        self._sink = sink
        self._max_size = max_size
        self._pre_allocated = pre_allocated
        self._members: list[VirtualUser] = []
        self._idle: deque[VirtualUser] = deque()
        self._tasks: set[asyncio.Task[None]] = set()
        self._next_index = 1
        self.peak_size = 0

    @property
    def size(self) -> int:
        return len(self._members)

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def idle_count(self) -> int:
        return len(self._idle)

    @property
    def busy_count(self) -> int:
        """Users currently executing an iteration."""
        return sum(1 for vu in self._members if vu.state is VirtualUserState.EXECUTING)

    @property
    def in_flight(self) -> int:
        """Running tasks (single iterations or closed-workload loops)."""
        return len(self._tasks)

    @property
    def members(self) -> list[VirtualUser]:
        return list(self._members)

    def warm_up(self) -> None:
        """Create the pre-allocated users."""
        while len(self._members) < self._pre_allocated:
            self._idle.append(self._create())
        logger.debug("Pool warmed up with %d VUs (max %d)", self.size, self._max_size)

    def acquire(self) -> VirtualUser | None:
        """Return an idle user, a new one if below the ceiling, else None."""
        if self._idle:
            return self._idle.pop()
        if len(self._members) < self._max_size:
            return self._create()
        return None

    def dispatch(
        self,
        vu: VirtualUser,
        body: Callable[[Iteration], Awaitable[Outcome]],
    ) -> asyncio.Task[None]:
        """Run a single iteration on ``vu``; the user returns to idle afterwards."""
        vu.state = VirtualUserState.EXECUTING
        return self._track(self._run_once(vu, body), name=f"vu-{vu.index}-iter-{vu.iteration_count}")

    def launch_loops(
        self,
        body: Callable[[Iteration], Awaitable[Outcome]],
        stop_event: asyncio.Event,
        *,
        pacing: float = 0.0,
        iterations: int | None = None,
    ) -> list[asyncio.Task[None]]:
        """Start a looping task on every user the pool can hold."""
        tasks = []
        while True:
            vu = self.acquire()
            if vu is None:
                break
            tasks.append(
                self._track(
                    vu.run_loop(body, stop_event, pacing=pacing, iterations=iterations),
                    name=f"vu-{vu.index}-loop",
                )
            )
        return tasks

    async def drain(self, timeout: float) -> int:
        """Wait up to ``timeout`` seconds for running tasks, then cancel the rest.

        A looping user waiting out its pacing is cancelled too, but only
        users executing an iteration count as interrupted.

        Returns:
            Number of iterations cut off mid-flight.
        """
        if not self._tasks:
            return 0

        pending: set[asyncio.Task[None]] = set(self._tasks)
        if timeout > 0:
            _done, pending = await asyncio.wait(pending, timeout=timeout)
        if not pending:
            return 0

        interrupted = self.busy_count
        for task in pending:
            task.cancel()
        if interrupted:
            logger.warning("Cancelled %d iterations still running after graceful stop", interrupted)
        await asyncio.wait(pending, timeout=2.0)

        return interrupted

    def retire_all(self) -> None:
        """Retire and forget every member."""
        for vu in self._members:
            vu.state = VirtualUserState.RETIRING
        self._members.clear()
        self._idle.clear()

    def _create(self) -> VirtualUser:
        vu = VirtualUser(self._next_index, self._scenario_name, self._sink)
        self._next_index += 1
        self._members.append(vu)
        self.peak_size = max(self.peak_size, len(self._members))
        return vu

    def _track(self, coro: Awaitable[None], *, name: str) -> asyncio.Task[None]:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_once(
        self,
        vu: VirtualUser,
        body: Callable[[Iteration], Awaitable[Outcome]],
    ) -> None:
        try:
            await vu.run_iteration(body)
        finally:
            if vu.state is not VirtualUserState.RETIRING:
                vu.state = VirtualUserState.IDLE
                self._idle.append(vu)
