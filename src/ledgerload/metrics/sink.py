"""Append-only metric channel shared by all virtual users."""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

from ledgerload.metrics.models import MetricSample

if TYPE_CHECKING:
    from ledgerload._internal.types import Tags


class MetricSink:
    """Concurrent append-only buffer of :class:`MetricSample` objects.

    Producers only ever call :meth:`emit`, which appends to a
    ``collections.deque`` (atomic in CPython), so virtual users never
    coordinate with each other or with the consumer. The aggregator is the
    single consumer and empties the buffer with :meth:`drain`.

    Attributes:
        scenario: Scenario name stamped on samples created via :meth:`emit_value`.
    """

    def __init__(self, scenario: str) -> None:
        self.scenario = scenario
        self._buffer: deque[MetricSample] = deque()
        self._emitted = 0

    @property
    def pending_count(self) -> int:
        """Number of samples not yet drained."""
        return len(self._buffer)

    @property
    def emitted_count(self) -> int:
        """Number of samples ever emitted."""
        return self._emitted

    def emit(self, sample: MetricSample) -> None:
        """Append a sample to the buffer."""
        self._buffer.append(sample)
        self._emitted += 1

    def emit_value(self, metric: str, value: float, tags: Tags | None = None) -> None:
        """Build a sample for this sink's scenario and append it."""
        self.emit(MetricSample(scenario=self.scenario, metric=metric, value=value, tags=tags or {}))

    def drain(self) -> list[MetricSample]:
        """Remove and return every pending sample in arrival order."""
        drained: list[MetricSample] = []
        while self._buffer:
            drained.append(self._buffer.popleft())
        return drained
