"""In-memory time-series of interval snapshots."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ledgerload.metrics.models import MetricSnapshot


class MetricStore:
    """Ordered storage for the ``MetricSnapshot`` taken at every tick.

    The metric pump appends and the ``on_snapshot`` callback reads on the
    run's event loop, so no locking is needed.
    """

    def __init__(self) -> None:
        self._snapshots: list[MetricSnapshot] = []

    def append(self, snapshot: MetricSnapshot) -> None:
        self._snapshots.append(snapshot)

    def get_all(self) -> list[MetricSnapshot]:
        """Return a copy of all snapshots in chronological order."""
        return list(self._snapshots)

    def get_latest(self) -> MetricSnapshot | None:
        return self._snapshots[-1] if self._snapshots else None

    def __len__(self) -> int:
        return len(self._snapshots)
