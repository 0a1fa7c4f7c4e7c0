"""Streaming latency histogram backed by HdrHistogram.

Percentiles are answered from bucket counts, so memory stays constant no
matter how many samples a run records, and the result does not depend on
the order in which samples arrived.
"""

from __future__ import annotations

from hdrh.histogram import HdrHistogram  # type: ignore[import-untyped]

# Range: 1 microsecond to 1 hour (in microseconds)
_LOWEST_TRACKABLE_US = 1
_HIGHEST_TRACKABLE_US = 3_600_000_000
_SIGNIFICANT_DIGITS = 3


class LatencyHistogram:
    """Millisecond-facing wrapper around an integer-microsecond HDR histogram.

    Values outside the trackable range are clamped rather than dropped so
    that every recorded sample is counted.
    """

    def __init__(self, significant_digits: int = _SIGNIFICANT_DIGITS) -> None:
        self._histogram: HdrHistogram = HdrHistogram(  # type: ignore[no-any-unimported]
            _LOWEST_TRACKABLE_US, _HIGHEST_TRACKABLE_US, significant_digits
        )
        self._sum_us = 0

    def record(self, latency_ms: float) -> None:
        """Record one latency value in milliseconds."""
        value_us = int(latency_ms * 1000)
        value_us = max(_LOWEST_TRACKABLE_US, min(value_us, _HIGHEST_TRACKABLE_US))
        self._histogram.record_value(value_us)
        self._sum_us += value_us

    @property
    def count(self) -> int:
        return int(self._histogram.total_count)

    def percentile(self, percentile: float) -> float:
        """Return the latency (ms) at ``percentile`` (0-100), 0.0 if empty."""
        if self.count == 0:
            return 0.0
        return self._histogram.get_value_at_percentile(percentile) / 1000.0

    @property
    def min(self) -> float:
        if self.count == 0:
            return 0.0
        return self._histogram.get_min_value() / 1000.0

    @property
    def max(self) -> float:
        if self.count == 0:
            return 0.0
        return self._histogram.get_max_value() / 1000.0

    @property
    def mean(self) -> float:
        # Exact integer sum, so the mean is independent of arrival order
        if self.count == 0:
            return 0.0
        return self._sum_us / self.count / 1000.0

    def merge(self, other: LatencyHistogram) -> None:
        """Fold ``other`` into this histogram."""
        self._histogram.add(other._histogram)
        self._sum_us += other._sum_us

    def reset(self) -> None:
        self._histogram.reset()
        self._sum_us = 0
