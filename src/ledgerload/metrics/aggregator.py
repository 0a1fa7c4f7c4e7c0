"""Streaming aggregation of metric samples and threshold evaluation.

The ``MetricsAggregator`` folds every ``MetricSample`` into constant-size
state: HDR histograms for trends, pass/total pairs for rates and integer
totals for counters. No sample is retained, so a run of millions of
requests costs the same memory as a run of ten.

Every statistic is derived from integer counts or histogram buckets, which
makes evaluation independent of the order in which samples arrived.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ledgerload._internal.logging import get_logger
from ledgerload.metrics.histogram import LatencyHistogram
from ledgerload.metrics.models import (
    BUILTIN_METRICS,
    CHECKS,
    DROPPED_ITERATIONS,
    HARNESS_ERRORS,
    HTTP_REQ_DURATION,
    HTTP_REQ_FAILED,
    HTTP_REQS,
    ITERATION_DURATION,
    ITERATIONS,
    MetricKind,
    MetricSnapshot,
    MetricSummary,
    Outcome,
    RunReport,
    ThresholdResult,
)

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from ledgerload.metrics.models import MetricSample
    from ledgerload.metrics.sink import MetricSink
    from ledgerload.metrics.store import MetricStore
    from ledgerload.metrics.thresholds import Threshold

logger = get_logger("metrics.aggregator")

_TREND_PERCENTILES = (90.0, 95.0, 99.0)


class MetricsAggregator:
    """Accumulates samples for one run and answers threshold queries.

    Response samples (``http_req_duration``) also feed the derived
    ``http_reqs`` counter and the ``http_req_failed`` and ``checks`` rates;
    iteration samples feed the ``iterations`` counter. Transport errors are
    counted as failed requests but kept out of the latency trend since no
    response was ever received.

    Attributes:
        store: Optional store receiving a snapshot per :meth:`snapshot` call.
    """

    def __init__(self, store: MetricStore | None = None) -> None:
        self.store = store
        self._trends: dict[str, LatencyHistogram] = {}
        self._rates: dict[str, list[int]] = {}
        self._counters: dict[str, int] = {}
        self._outcomes: dict[Outcome, int] = dict.fromkeys(Outcome, 0)
        self._unknown_metrics: set[str] = set()

        # Interval state for snapshots
        self._last_tick_requests = 0
        self._last_tick_elapsed = 0.0

        for name, kind in BUILTIN_METRICS.items():
            self._ensure(name, kind)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record(self, sample: MetricSample) -> None:
        """Fold one sample into the running statistics."""
        metric = sample.metric
        kind = BUILTIN_METRICS.get(metric)

        if metric == HTTP_REQ_DURATION:
            self._record_response(sample)
        elif metric == ITERATION_DURATION:
            self._trends[ITERATION_DURATION].record(sample.value)
            self._counters[ITERATIONS] += 1
        elif metric == DROPPED_ITERATIONS:
            self._counters[DROPPED_ITERATIONS] += int(sample.value)
            self._outcomes[Outcome.DROPPED] += int(sample.value)
        elif kind is MetricKind.COUNTER:
            self._counters[metric] += int(sample.value)
        elif kind is MetricKind.TREND:
            self._trends[metric].record(sample.value)
        elif kind is MetricKind.RATE:
            self._add_rate(metric, passed=sample.value != 0)
        elif metric not in self._unknown_metrics:
            self._unknown_metrics.add(metric)
            logger.warning("Ignoring samples of unknown metric %r", metric)

    def drain(self, sink: MetricSink) -> int:
        """Record every pending sample of ``sink``; return how many."""
        samples = sink.drain()
        for sample in samples:
            self.record(sample)
        return len(samples)

    def _record_response(self, sample: MetricSample) -> None:
        outcome = Outcome(sample.tags.get("outcome", Outcome.ACCEPTED.value))
        self._outcomes[outcome] += 1
        self._counters[HTTP_REQS] += 1
        if outcome is not Outcome.TRANSPORT_ERROR:
            self._trends[HTTP_REQ_DURATION].record(sample.value)
        accepted = outcome is Outcome.ACCEPTED
        self._add_rate(HTTP_REQ_FAILED, passed=not accepted)
        self._add_rate(CHECKS, passed=accepted)

    def _add_rate(self, metric: str, *, passed: bool) -> None:
        tally = self._rates[metric]
        if passed:
            tally[0] += 1
        tally[1] += 1

    def _ensure(self, name: str, kind: MetricKind) -> None:
        if kind is MetricKind.TREND:
            self._trends[name] = LatencyHistogram()
        elif kind is MetricKind.RATE:
            self._rates[name] = [0, 0]
        else:
            self._counters[name] = 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def accepted(self) -> int:
        return self._outcomes[Outcome.ACCEPTED]

    @property
    def rejected(self) -> int:
        return self._outcomes[Outcome.REJECTED]

    @property
    def errored(self) -> int:
        return self._outcomes[Outcome.TRANSPORT_ERROR]

    @property
    def dropped(self) -> int:
        return self._outcomes[Outcome.DROPPED]

    @property
    def failure_rate(self) -> float:
        """rejected / (accepted + rejected), transport errors counted as rejected."""
        passes, total = self._rates[HTTP_REQ_FAILED]
        return passes / total if total else 0.0

    def value(self, metric: str, aggregation: str, elapsed_seconds: float = 0.0) -> float:
        """Return one aggregation of one metric.

        Args:
            metric: Built-in metric name.
            aggregation: ``avg``, ``min``, ``max``, ``med``, ``count``,
                ``rate`` or ``p(N)``.
            elapsed_seconds: Run duration, used for counter rates.

        Returns:
            The aggregated value, 0.0 for metrics without samples.
        """
        kind = BUILTIN_METRICS[metric]
        if kind is MetricKind.TREND:
            hist = self._trends[metric]
            if aggregation.startswith("p("):
                return hist.percentile(float(aggregation[2:-1]))
            trend_values = {
                "avg": hist.mean,
                "min": hist.min,
                "max": hist.max,
                "med": hist.percentile(50.0),
                "count": float(hist.count),
            }
            return trend_values[aggregation]
        if kind is MetricKind.RATE:
            passes, total = self._rates[metric]
            return passes / total if total else 0.0
        count = self._counters[metric]
        if aggregation == "rate":
            return count / elapsed_seconds if elapsed_seconds > 0 else 0.0
        return float(count)

    def summarize(self, metric: str, elapsed_seconds: float = 0.0) -> MetricSummary:
        """Return the standard summary of one metric."""
        kind = BUILTIN_METRICS[metric]
        if kind is MetricKind.TREND:
            hist = self._trends[metric]
            values = {
                "count": float(hist.count),
                "avg": hist.mean,
                "min": hist.min,
                "med": hist.percentile(50.0),
                "max": hist.max,
            }
            for pct in _TREND_PERCENTILES:
                values[f"p({pct:g})"] = hist.percentile(pct)
        elif kind is MetricKind.RATE:
            passes, total = self._rates[metric]
            values = {
                "rate": passes / total if total else 0.0,
                "passes": float(passes),
                "fails": float(total - passes),
            }
        else:
            values = {
                "count": float(self._counters[metric]),
                "rate": self.value(metric, "rate", elapsed_seconds),
            }
        return MetricSummary(name=metric, kind=kind, values=values)

    def evaluate(
        self,
        thresholds: Iterable[Threshold],
        elapsed_seconds: float = 0.0,
    ) -> dict[str, ThresholdResult]:
        """Evaluate ``thresholds`` against everything recorded so far.

        Pure with respect to recorded samples: the same sample set always
        yields the same verdicts.

        Returns:
            Threshold id to :class:`ThresholdResult`.
        """
        results: dict[str, ThresholdResult] = {}
        for threshold in thresholds:
            observed = self.value(threshold.metric, threshold.aggregation, elapsed_seconds)
            results[threshold.threshold_id] = ThresholdResult(
                threshold_id=threshold.threshold_id,
                observed=observed,
                passed=threshold.check(observed),
            )
        return results

    # ------------------------------------------------------------------
    # Snapshots and report
    # ------------------------------------------------------------------

    def snapshot(self, elapsed_seconds: float, active_vus: int, pool_size: int) -> MetricSnapshot:
        """Build the snapshot for the interval ending now and store it."""
        requests = self._counters[HTTP_REQS]
        interval_requests = requests - self._last_tick_requests
        interval = max(elapsed_seconds - self._last_tick_elapsed, 0.001)
        self._last_tick_requests = requests
        self._last_tick_elapsed = elapsed_seconds

        latency = self._trends[HTTP_REQ_DURATION]
        snapshot = MetricSnapshot(
            elapsed_seconds=elapsed_seconds,
            active_vus=active_vus,
            pool_size=pool_size,
            requests=interval_requests,
            requests_per_second=interval_requests / interval,
            iterations=self._counters[ITERATIONS],
            dropped=self._counters[DROPPED_ITERATIONS],
            failure_rate=self.failure_rate,
            latency_p95=latency.percentile(95.0),
            latency_p99=latency.percentile(99.0),
        )
        if self.store is not None:
            self.store.append(snapshot)
        return snapshot

    def build_report(
        self,
        *,
        scenario_name: str,
        mode: str,
        started_at: datetime,
        elapsed_seconds: float,
        thresholds: Iterable[Threshold],
        peak_vus: int,
        interrupted: int = 0,
    ) -> RunReport:
        """Assemble the final :class:`RunReport`."""
        return RunReport(
            scenario_name=scenario_name,
            mode=mode,
            started_at=started_at,
            duration_seconds=elapsed_seconds,
            total=self.accepted + self.rejected + self.errored,
            accepted=self.accepted,
            rejected=self.rejected,
            errored=self.errored,
            dropped=self.dropped,
            interrupted=interrupted,
            harness_errors=self._counters[HARNESS_ERRORS],
            peak_vus=peak_vus,
            metrics={name: self.summarize(name, elapsed_seconds) for name in BUILTIN_METRICS},
            thresholds=self.evaluate(thresholds, elapsed_seconds),
            snapshots=self.store.get_all() if self.store is not None else [],
        )
