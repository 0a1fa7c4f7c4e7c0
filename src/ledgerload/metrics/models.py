"""Metric samples, outcomes and run report dataclasses."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from datetime import datetime

    from ledgerload._internal.types import Tags

__all__ = [
    "BUILTIN_METRICS",
    "CHECKS",
    "DROPPED_ITERATIONS",
    "HARNESS_ERRORS",
    "HTTP_REQS",
    "HTTP_REQ_DURATION",
    "HTTP_REQ_FAILED",
    "ITERATIONS",
    "ITERATION_DURATION",
    "MetricKind",
    "MetricSample",
    "MetricSnapshot",
    "MetricSummary",
    "Outcome",
    "RunReport",
    "ThresholdResult",
]


class Outcome(Enum):
    """Result of one iteration or one arrival."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    TRANSPORT_ERROR = "transport_error"
    DROPPED = "dropped"


class MetricKind(Enum):
    """How samples of a metric are aggregated."""

    TREND = "trend"
    RATE = "rate"
    COUNTER = "counter"


HTTP_REQ_DURATION = "http_req_duration"
HTTP_REQ_FAILED = "http_req_failed"
HTTP_REQS = "http_reqs"
CHECKS = "checks"
ITERATION_DURATION = "iteration_duration"
ITERATIONS = "iterations"
DROPPED_ITERATIONS = "dropped_iterations"
HARNESS_ERRORS = "harness_errors"

BUILTIN_METRICS: MappingProxyType[str, MetricKind] = MappingProxyType(
    {
        HTTP_REQ_DURATION: MetricKind.TREND,
        HTTP_REQ_FAILED: MetricKind.RATE,
        HTTP_REQS: MetricKind.COUNTER,
        CHECKS: MetricKind.RATE,
        ITERATION_DURATION: MetricKind.TREND,
        ITERATIONS: MetricKind.COUNTER,
        DROPPED_ITERATIONS: MetricKind.COUNTER,
        HARNESS_ERRORS: MetricKind.COUNTER,
    }
)


@dataclass(frozen=True)
class MetricSample:
    """One immutable observation appended to the metric sink.

    Attributes:
        scenario: Name of the scenario that produced the sample.
        metric: Metric name, one of :data:`BUILTIN_METRICS`.
        value: Latency in milliseconds for trends, 1.0 for counter events.
        tags: Low-cardinality labels (``outcome``, ``status``, ``error``).
        timestamp: Monotonic time when the sample was created.
    """

    scenario: str
    metric: str
    value: float
    tags: Tags = field(default_factory=dict)
    timestamp: float = field(default_factory=time.monotonic)


@dataclass
class MetricSummary:
    """Aggregated statistics of one metric.

    Attributes:
        name: Metric name.
        kind: Aggregation kind.
        values: Aggregation name to value, e.g. ``{"avg": 4.1, "p(99)": 9.8}``
            for trends, ``{"rate": 0.01, "passes": 1, "fails": 99}`` for rates
            and ``{"count": 10, "rate": 2.0}`` for counters.
    """

    name: str
    kind: MetricKind
    values: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class ThresholdResult:
    """Verdict of a single threshold.

    Attributes:
        threshold_id: ``"<metric>: <expression>"``.
        observed: Aggregated value the predicate was checked against.
        passed: Whether the predicate held.
    """

    threshold_id: str
    observed: float
    passed: bool


@dataclass
class MetricSnapshot:
    """Point-in-time view of the run, emitted every tick.

    Attributes:
        elapsed_seconds: Seconds since the run started.
        active_vus: Virtual users executing an iteration.
        pool_size: Virtual users currently in the pool.
        requests: Responses classified in this interval.
        requests_per_second: Response rate in this interval.
        iterations: Cumulative completed iterations.
        dropped: Cumulative overload drops.
        failure_rate: Cumulative ``http_req_failed`` rate.
        latency_p95: Cumulative 95th-percentile latency (ms).
        latency_p99: Cumulative 99th-percentile latency (ms).
    """

    elapsed_seconds: float
    active_vus: int
    pool_size: int
    requests: int = 0
    requests_per_second: float = 0.0
    iterations: int = 0
    dropped: int = 0
    failure_rate: float = 0.0
    latency_p95: float = 0.0
    latency_p99: float = 0.0


@dataclass
class RunReport:
    """Final result of a run.

    ``total`` counts classified responses only, so
    ``total == accepted + rejected + errored``. Overload drops and
    interrupted iterations never produced a response and are counted
    separately.
    """

    scenario_name: str
    mode: str
    started_at: datetime
    duration_seconds: float
    total: int = 0
    accepted: int = 0
    rejected: int = 0
    errored: int = 0
    dropped: int = 0
    interrupted: int = 0
    harness_errors: int = 0
    peak_vus: int = 0
    metrics: dict[str, MetricSummary] = field(default_factory=dict)
    thresholds: dict[str, ThresholdResult] = field(default_factory=dict)
    snapshots: list[MetricSnapshot] = field(default_factory=list)
    aborted_by: str | None = None

    @property
    def failure_rate(self) -> float:
        """Rejected (including transport errors) over all responses."""
        return (self.rejected + self.errored) / self.total if self.total else 0.0

    @property
    def passed(self) -> bool:
        """True iff the run was not aborted and every threshold passed."""
        if self.aborted_by is not None:
            return False
        return all(result.passed for result in self.thresholds.values())

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable view for external reporting."""
        return {
            "scenario": self.scenario_name,
            "mode": self.mode,
            "started_at": self.started_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "passed": self.passed,
            "aborted_by": self.aborted_by,
            "counts": {
                "total": self.total,
                "accepted": self.accepted,
                "rejected": self.rejected,
                "errored": self.errored,
                "dropped": self.dropped,
                "interrupted": self.interrupted,
                "harness_errors": self.harness_errors,
            },
            "failure_rate": self.failure_rate,
            "peak_vus": self.peak_vus,
            "metrics": {
                name: {"kind": summary.kind.value, **summary.values}
                for name, summary in self.metrics.items()
            },
            "thresholds": {
                threshold_id: {"observed": result.observed, "passed": result.passed}
                for threshold_id, result in self.thresholds.items()
            },
        }
