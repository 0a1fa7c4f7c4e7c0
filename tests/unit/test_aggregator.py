"""Tests for MetricsAggregator."""

from __future__ import annotations

import random
from datetime import UTC, datetime

from ledgerload.metrics.aggregator import MetricsAggregator
from ledgerload.metrics.models import (
    CHECKS,
    DROPPED_ITERATIONS,
    HARNESS_ERRORS,
    HTTP_REQ_DURATION,
    HTTP_REQ_FAILED,
    HTTP_REQS,
    ITERATION_DURATION,
    ITERATIONS,
    MetricKind,
    MetricSample,
    Outcome,
)
from ledgerload.metrics.sink import MetricSink
from ledgerload.metrics.store import MetricStore
from ledgerload.metrics.thresholds import Threshold, parse_thresholds


def _response(latency_ms: float, outcome: Outcome = Outcome.ACCEPTED) -> MetricSample:
    return MetricSample(
        scenario="test",
        metric=HTTP_REQ_DURATION,
        value=latency_ms,
        tags={"outcome": outcome.value},
    )


def _mixed_samples() -> list[MetricSample]:
    samples = [_response(float(i)) for i in range(1, 91)]
    samples += [_response(50.0, Outcome.REJECTED) for _ in range(8)]
    samples += [_response(5000.0, Outcome.TRANSPORT_ERROR) for _ in range(2)]
    return samples


class TestRecording:
    def test_response_samples_feed_derived_metrics(self):
        agg = MetricsAggregator()
        for sample in _mixed_samples():
            agg.record(sample)

        assert agg.accepted == 90
        assert agg.rejected == 8
        assert agg.errored == 2
        assert agg.value(HTTP_REQS, "count") == 100
        assert agg.value(HTTP_REQ_FAILED, "rate") == 0.1
        assert agg.value(CHECKS, "rate") == 0.9
        assert agg.failure_rate == 0.1

    def test_transport_errors_stay_out_of_latency_trend(self):
        agg = MetricsAggregator()
        for sample in _mixed_samples():
            agg.record(sample)

        assert agg.value(HTTP_REQ_DURATION, "count") == 98
        assert agg.value(HTTP_REQ_DURATION, "max") < 100.0

    def test_iteration_samples_count_iterations(self):
        agg = MetricsAggregator()
        for _ in range(3):
            agg.record(MetricSample(scenario="t", metric=ITERATION_DURATION, value=20.0))

        assert agg.value(ITERATIONS, "count") == 3
        assert agg.value(ITERATION_DURATION, "avg") == 20.0

    def test_drops_are_not_failures(self):
        agg = MetricsAggregator()
        agg.record(_response(10.0))
        for _ in range(4):
            agg.record(MetricSample(scenario="t", metric=DROPPED_ITERATIONS, value=1.0))

        assert agg.dropped == 4
        assert agg.value(DROPPED_ITERATIONS, "count") == 4
        assert agg.failure_rate == 0.0

    def test_harness_errors_counter(self):
        agg = MetricsAggregator()
        agg.record(MetricSample(scenario="t", metric=HARNESS_ERRORS, value=1.0))
        assert agg.value(HARNESS_ERRORS, "count") == 1

    def test_unknown_metric_is_ignored(self):
        agg = MetricsAggregator()
        agg.record(MetricSample(scenario="t", metric="custom_metric", value=1.0))
        agg.record(MetricSample(scenario="t", metric="custom_metric", value=1.0))
        assert agg.value(HTTP_REQS, "count") == 0

    def test_drain_from_sink(self):
        sink = MetricSink("t")
        for _ in range(7):
            sink.emit_value(HTTP_REQ_DURATION, 3.0, {"outcome": "accepted"})

        agg = MetricsAggregator()
        assert agg.drain(sink) == 7
        assert agg.accepted == 7
        assert sink.pending_count == 0


class TestQueries:
    def test_empty_metrics_evaluate_to_zero(self):
        agg = MetricsAggregator()
        assert agg.value(HTTP_REQ_DURATION, "p(99)") == 0.0
        assert agg.value(HTTP_REQ_FAILED, "rate") == 0.0
        assert agg.value(ITERATIONS, "rate", elapsed_seconds=10.0) == 0.0

    def test_counter_rate_uses_elapsed(self):
        agg = MetricsAggregator()
        for _ in range(20):
            agg.record(_response(1.0))
        assert agg.value(HTTP_REQS, "rate", elapsed_seconds=4.0) == 5.0
        assert agg.value(HTTP_REQS, "rate", elapsed_seconds=0.0) == 0.0

    def test_trend_summary_keys(self):
        agg = MetricsAggregator()
        for i in range(1, 101):
            agg.record(_response(float(i)))

        summary = agg.summarize(HTTP_REQ_DURATION)
        assert summary.kind is MetricKind.TREND
        assert set(summary.values) == {"count", "avg", "min", "med", "max", "p(90)", "p(95)", "p(99)"}
        assert summary.values["count"] == 100
        assert 49.0 <= summary.values["med"] <= 51.0

    def test_rate_summary(self):
        agg = MetricsAggregator()
        agg.record(_response(1.0, Outcome.REJECTED))
        agg.record(_response(1.0))

        summary = agg.summarize(HTTP_REQ_FAILED)
        assert summary.values == {"rate": 0.5, "passes": 1.0, "fails": 1.0}


class TestEvaluate:
    def test_pass_and_fail(self):
        agg = MetricsAggregator()
        for sample in _mixed_samples():
            agg.record(sample)

        thresholds = parse_thresholds(
            {
                "http_req_failed": ["rate<0.01"],
                "http_req_duration": ["p(99)<200"],
            }
        )
        results = agg.evaluate(thresholds)

        failed = results["http_req_failed: rate<0.01"]
        assert not failed.passed
        assert failed.observed == 0.1
        assert results["http_req_duration: p(99)<200"].passed

    def test_order_independent(self):
        samples = _mixed_samples()
        shuffled = list(samples)
        random.Random(7).shuffle(shuffled)

        thresholds = parse_thresholds(
            {
                "http_req_duration": ["p(95)<80", "avg<60", "med<50"],
                "http_req_failed": ["rate<0.2"],
                "http_reqs": ["count>=100"],
            }
        )

        a = MetricsAggregator()
        b = MetricsAggregator()
        for sample in samples:
            a.record(sample)
        for sample in shuffled:
            b.record(sample)

        assert a.evaluate(thresholds) == b.evaluate(thresholds)

    def test_evaluate_with_no_samples(self):
        agg = MetricsAggregator()
        results = agg.evaluate([Threshold.parse("http_req_failed", "rate<0.01")])
        assert results["http_req_failed: rate<0.01"].passed


class TestSnapshotsAndReport:
    def test_snapshot_interval_rate(self):
        store = MetricStore()
        agg = MetricsAggregator(store=store)
        for _ in range(10):
            agg.record(_response(5.0))
        first = agg.snapshot(1.0, active_vus=2, pool_size=4)
        for _ in range(30):
            agg.record(_response(5.0))
        second = agg.snapshot(2.0, active_vus=3, pool_size=4)

        assert first.requests == 10
        assert first.requests_per_second == 10.0
        assert second.requests == 30
        assert second.requests_per_second == 30.0
        assert second.active_vus == 3
        assert store.get_all() == [first, second]

    def test_build_report(self):
        agg = MetricsAggregator(store=MetricStore())
        for sample in _mixed_samples():
            agg.record(sample)
        agg.record(MetricSample(scenario="t", metric=DROPPED_ITERATIONS, value=1.0))
        agg.snapshot(1.0, active_vus=1, pool_size=1)

        report = agg.build_report(
            scenario_name="test",
            mode="closed-workload",
            started_at=datetime.now(UTC),
            elapsed_seconds=1.0,
            thresholds=parse_thresholds({"http_req_failed": ["rate<0.01"]}),
            peak_vus=4,
            interrupted=1,
        )

        assert report.total == 100
        assert report.total == report.accepted + report.rejected + report.errored
        assert report.dropped == 1
        assert report.interrupted == 1
        assert report.failure_rate == 0.1
        assert not report.passed
        assert len(report.snapshots) == 1
        assert set(report.metrics) >= {HTTP_REQ_DURATION, HTTP_REQ_FAILED, ITERATIONS}

        data = report.to_dict()
        assert data["counts"]["total"] == 100
        assert data["passed"] is False
        assert data["thresholds"]["http_req_failed: rate<0.01"]["observed"] == 0.1

    def test_aborted_report_never_passes(self):
        agg = MetricsAggregator()
        report = agg.build_report(
            scenario_name="test",
            mode="closed-workload",
            started_at=datetime.now(UTC),
            elapsed_seconds=1.0,
            thresholds=parse_thresholds({"iterations": ["count>=0"]}),
            peak_vus=1,
        )
        assert report.passed

        report.aborted_by = "iterations: count>=5"

        assert not report.passed
        assert report.to_dict()["passed"] is False
