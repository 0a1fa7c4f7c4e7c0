"""Tests for MetricSink."""

from __future__ import annotations

from ledgerload.metrics.models import HTTP_REQ_DURATION, ITERATIONS, MetricSample
from ledgerload.metrics.sink import MetricSink


class TestMetricSink:
    def test_emit_value_stamps_scenario(self):
        sink = MetricSink("journal-posting")
        sink.emit_value(HTTP_REQ_DURATION, 12.5, {"outcome": "accepted"})

        (sample,) = sink.drain()
        assert sample.scenario == "journal-posting"
        assert sample.metric == HTTP_REQ_DURATION
        assert sample.value == 12.5
        assert sample.tags == {"outcome": "accepted"}

    def test_emit_value_without_tags(self):
        sink = MetricSink("s")
        sink.emit_value(ITERATIONS, 1.0)
        assert sink.drain()[0].tags == {}

    def test_drain_preserves_order_and_empties(self):
        sink = MetricSink("s")
        for i in range(5):
            sink.emit(MetricSample(scenario="s", metric=HTTP_REQ_DURATION, value=float(i)))

        assert sink.pending_count == 5
        assert [s.value for s in sink.drain()] == [0.0, 1.0, 2.0, 3.0, 4.0]
        assert sink.pending_count == 0
        assert sink.drain() == []

    def test_emitted_count_survives_drain(self):
        sink = MetricSink("s")
        sink.emit_value(ITERATIONS, 1.0)
        sink.emit_value(ITERATIONS, 1.0)
        sink.drain()
        sink.emit_value(ITERATIONS, 1.0)

        assert sink.emitted_count == 3
        assert sink.pending_count == 1
