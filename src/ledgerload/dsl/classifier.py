"""Maps raw responses to iteration outcomes."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ledgerload.metrics.models import HTTP_REQ_DURATION, Outcome

if TYPE_CHECKING:
    from ledgerload.dsl.http_client import RawResponse
    from ledgerload.dsl.scenario import Scenario
    from ledgerload.metrics.sink import MetricSink


def classify(scenario: Scenario, response: RawResponse) -> Outcome:
    """Return the outcome of ``response`` under ``scenario``'s acceptance set.

    A 409 listed in the acceptance set is a success: the service answers a
    replayed idempotency key with a conflict, and that no-op is exactly the
    behaviour under test.
    """
    if response.transport_error:
        return Outcome.TRANSPORT_ERROR
    if response.status_code in scenario.accepted_statuses:
        return Outcome.ACCEPTED
    return Outcome.REJECTED


class ResponseClassifier:
    """Classifies responses and emits one ``http_req_duration`` sample each.

    Args:
        sink: Metric sink receiving the samples.
    """

    def __init__(self, sink: MetricSink) -> None:
        self._sink = sink

    def classify(self, scenario: Scenario, response: RawResponse) -> Outcome:
        outcome = classify(scenario, response)
        tags = {"outcome": outcome.value, "status": str(response.status_code)}
        if response.error_type is not None:
            tags["error"] = response.error_type
        self._sink.emit_value(HTTP_REQ_DURATION, response.latency_ms, tags)
        return outcome
