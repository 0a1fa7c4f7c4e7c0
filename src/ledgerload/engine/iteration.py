"""The per-iteration body: build one request, send it, classify the response."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ledgerload.dsl.classifier import ResponseClassifier
    from ledgerload.dsl.http_client import HttpClient
    from ledgerload.dsl.payload import RequestBuilder
    from ledgerload.dsl.scenario import Scenario
    from ledgerload.engine.pool import Iteration
    from ledgerload.metrics.models import Outcome


class IterationBody:
    """Callable executed by a virtual user for every iteration.

    Args:
        scenario: Scenario whose template and acceptance set apply.
        builder: Builds the request for each (VU, iteration) pair.
        client: Shared HTTP client.
        classifier: Classifies the response and emits its sample.
    """

    def __init__(
        self,
        scenario: Scenario,
        builder: RequestBuilder,
        client: HttpClient,
        classifier: ResponseClassifier,
    ) -> None:
        self._scenario = scenario
        self._builder = builder
        self._client = client
        self._classifier = classifier

    async def __call__(self, iteration: Iteration) -> Outcome:
        request = self._builder.build(self._scenario, iteration.vu_index, iteration.sequence)
        iteration.idempotency_key = request.idempotency_key
        response = await self._client.send(request)
        return self._classifier.classify(self._scenario, response)
