"""Tests for request templates and the request builder."""

from __future__ import annotations

import re
from datetime import date

import pytest

from ledgerload._internal.config import HarnessConfig
from ledgerload._internal.errors import ConfigError
from ledgerload.dsl.payload import (
    LineItem,
    RequestBuilder,
    RequestTemplate,
    make_idempotency_key,
)
from ledgerload.dsl.scenario import Scenario

_TRACEPARENT = re.compile(r"^00-[0-9a-f]{32}-[0-9a-f]{16}-01$")


def _scenario(template: RequestTemplate) -> Scenario:
    return Scenario.closed_workload(
        name="payload-test",
        template=template,
        accepted_statuses={201, 409},
        vus=1,
        iterations_per_vu=1,
    )


class TestRequestTemplate:
    def test_defaults(self, journal_template: RequestTemplate):
        assert journal_template.method == "POST"
        assert journal_template.currency == "USD"
        assert journal_template.posted_date == date(2026, 2, 25)
        assert journal_template.event_type is None

    def test_path_must_be_absolute(self, balanced_lines: tuple[LineItem, ...]):
        with pytest.raises(ConfigError, match="must start with"):
            RequestTemplate(path="v1/events", key_prefix="x", lines=balanced_lines)

    def test_currency_validated(self, balanced_lines: tuple[LineItem, ...]):
        with pytest.raises(ConfigError, match="Currency"):
            RequestTemplate(path="/v1/events", key_prefix="x", lines=balanced_lines, currency="usd")

    def test_lines_required(self):
        with pytest.raises(ConfigError, match="line item"):
            RequestTemplate(path="/v1/events", key_prefix="x", lines=())

    def test_line_item_json(self):
        line = LineItem(account_code="CASH", amount_cents=100, is_credit=False)
        assert line.to_json() == {"accountCode": "CASH", "amountCents": 100, "isCredit": False}


class TestIdempotencyKey:
    def test_format(self):
        key = make_idempotency_key("je", 3, 17)
        prefix, vu, iteration, epoch_ms = key.split("-")
        assert (prefix, vu, iteration) == ("je", "3", "17")
        assert epoch_ms.isdigit()

    def test_unique_across_vus_and_iterations(self):
        keys = {make_idempotency_key("ing", vu, it) for vu in range(1, 21) for it in range(50)}
        assert len(keys) == 20 * 50


class TestRequestBuilder:
    def test_journal_request(self, journal_template: RequestTemplate, harness_config: HarnessConfig):
        request = RequestBuilder(harness_config).build(_scenario(journal_template), 2, 5)

        assert request.method == "POST"
        assert request.path == "/v1/journal-entries"
        assert request.idempotency_key.startswith("je-2-5-")
        assert request.body["eventId"] == request.idempotency_key
        assert request.body["postedDate"] == "2026-02-25"
        assert request.body["transactionCurrency"] == "USD"
        assert "eventType" not in request.body
        assert "occurredAt" not in request.body

    def test_body_lines_are_balanced(
        self, journal_template: RequestTemplate, harness_config: HarnessConfig
    ):
        body = RequestBuilder(harness_config).build(_scenario(journal_template), 1, 0).body
        debits = sum(line["amountCents"] for line in body["lines"] if not line["isCredit"])
        credits = sum(line["amountCents"] for line in body["lines"] if line["isCredit"])
        assert debits == credits == 100

    def test_headers(self, journal_template: RequestTemplate, harness_config: HarnessConfig):
        headers = RequestBuilder(harness_config).build(_scenario(journal_template), 1, 0).headers

        assert headers["Content-Type"] == "application/json"
        assert headers["X-Tenant-Id"] == harness_config.tenant_id
        assert headers["Authorization"] == "Bearer test-token"
        assert "X-Actor-Role" not in headers
        assert "X-Source-System" not in headers
        assert "traceparent" not in headers

    def test_event_request(self, event_template: RequestTemplate, harness_config: HarnessConfig):
        request = RequestBuilder(harness_config).build(_scenario(event_template), 1, 0)

        assert request.headers["X-Source-System"] == "LEDGERLOAD"
        assert request.body["eventType"] == "LOAD_EVENT"
        assert "occurredAt" in request.body
        assert request.idempotency_key.startswith("ing-1-0-")

    def test_actor_role_and_trace(self, balanced_lines: tuple[LineItem, ...]):
        config = HarnessConfig(actor_role="ADMIN")
        template = RequestTemplate(
            path="/v1/journal-entries",
            key_prefix="je",
            lines=balanced_lines,
            propagate_trace=True,
        )
        builder = RequestBuilder(config)
        first = builder.build(_scenario(template), 1, 0).headers
        second = builder.build(_scenario(template), 1, 1).headers

        assert first["X-Actor-Role"] == "ADMIN"
        assert _TRACEPARENT.match(first["traceparent"])
        assert first["traceparent"] != second["traceparent"]
