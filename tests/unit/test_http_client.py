"""Tests for the timed HTTP client and RawResponse."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from ledgerload.dsl.http_client import HttpClient, RawResponse
from ledgerload.dsl.payload import Request

if TYPE_CHECKING:
    from tests.conftest import FakeLedger


def _request(path: str = "/v1/events", key: str = "ing-1-0-1") -> Request:
    return Request(
        method="POST",
        path=path,
        headers={"Content-Type": "application/json", "X-Tenant-Id": "t"},
        body={"eventId": key},
        idempotency_key=key,
    )


class TestRawResponse:
    def test_success_has_no_error(self):
        response = RawResponse(status_code=202, latency_ms=4.2)
        assert not response.transport_error
        assert response.error_type is None

    def test_error_type(self):
        response = RawResponse(status_code=0, latency_ms=1.0, error="ClientConnectorError: refused")
        assert response.transport_error
        assert response.error_type == "ClientConnectorError"


class TestHttpClient:
    async def test_post_returns_status_and_latency(self, ledger_server: FakeLedger):
        async with HttpClient(ledger_server.base_url) as client:
            response = await client.send(_request())

        assert response.status_code == 202
        assert response.latency_ms > 0
        assert response.error is None
        assert ledger_server.received[0]["body"] == {"eventId": "ing-1-0-1"}

    async def test_replayed_key_returns_409(self, ledger_server: FakeLedger):
        async with HttpClient(ledger_server.base_url) as client:
            first = await client.send(_request())
            second = await client.send(_request())

        assert first.status_code == 202
        assert second.status_code == 409

    async def test_sends_headers(self, ledger_server: FakeLedger):
        async with HttpClient(ledger_server.base_url) as client:
            await client.send(_request("/v1/journal-entries"))

        assert ledger_server.received[0]["headers"]["X-Tenant-Id"] == "t"

    async def test_connection_refused_is_transport_error(self):
        async with HttpClient("http://127.0.0.1:1") as client:
            response = await client.send(_request())

        assert response.status_code == 0
        assert response.transport_error

    async def test_timeout_is_transport_error(self, ledger_server: FakeLedger):
        async with HttpClient(ledger_server.base_url, timeout=0.05) as client:
            response = await client.send(_request("/slow/v1/events?delay=1.0"))

        assert response.transport_error
        assert response.error_type is not None

    async def test_send_outside_context_raises(self):
        client = HttpClient("http://127.0.0.1:1")
        with pytest.raises(RuntimeError, match="context manager"):
            await client.send(_request())

    async def test_trailing_slash_stripped(self):
        assert HttpClient("http://example.com/").base_url == "http://example.com"
