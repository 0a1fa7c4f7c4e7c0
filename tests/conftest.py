"""Shared test fixtures for the ledgerload test suite."""

from __future__ import annotations

import asyncio
import socket
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import pytest
from aiohttp import web

from ledgerload._internal.config import HarnessConfig
from ledgerload.dsl.payload import LineItem, RequestTemplate

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator
    from pathlib import Path


# =============================================================================
# Pytest configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-apply markers based on test directory structure."""
    for item in items:
        test_path = str(item.fspath)
        if "/unit/" in test_path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
        elif "/e2e/" in test_path:
            item.add_marker(pytest.mark.e2e)


# =============================================================================
# Network utilities
# =============================================================================


def _get_free_port() -> int:
    """Find an available port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


# =============================================================================
# Fake ledger server
# =============================================================================


@dataclass
class FakeLedger:
    """State of the in-process ledger stand-in.

    Attributes:
        base_url: URL the server listens on.
        received: Every request seen, as ``{"path", "headers", "body"}``.
        seen_keys: Idempotency keys already accepted.
    """

    base_url: str = ""
    received: list[dict[str, Any]] = field(default_factory=list)
    seen_keys: set[str] = field(default_factory=set)
    flaky_calls: int = 0


def _create_ledger_app(ledger: FakeLedger) -> web.Application:
    """Build the fake ledger app.

    Routes:
        POST /v1/events: 202, or 409 for a replayed ``eventId``.
        POST /v1/journal-entries: 201, or 409 for a replayed ``eventId``.
        POST /flaky/...: alternates 500 and 201.
        POST /slow/...: 202 after ``?delay`` seconds (default 0.1).
    """

    async def _record(request: web.Request) -> dict[str, Any]:
        body = await request.json()
        ledger.received.append(
            {"path": request.path, "headers": dict(request.headers), "body": body}
        )
        return body

    async def _write(request: web.Request, created_status: int) -> web.Response:
        if "X-Tenant-Id" not in request.headers:
            return web.json_response({"error": "missing tenant"}, status=400)
        body = await _record(request)
        key = body.get("eventId", "")
        if key in ledger.seen_keys:
            return web.json_response({"status": "duplicate"}, status=409)
        ledger.seen_keys.add(key)
        return web.json_response({"id": key}, status=created_status)

    async def _events_handler(request: web.Request) -> web.Response:
        return await _write(request, 202)

    async def _journal_handler(request: web.Request) -> web.Response:
        return await _write(request, 201)

    async def _flaky_handler(request: web.Request) -> web.Response:
        await _record(request)
        ledger.flaky_calls += 1
        if ledger.flaky_calls % 2:
            return web.json_response({"error": "boom"}, status=500)
        return web.json_response({"status": "ok"}, status=201)

    async def _slow_handler(request: web.Request) -> web.Response:
        await _record(request)
        await asyncio.sleep(float(request.query.get("delay", "0.1")))
        return web.json_response({"status": "ok"}, status=202)

    app = web.Application()
    app.router.add_post("/v1/events", _events_handler)
    app.router.add_post("/v1/journal-entries", _journal_handler)
    app.router.add_post("/flaky/{tail:.*}", _flaky_handler)
    app.router.add_post("/slow/{tail:.*}", _slow_handler)
    return app


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
async def ledger_server() -> AsyncIterator[FakeLedger]:
    """Fake ledger running on the test's event loop."""
    ledger = FakeLedger()
    port = _get_free_port()
    runner = web.AppRunner(_create_ledger_app(ledger))
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", port)
    await site.start()
    ledger.base_url = f"http://127.0.0.1:{port}"
    yield ledger
    await runner.cleanup()


@pytest.fixture
def sync_ledger_server() -> Iterator[FakeLedger]:
    """Fake ledger running in a background thread.

    For tests where the code under test owns the event loop, such as the
    CLI, which calls ``asyncio.run``.
    """
    ledger = FakeLedger()
    port = _get_free_port()
    started = threading.Event()
    loop_holder: list[asyncio.AbstractEventLoop] = []

    def _thread_target() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        runner = web.AppRunner(_create_ledger_app(ledger))
        loop.run_until_complete(runner.setup())
        site = web.TCPSite(runner, "127.0.0.1", port)
        loop.run_until_complete(site.start())
        loop_holder.append(loop)
        started.set()
        loop.run_forever()
        loop.run_until_complete(runner.cleanup())
        loop.close()

    thread = threading.Thread(target=_thread_target, daemon=True)
    thread.start()
    started.wait(timeout=5.0)
    ledger.base_url = f"http://127.0.0.1:{port}"

    yield ledger

    if loop_holder:
        loop_holder[0].call_soon_threadsafe(loop_holder[0].stop)
    thread.join(timeout=5.0)


@pytest.fixture
def balanced_lines() -> tuple[LineItem, ...]:
    return (
        LineItem(account_code="CASH", amount_cents=100, is_credit=False),
        LineItem(account_code="REV", amount_cents=100, is_credit=True),
    )


@pytest.fixture
def journal_template(balanced_lines: tuple[LineItem, ...]) -> RequestTemplate:
    return RequestTemplate(path="/v1/journal-entries", key_prefix="je", lines=balanced_lines)


@pytest.fixture
def event_template(balanced_lines: tuple[LineItem, ...]) -> RequestTemplate:
    return RequestTemplate(
        path="/v1/events",
        key_prefix="ing",
        lines=balanced_lines,
        event_type="LOAD_EVENT",
        source_system="LEDGERLOAD",
    )


@pytest.fixture
def harness_config() -> HarnessConfig:
    return HarnessConfig(
        tenant_id="11111111-2222-3333-4444-555555555555",
        token="test-token",
        tick_interval=0.2,
        request_timeout=5.0,
    )


@pytest.fixture
def scenario_file(tmp_path: Path, sync_ledger_server: FakeLedger) -> Path:
    """A custom scenario file targeting the flaky route of the sync server."""
    code = '''\
from __future__ import annotations

from ledgerload import LineItem, RequestTemplate, Scenario

FLAKY = Scenario.closed_workload(
    name="flaky-journal",
    template=RequestTemplate(
        path="/flaky/v1/journal-entries",
        key_prefix="fj",
        lines=(
            LineItem(account_code="CASH", amount_cents=100, is_credit=False),
            LineItem(account_code="REV", amount_cents=100, is_credit=True),
        ),
    ),
    accepted_statuses={201, 409},
    vus=2,
    iterations_per_vu=5,
    thresholds={"http_req_failed": ["rate<0.1"]},
)

HEALTHY = Scenario.closed_workload(
    name="healthy-journal",
    template=RequestTemplate(
        path="/v1/journal-entries",
        key_prefix="hj",
        lines=(
            LineItem(account_code="CASH", amount_cents=100, is_credit=False),
            LineItem(account_code="REV", amount_cents=100, is_credit=True),
        ),
    ),
    accepted_statuses={201, 409},
    vus=2,
    iterations_per_vu=5,
    thresholds={"http_req_failed": ["rate<0.01"]},
)
'''
    path = tmp_path / "custom_scenarios.py"
    path.write_text(code)
    return path
