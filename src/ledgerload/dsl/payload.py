"""Request templates and the per-iteration request builder."""

from __future__ import annotations

import re
import secrets
import time
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any

from ledgerload._internal.errors import ConfigError

if TYPE_CHECKING:
    from ledgerload._internal.config import HarnessConfig
    from ledgerload._internal.types import Headers
    from ledgerload.dsl.scenario import Scenario

_CURRENCY = re.compile(r"^[A-Z]{3}$")


@dataclass(frozen=True)
class LineItem:
    """One journal line.

    Attributes:
        account_code: Chart-of-accounts code, e.g. ``CASH``.
        amount_cents: Amount in integer minor currency units.
        is_credit: True for a credit line, False for a debit line.
    """

    account_code: str
    amount_cents: int
    is_credit: bool

    def to_json(self) -> dict[str, Any]:
        return {
            "accountCode": self.account_code,
            "amountCents": self.amount_cents,
            "isCredit": self.is_credit,
        }


@dataclass(frozen=True)
class RequestTemplate:
    """Fixed shape of the request a scenario sends on every iteration.

    The harness never balances lines; the template author supplies a
    pre-balanced set. ``event_type`` switches the body to the event
    ingestion shape, adding ``eventType`` and ``occurredAt``.

    Attributes:
        path: Request path, e.g. ``/v1/events``.
        key_prefix: Prefix of generated idempotency keys.
        lines: Ordered journal lines.
        posted_date: Posting date sent as ``postedDate``.
        currency: Three-letter ISO currency code.
        created_by: Actor identifier sent as ``createdBy``.
        event_type: Event type for ingestion payloads, None for journal entries.
        source_system: Value of ``X-Source-System``, omitted when None.
        method: HTTP method.
        propagate_trace: Attach a fresh W3C ``traceparent`` to every request.
    """

    path: str
    key_prefix: str
    lines: tuple[LineItem, ...]
    posted_date: date = date(2026, 2, 25)
    currency: str = "USD"
    created_by: str = "ledgerload"
    event_type: str | None = None
    source_system: str | None = None
    method: str = "POST"
    propagate_trace: bool = False

    def __post_init__(self) -> None:
        if not self.path.startswith("/"):
            msg = f"Template path must start with '/', got {self.path!r}"
            raise ConfigError(msg)
        if not _CURRENCY.match(self.currency):
            msg = f"Currency must be a three-letter upper-case code, got {self.currency!r}"
            raise ConfigError(msg)
        if not self.lines:
            msg = "Template needs at least one line item"
            raise ConfigError(msg)
        object.__setattr__(self, "lines", tuple(self.lines))


@dataclass(frozen=True)
class Request:
    """A fully built request, ready to send."""

    method: str
    path: str
    headers: Headers
    body: dict[str, Any]
    idempotency_key: str


def make_idempotency_key(prefix: str, vu_index: int, iteration_index: int) -> str:
    """Return ``<prefix>-<vu>-<iteration>-<epoch ms>``.

    VU indices are never reused within a run and iteration numbers are
    sequential per VU, so the first three parts alone are unique; the
    timestamp keeps keys distinct across runs.
    """
    return f"{prefix}-{vu_index}-{iteration_index}-{time.time_ns() // 1_000_000}"


def _traceparent() -> str:
    return f"00-{secrets.token_hex(16)}-{secrets.token_hex(8)}-01"


class RequestBuilder:
    """Builds one :class:`Request` per iteration from a scenario's template.

    Args:
        config: Harness configuration supplying tenant and credentials.
    """

    def __init__(self, config: HarnessConfig) -> None:
        self._config = config

    def build(self, scenario: Scenario, vu_index: int, iteration_index: int) -> Request:
        """Build the request for iteration ``iteration_index`` of VU ``vu_index``."""
        template = scenario.template
        key = make_idempotency_key(template.key_prefix, vu_index, iteration_index)
        return Request(
            method=template.method,
            path=template.path,
            headers=self._headers(template),
            body=self._body(template, key),
            idempotency_key=key,
        )

    def _headers(self, template: RequestTemplate) -> Headers:
        headers: Headers = {
            "Content-Type": "application/json",
            "X-Tenant-Id": self._config.tenant_id,
            "Authorization": f"Bearer {self._config.token}",
        }
        if template.source_system is not None:
            headers["X-Source-System"] = template.source_system
        if self._config.actor_role is not None:
            headers["X-Actor-Role"] = self._config.actor_role
        if template.propagate_trace:
            headers["traceparent"] = _traceparent()
        return headers

    @staticmethod
    def _body(template: RequestTemplate, key: str) -> dict[str, Any]:
        body: dict[str, Any] = {"eventId": key}
        if template.event_type is not None:
            body["eventType"] = template.event_type
            body["occurredAt"] = datetime.now(UTC).isoformat()
        body.update(
            {
                "postedDate": template.posted_date.isoformat(),
                "transactionCurrency": template.currency,
                "createdBy": template.created_by,
                "lines": [line.to_json() for line in template.lines],
            }
        )
        return body
