"""Canonical scenarios for the ledger's two write endpoints.

``event-ingestion`` drives ``POST /v1/events`` at a sustained arrival rate;
``journal-posting`` drives ``POST /v1/journal-entries`` with a fixed pool of
looping users. Both post the same pre-balanced entry and treat 409 as a
successful idempotent replay.
"""

from __future__ import annotations

from ledgerload.dsl.payload import LineItem, RequestTemplate
from ledgerload.dsl.scenario import Scenario, ScenarioRegistry, registry

BALANCED_LINES: tuple[LineItem, ...] = (
    LineItem(account_code="CASH", amount_cents=100, is_credit=False),
    LineItem(account_code="REV", amount_cents=100, is_credit=True),
)

EVENT_TEMPLATE = RequestTemplate(
    path="/v1/events",
    key_prefix="ing",
    lines=BALANCED_LINES,
    event_type="LOAD_EVENT",
    source_system="LEDGERLOAD",
)

JOURNAL_TEMPLATE = RequestTemplate(
    path="/v1/journal-entries",
    key_prefix="je",
    lines=BALANCED_LINES,
    propagate_trace=True,
)

EVENT_INGESTION = Scenario.constant_arrival_rate(
    name="event-ingestion",
    template=EVENT_TEMPLATE,
    accepted_statuses={202, 409},
    rate=10_000,
    time_unit=1.0,
    duration=600.0,
    pre_allocated_vus=1000,
    max_vus=5000,
    thresholds={"http_req_failed": ["rate<0.01"]},
)

JOURNAL_POSTING = Scenario.closed_workload(
    name="journal-posting",
    template=JOURNAL_TEMPLATE,
    accepted_statuses={201, 409},
    vus=200,
    duration=600.0,
    pacing=0.01,
    thresholds={
        "http_req_duration": ["p(99)<200"],
        "http_req_failed": ["rate<0.01"],
    },
)

CANONICAL_SCENARIOS: tuple[Scenario, ...] = (EVENT_INGESTION, JOURNAL_POSTING)


def register_canonical_scenarios(target: ScenarioRegistry = registry) -> ScenarioRegistry:
    """Register the canonical scenarios that ``target`` does not know yet."""
    for scenario in CANONICAL_SCENARIOS:
        if target.get(scenario.name) is None:
            target.register(scenario)
    return target
