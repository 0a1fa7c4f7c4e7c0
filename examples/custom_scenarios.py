"""Custom ledger scenarios for a quick smoke run. Run with:

    ledgerload run smoke-events --file examples/custom_scenarios.py

Or list what the file defines:

    ledgerload list --file examples/custom_scenarios.py
"""

from __future__ import annotations

from ledgerload import LineItem, RequestTemplate, Scenario, Threshold

SPLIT_LINES = (
    LineItem(account_code="CASH", amount_cents=2500, is_credit=False),
    LineItem(account_code="REV", amount_cents=2000, is_credit=True),
    LineItem(account_code="TAX", amount_cents=500, is_credit=True),
)

SMOKE_EVENTS = Scenario.constant_arrival_rate(
    name="smoke-events",
    template=RequestTemplate(
        path="/v1/events",
        key_prefix="smoke",
        lines=SPLIT_LINES,
        event_type="SMOKE_EVENT",
        source_system="LEDGERLOAD",
    ),
    accepted_statuses={202, 409},
    rate=50,
    duration=30.0,
    pre_allocated_vus=10,
    max_vus=50,
    thresholds={
        "http_req_failed": ["rate<0.01"],
        "dropped_iterations": ["count<1"],
    },
)

SOAK_JOURNAL = Scenario.closed_workload(
    name="soak-journal",
    template=RequestTemplate(
        path="/v1/journal-entries",
        key_prefix="soak",
        lines=SPLIT_LINES,
        propagate_trace=True,
    ),
    accepted_statuses={201, 409},
    vus=20,
    duration=1800.0,
    pacing=0.5,
    thresholds=(
        Threshold.parse("http_req_duration", "p(95)<150"),
        Threshold.parse("http_req_duration", "p(99)<400", abort_on_fail=True),
        Threshold.parse("http_req_failed", "rate<0.005"),
    ),
)
