"""ledgerload — load-generation harness for the ledger write API."""

from __future__ import annotations

from ledgerload._internal.config import HarnessConfig, load_config
from ledgerload.dsl.catalog import EVENT_INGESTION, JOURNAL_POSTING
from ledgerload.dsl.payload import LineItem, RequestTemplate
from ledgerload.dsl.scenario import ExecutionMode, Scenario
from ledgerload.engine.controller import RunController, run_scenario
from ledgerload.metrics.models import Outcome, RunReport
from ledgerload.metrics.thresholds import Threshold

__version__ = "0.1.0"

__all__ = [
    "EVENT_INGESTION",
    "JOURNAL_POSTING",
    "ExecutionMode",
    "HarnessConfig",
    "LineItem",
    "Outcome",
    "RequestTemplate",
    "RunController",
    "RunReport",
    "Scenario",
    "Threshold",
    "load_config",
    "run_scenario",
]
