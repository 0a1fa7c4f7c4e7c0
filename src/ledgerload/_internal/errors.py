"""Custom exception hierarchy for ledgerload."""

from __future__ import annotations


class LedgerLoadError(Exception):
    """Base exception for all ledgerload errors.

    Rejected responses, transport failures and overload drops are never
    raised; they are recorded as metric samples. Only the classes below
    escape to the caller.
    """


class ConfigError(LedgerLoadError):
    """Raised when configuration or a scenario definition is invalid.

    Always detected before any traffic is generated.

    Examples:
        - ``pre_allocated_vus`` greater than ``max_vus``.
        - Non-positive rate or duration.
        - A threshold expression that cannot be parsed.
        - ``TENANT_ID`` that is not a UUID.
    """


class ScenarioError(LedgerLoadError):
    """Raised when a scenario cannot be found, registered or loaded.

    Examples:
        - Two scenarios registered under the same name.
        - A scenario file that does not exist or defines no scenario.
    """


class EngineError(LedgerLoadError):
    """Raised when the harness itself fails during a run.

    Distinct from a run that fails its thresholds, which is a normal
    result reported through ``RunReport.passed``.
    """
