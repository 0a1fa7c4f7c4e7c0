"""Harness configuration loaded once from the environment at run start."""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ledgerload._internal.errors import ConfigError
from ledgerload._internal.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = get_logger("config")

DEFAULT_BASE_URL = "http://localhost:8080"
DEFAULT_TENANT_ID = "00000000-0000-0000-0000-000000000000"


@dataclass(frozen=True)
class HarnessConfig:
    """Connection and identity settings shared by every component of a run.

    Built once by :func:`load_config` and passed by reference; nothing else
    in the harness reads the environment.

    Attributes:
        base_url: Base URL of the service under test.
        tenant_id: Value of the ``X-Tenant-Id`` header (a UUID).
        token: Bearer credential for the ``Authorization`` header.
        actor_role: Optional ``X-Actor-Role`` header value.
        request_timeout: Per-request timeout in seconds.
        tick_interval: Seconds between metric pump ticks and snapshots.
    """

    base_url: str = DEFAULT_BASE_URL
    tenant_id: str = DEFAULT_TENANT_ID
    token: str = ""
    actor_role: str | None = None
    request_timeout: float = 30.0
    tick_interval: float = 1.0

    def __post_init__(self) -> None:
        if not self.base_url.startswith(("http://", "https://")):
            msg = f"base_url must start with http:// or https://, got: {self.base_url!r}"
            raise ConfigError(msg)
        try:
            uuid.UUID(self.tenant_id)
        except ValueError:
            msg = f"tenant_id must be a UUID, got: {self.tenant_id!r}"
            raise ConfigError(msg) from None
        if self.request_timeout <= 0:
            msg = f"request_timeout must be positive, got: {self.request_timeout}"
            raise ConfigError(msg)
        if self.tick_interval <= 0:
            msg = f"tick_interval must be positive, got: {self.tick_interval}"
            raise ConfigError(msg)


def _parse_positive_float(env: Mapping[str, str], name: str, default: str) -> float:
    raw = env.get(name, default)
    try:
        value = float(raw)
    except ValueError:
        msg = f"{name} must be a number, got: {raw!r}"
        raise ConfigError(msg) from None
    if value <= 0:
        msg = f"{name} must be positive, got: {value}"
        raise ConfigError(msg)
    return value


def load_config(env: Mapping[str, str] | None = None) -> HarnessConfig:
    """Build a :class:`HarnessConfig` from environment variables.

    Environment variables:
        BASE_URL: Service base URL (default: ``http://localhost:8080``).
        TENANT_ID: Tenant UUID (default: the nil UUID).
        JWT_TOKEN: Bearer token (default: empty, a warning is logged).
        ACTOR_ROLE: Optional ``X-Actor-Role`` header.
        LEDGERLOAD_TIMEOUT: Request timeout in seconds (default: 30.0).
        LEDGERLOAD_TICK_INTERVAL: Metric tick in seconds (default: 1.0).

    Args:
        env: Mapping to read instead of ``os.environ``.

    Returns:
        Populated HarnessConfig instance.

    Raises:
        ConfigError: If a variable has an invalid value.
    """
    source = os.environ if env is None else env

    timeout = _parse_positive_float(source, "LEDGERLOAD_TIMEOUT", "30.0")
    tick_interval = _parse_positive_float(source, "LEDGERLOAD_TICK_INTERVAL", "1.0")

    token = source.get("JWT_TOKEN", "")
    if not token:
        logger.warning("JWT_TOKEN is not set; requests will carry an empty bearer token")

    return HarnessConfig(
        base_url=source.get("BASE_URL") or DEFAULT_BASE_URL,
        tenant_id=source.get("TENANT_ID") or DEFAULT_TENANT_ID,
        token=token,
        actor_role=source.get("ACTOR_ROLE") or None,
        request_timeout=timeout,
        tick_interval=tick_interval,
    )
