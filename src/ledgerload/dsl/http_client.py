"""Timed async HTTP transport for the service under test."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import aiohttp

from ledgerload._internal.logging import get_logger

if TYPE_CHECKING:
    from ledgerload.dsl.payload import Request

logger = get_logger("dsl.http_client")


@dataclass(frozen=True)
class RawResponse:
    """What came back for one request.

    Attributes:
        status_code: HTTP status, 0 when no status was obtained.
        latency_ms: Time from send until the body was fully read.
        error: ``"<ExceptionType>: <message>"`` for transport failures.
    """

    status_code: int
    latency_ms: float
    error: str | None = None

    @property
    def transport_error(self) -> bool:
        return self.error is not None

    @property
    def error_type(self) -> str | None:
        """Exception type name of a transport failure, e.g. ``ClientConnectorError``."""
        if self.error is None:
            return None
        return self.error.split(":", 1)[0].strip()


class HttpClient:
    """Async HTTP client wrapping one shared ``aiohttp.ClientSession``.

    Every request is timed and returns a :class:`RawResponse`. Connection
    failures, DNS failures and timeouts are captured in the response
    instead of raised, so a virtual user never aborts or hangs on them.

    Attributes:
        base_url: Base URL prepended to request paths.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        connection_limit: int = 100,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Base URL prepended to all request paths.
            timeout: Total per-request timeout in seconds.
            connection_limit: Maximum simultaneous connections. Sized to the
                virtual-user ceiling so requests never queue client-side.
        """
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._connection_limit = connection_limit
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> HttpClient:
        self._session = aiohttp.ClientSession(
            timeout=self._timeout,
            connector=aiohttp.TCPConnector(limit=self._connection_limit),
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def send(self, request: Request) -> RawResponse:
        """Send ``request`` and wait for the complete response.

        Raises:
            RuntimeError: If used outside of ``async with``.
        """
        if self._session is None:
            msg = "HttpClient must be used as an async context manager"
            raise RuntimeError(msg)

        url = f"{self.base_url}{request.path}"
        start = time.monotonic()
        try:
            async with self._session.request(
                request.method,
                url,
                headers=request.headers,
                json=request.body,
            ) as resp:
                await resp.read()
                status_code = resp.status
        except (aiohttp.ClientError, TimeoutError) as exc:
            latency_ms = (time.monotonic() - start) * 1000
            logger.debug("Transport error on %s %s: %r", request.method, url, exc)
            return RawResponse(
                status_code=0,
                latency_ms=latency_ms,
                error=f"{type(exc).__name__}: {exc}",
            )

        return RawResponse(
            status_code=status_code,
            latency_ms=(time.monotonic() - start) * 1000,
        )
