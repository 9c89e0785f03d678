"""HTTP transport adapter built on aiohttp."""

import json
import logging
from collections.abc import Mapping
from types import TracebackType
from typing import Any

import aiohttp
from aiohttp import ClientTimeout

from gated_dispatch.adapters.driven.http.retry import retry
from gated_dispatch.ports.http import HttpRequest, TransportPort, TransportResponse

__all__ = ["HttpClient"]

logger = logging.getLogger(__name__)

# Configurable probe settings
PROBE_RETRIES = 5
PROBE_TIMEOUT = 10
REQUEST_TIMEOUT = 10.0


def _query_params(params: Any) -> dict[str, str] | str | None:
    """Flatten a params mapping into query-string values.

    A string is taken as an already encoded query string and passed through.
    """
    if params is None or isinstance(params, str):
        return params
    if not isinstance(params, Mapping):
        raise TypeError(f"Query params must be a mapping (got: {type(params).__name__})")
    query: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            query[str(key)] = "true" if value else "false"
        else:
            query[str(key)] = str(value)
    return query


def _decode_body(raw: bytes, content_type: str, charset: str | None) -> Any:
    """Decode a response body: JSON when declared, text otherwise, None if empty."""
    if not raw:
        return None
    text = raw.decode(charset or "utf-8", errors="replace")
    if "json" in content_type:
        try:
            return json.loads(text)
        except ValueError:
            logger.debug(f"Response declared {content_type} but is not valid JSON")
    return text


class HttpClient(TransportPort):
    """aiohttp transport performing one HTTP call per request.

    Features:
    - GET/DELETE params in the query string, POST/PUT params as JSON body.
    - Any status is returned as a response; only network failures raise.
    - Context manager for proper resource cleanup.
    - Health check/probe functionality (used as gate handshake).
    """

    def __init__(self, timeout_sec: float = REQUEST_TIMEOUT) -> None:
        """Initialize HTTP client.

        Args:
            timeout_sec: Total timeout of a single request in seconds.
        """
        self.timeout_sec = timeout_sec
        self.session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "HttpClient":
        """Enter async context manager (start session).

        Returns:
            Self for use in async with statement.
        """
        self.session = aiohttp.ClientSession(timeout=ClientTimeout(total=self.timeout_sec))
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Exit async context manager (close session).

        Args:
            exc_type: Exception type if raised in context.
            exc: Exception instance if raised in context.
            tb: Traceback if raised in context.
        """
        if self.session:
            await self.session.close()

    @retry(times=PROBE_RETRIES)
    async def _probe_once(self, url: str, timeout: int = PROBE_TIMEOUT) -> int:
        """Single HTTP GET request for health check (with retry).

        Args:
            url: URL to probe.
            timeout: Timeout in seconds.

        Returns:
            HTTP status code.

        Raises:
            RuntimeError: If session not initialized.
            aiohttp exceptions: Network/timeout errors (retried by decorator).
        """
        if self.session is None:
            raise RuntimeError("Session not initialized; use 'async with' context manager")
        client_timeout = ClientTimeout(timeout)
        async with self.session.get(url, timeout=client_timeout, allow_redirects=True) as resp:
            return resp.status

    async def probe(self, url: str, timeout: int = PROBE_TIMEOUT) -> bool:
        """Check if HTTP endpoint is reachable.

        Attempts up to PROBE_RETRIES times with exponential backoff.

        Args:
            url: URL to probe.
            timeout: Timeout in seconds.

        Returns:
            True if reachable (200 <= status < 300), False otherwise.
        """
        logger.info(f"Probing endpoint {url}...")
        try:
            status = await self._probe_once(url, timeout)
            is_healthy = 200 <= status < 300
            logger.info(f"Probe for {url} returned status {status}")
            return is_healthy
        except Exception as e:
            logger.warning(f"Probe failed for {url}: {e}")
            return False

    async def send(self, request: HttpRequest) -> TransportResponse:
        """Send one HTTP request.

        Args:
            request: Request to send.

        Returns:
            Raw response with decoded body.

        Raises:
            RuntimeError: If session not initialized.
            aiohttp exceptions: Network/timeout errors (never retried here).
        """
        if self.session is None:
            raise RuntimeError("Session not initialized; use 'async with' context manager")

        kwargs: dict[str, Any] = {"headers": dict(request.headers)}
        if request.method.sends_query:
            kwargs["params"] = _query_params(request.params)
        elif request.params is not None:
            kwargs["json"] = request.params

        async with self.session.request(request.method.value, request.url, **kwargs) as resp:
            raw = await resp.read()
            return TransportResponse(
                status=resp.status,
                body=_decode_body(raw, resp.content_type, resp.charset),
                headers=dict(resp.headers),
            )
