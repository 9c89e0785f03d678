"""Dispatch outcomes and the failure taxonomy."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

__all__ = [
    "DispatchError",
    "Failure",
    "GateTimeout",
    "HttpFailure",
    "Outcome",
    "Success",
    "TransportFailure",
]


class DispatchError(Exception):
    """Base class for every failed dispatch.

    Attributes:
        url: URL of the request that failed.
        details: Merged diagnostic fields (transport data plus url).
    """

    kind = "failure"

    def __init__(self, message: str, url: str, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.details: dict[str, Any] = {**(details or {}), "url": url}

    def to_dict(self) -> dict[str, Any]:
        """Return a copy of the merged diagnostic fields."""
        return dict(self.details)


class GateTimeout(DispatchError):
    """Request ran out of retries while the gate stayed closed."""

    kind = "gate_timeout"

    def __init__(self, url: str, retries: int) -> None:
        super().__init__(
            f"Gate still closed after {retries} poll(s) for {url}",
            url,
            {"retries": retries},
        )
        self.retries = retries


class HttpFailure(DispatchError):
    """Response arrived with a status outside the 2xx range.

    Mapping bodies are spread into ``details`` so their fields (error codes,
    messages) sit next to status and url.
    """

    kind = "http_failure"

    def __init__(
        self,
        url: str,
        status: int,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        details: dict[str, Any] = {"status": status, "body": body, "headers": dict(headers or {})}
        if isinstance(body, Mapping):
            details.update(body)
        super().__init__(f"HTTP {status} for {url}", url, details)
        self.status = status
        self.body = body
        self.headers = dict(headers or {})


class TransportFailure(DispatchError):
    """Transport produced no response at all (connectivity loss, timeout)."""

    kind = "transport_failure"

    def __init__(self, url: str, cause: BaseException) -> None:
        super().__init__(
            f"Request to {url} failed: {cause!r}",
            url,
            {"error": str(cause), "error_type": type(cause).__name__},
        )
        self.cause = cause


@dataclass(slots=True, frozen=True)
class Success:
    """Request completed with a 2xx status."""

    body: Any
    status: int | None = None


@dataclass(slots=True, frozen=True)
class Failure:
    """Request failed; error carries the merged diagnostics."""

    error: DispatchError


Outcome = Union[Success, Failure]
