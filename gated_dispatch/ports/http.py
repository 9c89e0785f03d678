"""HTTP port definitions (request/response DTOs and transport interface)."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Protocol

__all__ = [
    "DEFAULT_HEADERS",
    "HttpRequest",
    "Method",
    "TransportPort",
    "TransportResponse",
]

DEFAULT_HEADERS: dict[str, str] = {"Content-Type": "application/json"}


class Method(str, Enum):
    """HTTP methods supported by the dispatcher."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"

    @property
    def sends_query(self) -> bool:
        """True if params travel in the query string instead of the body."""
        return self in (Method.GET, Method.DELETE)


@dataclass(frozen=True)
class HttpRequest:
    """Outbound HTTP request, immutable once created.

    Decouples the dispatcher from the concrete transport.

    Attributes:
        method: HTTP method.
        url: Target URL.
        params: Query parameters (GET/DELETE) or JSON body (POST/PUT).
        headers: Read-only copy of the request headers; JSON content type
            when not given.
    """

    method: Method
    url: str
    params: Any = None
    headers: Mapping[str, str] = field(default_factory=lambda: DEFAULT_HEADERS)

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))


@dataclass(frozen=True)
class TransportResponse:
    """Raw response returned by the transport.

    Attributes:
        status: HTTP status code.
        body: Decoded body (JSON value or text), None when empty.
        headers: Response headers.
    """

    status: int
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)


class TransportPort(Protocol):
    """Interface for performing exactly one HTTP request.

    Implementations raise on transport-level failures (no response at all);
    any HTTP status, including 4xx/5xx, is returned as a response.
    """

    async def send(self, request: HttpRequest, /) -> TransportResponse:
        """Send the request and return the raw response.

        Args:
            request: Request to send.

        Returns:
            Raw transport response.
        """
        ...
