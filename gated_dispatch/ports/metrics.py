"""Metrics port definition (interface and DTO)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

__all__ = ["OUTCOME_OK", "DispatchAttemptDto", "MetricsPort"]

OUTCOME_OK = "ok"


@dataclass(slots=True, frozen=True)
class DispatchAttemptDto:
    """Immutable snapshot of a single settled request.

    Attributes:
        enqueued_at_sec: Monotonic seconds when the caller submitted the request.
        settled_at_sec: Monotonic seconds when the request left the gate,
            either reaching the transport or timing out.
        outcome: "ok", or the kind of the DispatchError that failed it
            ("http_failure", "transport_failure", "gate_timeout").
        deferred: True if the request waited in the queue for the gate.
        status_code: HTTP status code when a response arrived; None otherwise.
    """

    enqueued_at_sec: float
    settled_at_sec: float
    outcome: str = OUTCOME_OK
    deferred: bool = False
    status_code: int | None = None

    @property
    def is_failed(self) -> bool:
        return self.outcome != OUTCOME_OK


class MetricsPort(Protocol):
    """Interface for recording dispatch metrics.

    Implementations must be async-safe and non-blocking.
    The dispatcher calls update() once per request, after its transport call
    or its gate timeout; presentation layers call __str__() to render
    summaries.
    """

    def update(self, attempt: DispatchAttemptDto, /) -> None:
        """Record a settled request.

        Args:
            attempt: The attempt to record.
        """
        ...

    def __str__(self) -> str:
        """Return concise textual summary for humans.

        Returns:
            Formatted metrics string.
        """
        ...
