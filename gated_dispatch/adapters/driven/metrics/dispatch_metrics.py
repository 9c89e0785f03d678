"""In-memory dispatch metrics: outcomes by kind and gate waits."""

from __future__ import annotations

import statistics
from collections import Counter, deque

from gated_dispatch.ports.metrics import OUTCOME_OK, DispatchAttemptDto, MetricsPort

__all__ = ["Metrics", "OUTCOME_KINDS"]

OUTCOME_KINDS = (OUTCOME_OK, "http_failure", "transport_failure", "gate_timeout")


class Metrics(MetricsPort):
    """Counters for settled requests, kept per event loop.

    Tracks:
    - Outcomes by kind: ok, http_failure, transport_failure, gate_timeout.
    - Immediate sends (gate open at submit) against deferred ones (queued).
    - Gate wait of the last window_size deferred requests that got sent.
    - Last HTTP status seen (0 until a response arrives).

    Not thread-safe; create one instance per event loop.
    """

    def __init__(self, *, window_size: int = 100) -> None:
        """Initialize metrics collector.

        Args:
            window_size: Number of recent gate waits kept for avg/max.
        """
        self._outcomes: Counter[str] = Counter({kind: 0 for kind in OUTCOME_KINDS})
        self._immediate = 0
        self._deferred = 0
        self._gate_waits_ms: deque[float] = deque(maxlen=window_size)
        self._last_status = 0

    @property
    def total(self) -> int:
        return self._immediate + self._deferred

    @property
    def outcomes(self) -> dict[str, int]:
        """Settled requests per outcome kind."""
        return dict(self._outcomes)

    @property
    def immediate(self) -> int:
        return self._immediate

    @property
    def deferred(self) -> int:
        return self._deferred

    def update(self, attempt: DispatchAttemptDto) -> None:
        """Record a settled request.

        Gate timeouts count as deferred when they waited in the queue, but
        never enter the gate wait window: they were not sent.

        Args:
            attempt: Settled request with timing and outcome.
        """
        self._outcomes[attempt.outcome] += 1
        if attempt.deferred:
            self._deferred += 1
            if attempt.outcome != "gate_timeout":
                wait_ms = (attempt.settled_at_sec - attempt.enqueued_at_sec) * 1_000.0
                self._gate_waits_ms.append(max(0.0, wait_ms))
        else:
            self._immediate += 1
        if attempt.status_code is not None:
            self._last_status = attempt.status_code

    def __str__(self) -> str:
        """Return human-readable one-line summary for logging.

        Returns:
            Formatted metrics string.
        """
        if not self.total:
            return "Metrics: waiting for data …"

        by_kind = " ".join(f"{kind}={n}" for kind, n in self._outcomes.items())
        if self._gate_waits_ms:
            avg_wait = statistics.fmean(self._gate_waits_ms)
            max_wait = max(self._gate_waits_ms)
            wait = f"gate_wait avg={avg_wait:7.1f} ms max={max_wait:7.1f} ms"
        else:
            wait = "gate_wait n/a"

        return (
            f"immediate={self._immediate} deferred={self._deferred} | "
            f"{by_kind} | "
            f"{wait} | "
            f"status={self._last_status:3d}"
        )
