"""Gate port definition."""

from typing import Protocol

__all__ = ["GatePort"]


class GatePort(Protocol):
    """Precondition that must hold before any request may be sent.

    Typical gates check that an auth handshake finished or that a session
    token is available. The dispatcher calls is_open() on every dispatch
    attempt and on every poll tick, so it must be cheap and free of side
    effects.
    """

    def is_open(self) -> bool:
        """Return True if requests may be sent now."""
        ...
