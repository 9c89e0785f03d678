"""Gate backed by an asyncio.Event flag."""

import asyncio
import logging

from gated_dispatch.ports.gate import GatePort

__all__ = ["FlagGate"]

logger = logging.getLogger(__name__)


class FlagGate(GatePort):
    """Gate opened and closed explicitly by the host application.

    Typically opened once a login/token handshake succeeds and closed again
    when the session expires.
    """

    def __init__(self, *, is_open: bool = False) -> None:
        self._flag = asyncio.Event()
        if is_open:
            self._flag.set()

    def is_open(self) -> bool:
        return self._flag.is_set()

    def open(self) -> None:
        """Allow requests through."""
        if not self._flag.is_set():
            logger.info("Gate opened")
        self._flag.set()

    def close(self) -> None:
        """Hold new requests back until the next open()."""
        if self._flag.is_set():
            logger.info("Gate closed")
        self._flag.clear()

    async def wait_open(self) -> None:
        """Wait until the gate is open."""
        await self._flag.wait()
