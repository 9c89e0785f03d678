"""Polling scheduler that re-tests the gate for queued requests."""

import asyncio
import logging
from collections.abc import Callable

from gated_dispatch.core.dispatch_queue import DispatchQueue, PendingEntry
from gated_dispatch.ports.gate import GatePort

__all__ = ["PollingScheduler", "get_now_time", "DEFAULT_POLL_INTERVAL_SEC"]

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SEC = 1.0


def get_now_time() -> float:
    """Get current monotonic time in seconds.

    Uses event loop's monotonic clock for accurate scheduling
    without wall-clock drift.

    Returns:
        Current time in seconds (monotonic).
    """
    return asyncio.get_running_loop().time()


class PollingScheduler:
    """One shared timer polling the gate on behalf of every queued request.

    The timer runs exactly while the queue holds entries: ensure_running()
    starts it after an enqueue and tick() stops it once a pass leaves the
    queue empty, so the next enqueue starts a fresh one.
    """

    def __init__(
        self,
        queue: DispatchQueue,
        gate: GatePort,
        on_ready: Callable[[PendingEntry], None],
        on_expired: Callable[[PendingEntry], None],
        interval_sec: float = DEFAULT_POLL_INTERVAL_SEC,
    ) -> None:
        """Initialize scheduler.

        Args:
            queue: Queue of pending entries (shared with the dispatcher).
            gate: Gate re-tested for every entry on every tick.
            on_ready: Called, in queue order, for entries that found the gate open.
            on_expired: Called for entries whose retry budget ran out.
            interval_sec: Seconds between ticks.
        """
        if interval_sec <= 0:
            raise ValueError(f"interval_sec must be positive (got: {interval_sec})")
        self._queue = queue
        self._gate = gate
        self._on_ready = on_ready
        self._on_expired = on_expired
        self.interval_sec = interval_sec
        self._timer: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        """True while the polling timer is active."""
        return self._timer is not None and not self._timer.done()

    def ensure_running(self) -> None:
        """Start the timer if entries are waiting and none is active."""
        if not self.is_running and self._queue:
            loop = asyncio.get_running_loop()
            self._timer = loop.create_task(self._run())
            logger.debug(f"Gate polling started (interval={self.interval_sec}s)")

    def stop(self) -> None:
        """Stop the timer without touching the queue."""
        self._release_timer()

    def tick(self) -> None:
        """Run one polling pass over the queue.

        Every entry is visited once in insertion order: its budget is
        decremented, then the gate is asked again. Removals are committed
        only after the whole pass, then ready entries are handed over in
        insertion order and expired ones are reported.
        """
        ready: list[PendingEntry] = []
        expired: list[PendingEntry] = []
        abandoned: list[PendingEntry] = []

        for entry in self._queue.snapshot():
            if entry.future.done():
                # Caller cancelled while waiting
                abandoned.append(entry)
                continue
            entry.decrement()
            if self._gate.is_open():
                ready.append(entry)
            elif entry.is_expired:
                expired.append(entry)

        self._queue.remove_all([*ready, *expired, *abandoned])

        for entry in ready:
            self._on_ready(entry)
        for entry in expired:
            self._on_expired(entry)

        if ready or expired or abandoned:
            logger.debug(
                f"Poll tick: ready={len(ready)} expired={len(expired)} "
                f"abandoned={len(abandoned)} waiting={len(self._queue)}"
            )

        if not self._queue:
            self._release_timer()

    def _release_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is None:
            return
        if timer is not asyncio.current_task():
            timer.cancel()
        logger.debug("Gate polling stopped")

    async def _run(self) -> None:
        """Tick every interval_sec until a pass drains the queue."""
        me = asyncio.current_task()
        next_tick = get_now_time()

        try:
            while self._timer is me:
                next_tick += self.interval_sec
                sleep_duration = max(0, next_tick - get_now_time())
                await asyncio.sleep(sleep_duration)
                try:
                    self.tick()
                except Exception as e:  # noqa: BLE001
                    # Entries stay queued; the next tick visits them again
                    logger.error(f"Poll tick failed, will retry: {e}", exc_info=True)
        finally:
            if self._timer is me:
                self._timer = None
