"""Gated request dispatcher."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from types import TracebackType
from typing import Any

from gated_dispatch.core.dispatch_queue import DispatchQueue, PendingEntry
from gated_dispatch.core.outcome import DispatchError, Failure, GateTimeout, Outcome
from gated_dispatch.core.scheduler import (
    DEFAULT_POLL_INTERVAL_SEC,
    PollingScheduler,
    get_now_time,
)
from gated_dispatch.core.transport import execute
from gated_dispatch.ports.gate import GatePort
from gated_dispatch.ports.http import DEFAULT_HEADERS, HttpRequest, Method, TransportPort
from gated_dispatch.ports.metrics import OUTCOME_OK, DispatchAttemptDto, MetricsPort

__all__ = ["Dispatcher", "ErrorHook", "DEFAULT_RETRIES"]

logger = logging.getLogger(__name__)

DEFAULT_RETRIES = 5

ErrorHook = Callable[[DispatchError], None]


class Dispatcher:
    """Send HTTP requests only while the gate is open.

    Callers submit requests eagerly and get an asyncio.Future back. With the
    gate open the transport is called right away; with the gate closed the
    request waits in the queue and a shared polling timer re-tests the gate
    until it opens or the request runs out of retries.

    Failures are reported to the error hook first, then set on the caller's
    future as a DispatchError subclass.

    Lifecycle: use as an async context manager, or call close() when done.
    close() stops polling, cancels futures still waiting for the gate and
    waits for in-flight transport calls.

    Must be used from a running event loop.
    """

    def __init__(
        self,
        gate: GatePort,
        transport: TransportPort,
        on_error: ErrorHook | None = None,
        *,
        poll_interval_sec: float = DEFAULT_POLL_INTERVAL_SEC,
        metrics: MetricsPort | None = None,
    ) -> None:
        """Initialize dispatcher.

        Args:
            gate: Precondition checked before every send.
            transport: Performs the actual HTTP calls.
            on_error: Observer notified of every failure before the caller.
            poll_interval_sec: Seconds between gate re-checks while requests wait.
            metrics: Optional metrics collector.
        """
        self.gate = gate
        self.transport = transport
        self.on_error = on_error
        self.metrics = metrics
        self.queue = DispatchQueue()
        self.scheduler = PollingScheduler(
            queue=self.queue,
            gate=gate,
            on_ready=self._start,
            on_expired=self._expire,
            interval_sec=poll_interval_sec,
        )
        self._inflight: set[asyncio.Task[None]] = set()

    async def __aenter__(self) -> Dispatcher:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def get(
        self,
        url: str,
        params: Any = None,
        headers: Mapping[str, str] | None = None,
        retries: int | None = DEFAULT_RETRIES,
    ) -> asyncio.Future[Any]:
        """Send a GET request; params go into the query string."""
        return self.send(Method.GET, url, params, headers, retries)

    def post(
        self,
        url: str,
        params: Any = None,
        headers: Mapping[str, str] | None = None,
        retries: int | None = DEFAULT_RETRIES,
    ) -> asyncio.Future[Any]:
        """Send a POST request; params become the JSON body."""
        return self.send(Method.POST, url, params, headers, retries)

    def put(
        self,
        url: str,
        params: Any = None,
        headers: Mapping[str, str] | None = None,
        retries: int | None = DEFAULT_RETRIES,
    ) -> asyncio.Future[Any]:
        """Send a PUT request; params become the JSON body."""
        return self.send(Method.PUT, url, params, headers, retries)

    def delete(
        self,
        url: str,
        params: Any = None,
        headers: Mapping[str, str] | None = None,
        retries: int | None = DEFAULT_RETRIES,
    ) -> asyncio.Future[Any]:
        """Send a DELETE request; params go into the query string."""
        return self.send(Method.DELETE, url, params, headers, retries)

    def send(
        self,
        method: Method | str,
        url: str,
        params: Any = None,
        headers: Mapping[str, str] | None = None,
        retries: int | None = DEFAULT_RETRIES,
    ) -> asyncio.Future[Any]:
        """Build a request and dispatch it.

        Args:
            method: HTTP method.
            url: Target URL.
            params: Query parameters or JSON body, depending on method.
            headers: Request headers; JSON content type when omitted.
            retries: Poll ticks to wait for a closed gate; None waits forever.

        Returns:
            Future resolved with the response body, or failed with a
            DispatchError.
        """
        request = HttpRequest(
            method=Method(method.upper()),
            url=url,
            params=params,
            headers=dict(headers) if headers is not None else dict(DEFAULT_HEADERS),
        )
        return self.dispatch(request, retries=retries)

    def dispatch(
        self, request: HttpRequest, retries: int | None = DEFAULT_RETRIES
    ) -> asyncio.Future[Any]:
        """Send the request now if the gate is open, otherwise queue it.

        Args:
            request: Request to send.
            retries: Poll ticks to wait for a closed gate. Zero fails at once
                with GateTimeout when the gate is closed; None waits forever.

        Returns:
            Future for the eventual outcome.

        Raises:
            ValueError: If retries is negative.
        """
        if retries is not None and retries < 0:
            raise ValueError(f"retries must be >= 0 or None (got: {retries})")

        loop = asyncio.get_running_loop()
        entry = PendingEntry(
            request=request,
            future=loop.create_future(),
            retries_remaining=retries,
            enqueued_at_sec=get_now_time(),
        )

        if self.gate.is_open():
            self._start(entry)
        elif entry.is_expired:
            self._expire(entry)
        else:
            self.queue.push(entry)
            logger.debug(
                f"Gate closed, queued {request.method.value} {request.url} "
                f"(retries={retries}, waiting={len(self.queue)})"
            )
            self.scheduler.ensure_running()

        return entry.future

    @property
    def pending_count(self) -> int:
        """Number of requests waiting for the gate."""
        return len(self.queue)

    @property
    def inflight_count(self) -> int:
        """Number of transport calls currently running."""
        return len(self._inflight)

    async def close(self) -> None:
        """Stop polling, cancel waiting requests and drain in-flight calls."""
        self.scheduler.stop()
        waiting = self.queue.drain()
        for entry in waiting:
            entry.future.cancel()
        if waiting:
            logger.info(f"Dispatcher closed with {len(waiting)} request(s) still waiting for the gate")

        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    def _start(self, entry: PendingEntry) -> None:
        """Hand the entry over to the transport in a background task."""
        loop = asyncio.get_running_loop()
        task: asyncio.Task[None] = loop.create_task(self._run_once(entry))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _run_once(self, entry: PendingEntry) -> None:
        """Run one transport call and route its outcome."""
        fired = get_now_time()
        outcome = await execute(self.transport, entry.request)
        self._record(entry, fired, outcome)
        self._route(entry, outcome)

    def _expire(self, entry: PendingEntry) -> None:
        logger.debug(f"Gate timeout for {entry.request.method.value} {entry.request.url}")
        outcome = Failure(GateTimeout(url=entry.request.url, retries=entry.retries or 0))
        self._record(entry, get_now_time(), outcome)
        self._route(entry, outcome)

    def _route(self, entry: PendingEntry, outcome: Outcome) -> None:
        """Deliver the outcome: error hook first, then the caller's future."""
        if isinstance(outcome, Failure):
            self._notify_error_hook(outcome.error)
            if not entry.future.done():
                entry.future.set_exception(outcome.error)
        elif not entry.future.done():
            entry.future.set_result(outcome.body)

    def _notify_error_hook(self, error: DispatchError) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(error)
        except Exception as e:  # noqa: BLE001
            logger.error(f"Error hook raised while handling {error!r}: {e}", exc_info=True)

    def _record(self, entry: PendingEntry, settled: float, outcome: Outcome) -> None:
        if self.metrics is None:
            return
        if isinstance(outcome, Failure):
            kind = outcome.error.kind
            status = getattr(outcome.error, "status", None)
        else:
            kind = OUTCOME_OK
            status = outcome.status
        self.metrics.update(
            DispatchAttemptDto(
                enqueued_at_sec=entry.enqueued_at_sec,
                settled_at_sec=settled,
                outcome=kind,
                deferred=entry.deferred,
                status_code=status,
            )
        )
        logger.info(f"Dispatch metrics: {self.metrics}")
