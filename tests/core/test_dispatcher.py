"""Tests for the gated dispatcher."""

import asyncio
from unittest.mock import AsyncMock, Mock

import aiohttp
import pytest

from gated_dispatch.core.dispatcher import Dispatcher
from gated_dispatch.core.outcome import (
    DispatchError,
    GateTimeout,
    HttpFailure,
    Success,
    TransportFailure,
)
from gated_dispatch.core.transport import execute
from gated_dispatch.ports.http import DEFAULT_HEADERS, HttpRequest, Method, TransportResponse
from gated_dispatch.ports.metrics import DispatchAttemptDto, MetricsPort

__all__ = []

URL = "http://api.test/items"
LONG_INTERVAL = 60.0


class SwitchGate:
    """Gate toggled by the test."""

    def __init__(self, is_open: bool = False) -> None:
        self.open = is_open
        self.calls = 0

    def is_open(self) -> bool:
        self.calls += 1
        return self.open


class DummyMetrics(MetricsPort):
    """Metrics implementation for testing."""

    def __init__(self) -> None:
        self.attempts: list[DispatchAttemptDto] = []

    def update(self, attempt: DispatchAttemptDto) -> None:
        """Record attempt."""
        self.attempts.append(attempt)

    def __str__(self) -> str:
        """Return string representation."""
        return f"Recorded {len(self.attempts)} attempts"


def make_transport(
    response: TransportResponse | None = None,
    side_effect: BaseException | None = None,
) -> Mock:
    """Create a transport double whose send() is an AsyncMock.

    Args:
        response: Response returned by send().
        side_effect: Exception raised by send() instead.

    Returns:
        Transport mock.
    """
    transport = Mock()
    transport.send = AsyncMock(
        return_value=response or TransportResponse(status=200, body={"x": 1}),
        side_effect=side_effect,
    )
    return transport


@pytest.mark.asyncio
async def test_open_gate_sends_immediately_without_queue() -> None:
    """With the gate open, send() should call the transport at once."""
    gate = SwitchGate(is_open=True)
    transport = make_transport()
    dispatcher = Dispatcher(gate=gate, transport=transport, poll_interval_sec=LONG_INTERVAL)

    fut = dispatcher.get(URL, {"page": 1})

    assert dispatcher.pending_count == 0
    assert dispatcher.scheduler.is_running is False
    assert await fut == {"x": 1}

    expected = HttpRequest(method=Method.GET, url=URL, params={"page": 1})
    transport.send.assert_awaited_once_with(expected)

    direct = await execute(make_transport(), expected)
    assert direct == Success(body={"x": 1}, status=200)


@pytest.mark.asyncio
async def test_closed_gate_defers_request() -> None:
    """With the gate closed, send() should queue without calling the transport."""
    gate = SwitchGate(is_open=False)
    transport = make_transport()
    dispatcher = Dispatcher(gate=gate, transport=transport, poll_interval_sec=LONG_INTERVAL)

    fut = dispatcher.post(URL, {"name": "a"})
    await asyncio.sleep(0)

    transport.send.assert_not_called()
    assert dispatcher.pending_count == 1
    assert dispatcher.scheduler.is_running is True
    assert not fut.done()

    await dispatcher.close()
    assert fut.cancelled()


@pytest.mark.asyncio
async def test_timer_runs_only_while_requests_wait() -> None:
    """Polling should start on enqueue and stop once the queue drains."""
    gate = SwitchGate(is_open=False)
    transport = make_transport()
    dispatcher = Dispatcher(gate=gate, transport=transport, poll_interval_sec=0.01)

    fut = dispatcher.put(URL, {"name": "b"})
    assert dispatcher.scheduler.is_running is True

    gate.open = True
    result = await asyncio.wait_for(fut, timeout=1.0)

    assert result == {"x": 1}
    assert dispatcher.pending_count == 0
    assert dispatcher.scheduler.is_running is False

    # A later deferral starts a fresh timer
    gate.open = False
    second = dispatcher.delete(URL)
    assert dispatcher.scheduler.is_running is True

    gate.open = True
    await asyncio.wait_for(second, timeout=1.0)
    assert dispatcher.scheduler.is_running is False


@pytest.mark.asyncio
async def test_all_waiting_requests_complete_on_same_tick_in_order() -> None:
    """Every entry ready on the same tick should be sent once, in insertion order."""
    gate = SwitchGate(is_open=False)
    transport = make_transport()
    dispatcher = Dispatcher(gate=gate, transport=transport, poll_interval_sec=LONG_INTERVAL)

    urls = [f"{URL}/{i}" for i in range(6)]
    futures = [dispatcher.get(url) for url in urls]
    assert dispatcher.pending_count == 6

    gate.open = True
    dispatcher.scheduler.tick()

    assert dispatcher.pending_count == 0
    assert dispatcher.scheduler.is_running is False

    results = await asyncio.gather(*futures)

    assert results == [{"x": 1}] * 6
    sent = [call.args[0].url for call in transport.send.await_args_list]
    assert sent == urls


@pytest.mark.asyncio
async def test_http_error_rejects_with_status_and_url() -> None:
    """A 404 should reject the future with HttpFailure carrying status and url."""
    transport = make_transport(TransportResponse(status=404, body={"message": "missing"}))
    dispatcher = Dispatcher(gate=SwitchGate(is_open=True), transport=transport)

    with pytest.raises(HttpFailure) as exc_info:
        await dispatcher.get(URL)

    err = exc_info.value
    assert err.status == 404
    assert err.url == URL
    assert err.to_dict()["message"] == "missing"


@pytest.mark.asyncio
async def test_connection_error_rejects_with_transport_failure() -> None:
    """A transport exception should reject with TransportFailure and the raw error."""
    boom = aiohttp.ClientConnectionError("connection lost")
    transport = make_transport(side_effect=boom)
    dispatcher = Dispatcher(gate=SwitchGate(is_open=True), transport=transport)

    with pytest.raises(TransportFailure) as exc_info:
        await dispatcher.post(URL, {"x": 1})

    assert exc_info.value.cause is boom
    assert exc_info.value.to_dict()["url"] == URL


@pytest.mark.asyncio
async def test_error_hook_runs_once_before_caller_is_rejected() -> None:
    """Error hook should see each failure exactly once, before the future fails."""
    seen: list[tuple[DispatchError, bool]] = []
    futures: list[asyncio.Future] = []

    def hook(error: DispatchError) -> None:
        seen.append((error, futures[0].done()))

    transport = make_transport(TransportResponse(status=500, body="oops"))
    dispatcher = Dispatcher(gate=SwitchGate(is_open=True), transport=transport, on_error=hook)

    futures.append(dispatcher.get(URL))
    with pytest.raises(HttpFailure) as exc_info:
        await futures[0]

    assert len(seen) == 1
    assert seen[0][0] is exc_info.value
    assert seen[0][1] is False


@pytest.mark.asyncio
async def test_error_hook_not_called_on_success() -> None:
    """Error hook should stay silent for successful requests."""
    hook = Mock()
    dispatcher = Dispatcher(gate=SwitchGate(is_open=True), transport=make_transport(), on_error=hook)

    await dispatcher.get(URL)

    hook.assert_not_called()


@pytest.mark.asyncio
async def test_raising_error_hook_does_not_change_outcome() -> None:
    """A hook that raises should be logged, and the caller still gets the failure."""
    hook = Mock(side_effect=RuntimeError("hook broke"))
    transport = make_transport(TransportResponse(status=403))
    dispatcher = Dispatcher(gate=SwitchGate(is_open=True), transport=transport, on_error=hook)

    with pytest.raises(HttpFailure):
        await dispatcher.get(URL)

    hook.assert_called_once()


@pytest.mark.asyncio
async def test_retries_decrement_then_gate_timeout() -> None:
    """Each tick should consume one retry; the last one rejects with GateTimeout."""
    hook = Mock()
    gate = SwitchGate(is_open=False)
    transport = make_transport()
    dispatcher = Dispatcher(
        gate=gate, transport=transport, on_error=hook, poll_interval_sec=LONG_INTERVAL
    )

    fut = dispatcher.get(URL, retries=3)
    entry = dispatcher.queue.snapshot()[0]
    assert entry.retries_remaining == 3

    dispatcher.scheduler.tick()
    assert entry.retries_remaining == 2
    dispatcher.scheduler.tick()
    assert entry.retries_remaining == 1
    assert not fut.done()
    assert dispatcher.scheduler.is_running is True

    dispatcher.scheduler.tick()

    with pytest.raises(GateTimeout) as exc_info:
        await fut

    assert exc_info.value.retries == 3
    assert exc_info.value.url == URL
    hook.assert_called_once_with(exc_info.value)
    transport.send.assert_not_called()
    assert dispatcher.pending_count == 0
    assert dispatcher.scheduler.is_running is False


@pytest.mark.asyncio
async def test_gate_opening_on_last_retry_still_sends() -> None:
    """An entry whose gate opens on its final tick should be sent, not timed out."""
    gate = SwitchGate(is_open=False)
    transport = make_transport()
    dispatcher = Dispatcher(gate=gate, transport=transport, poll_interval_sec=LONG_INTERVAL)

    fut = dispatcher.get(URL, retries=1)
    gate.open = True
    dispatcher.scheduler.tick()

    assert await fut == {"x": 1}


@pytest.mark.asyncio
async def test_zero_retries_with_closed_gate_fails_immediately() -> None:
    """retries=0 should not queue when the gate is closed."""
    dispatcher = Dispatcher(gate=SwitchGate(is_open=False), transport=make_transport())

    fut = dispatcher.get(URL, retries=0)

    assert dispatcher.pending_count == 0
    assert dispatcher.scheduler.is_running is False
    with pytest.raises(GateTimeout):
        await fut


@pytest.mark.asyncio
async def test_unbounded_retries_wait_indefinitely() -> None:
    """retries=None should keep the entry queued regardless of ticks."""
    dispatcher = Dispatcher(
        gate=SwitchGate(is_open=False), transport=make_transport(), poll_interval_sec=LONG_INTERVAL
    )

    fut = dispatcher.get(URL, retries=None)
    for _ in range(20):
        dispatcher.scheduler.tick()

    assert dispatcher.pending_count == 1
    assert dispatcher.queue.snapshot()[0].retries_remaining is None
    assert not fut.done()

    await dispatcher.close()


@pytest.mark.asyncio
async def test_negative_retries_rejected() -> None:
    """Negative retry budgets should raise ValueError."""
    dispatcher = Dispatcher(gate=SwitchGate(is_open=False), transport=make_transport())

    with pytest.raises(ValueError, match="retries"):
        dispatcher.get(URL, retries=-1)


@pytest.mark.asyncio
async def test_cancelled_waiting_request_is_never_sent() -> None:
    """A future cancelled by the caller should be dropped on the next tick."""
    gate = SwitchGate(is_open=False)
    transport = make_transport()
    dispatcher = Dispatcher(gate=gate, transport=transport, poll_interval_sec=LONG_INTERVAL)

    fut = dispatcher.get(URL)
    fut.cancel()
    gate.open = True
    dispatcher.scheduler.tick()
    await asyncio.sleep(0)

    transport.send.assert_not_called()
    assert dispatcher.pending_count == 0
    assert dispatcher.scheduler.is_running is False


@pytest.mark.asyncio
async def test_default_and_custom_headers() -> None:
    """Requests without headers should carry the JSON content type."""
    transport = make_transport()
    dispatcher = Dispatcher(gate=SwitchGate(is_open=True), transport=transport)

    await dispatcher.get(URL)
    await dispatcher.send("post", URL, {"a": 1}, {"Authorization": "Bearer t"})

    first, second = (call.args[0] for call in transport.send.await_args_list)
    assert first.headers == DEFAULT_HEADERS
    assert second.method is Method.POST
    assert second.headers == {"Authorization": "Bearer t"}


@pytest.mark.asyncio
async def test_metrics_record_dispatch() -> None:
    """Dispatcher should record one metrics attempt per transport call."""
    metrics = DummyMetrics()
    transport = make_transport(TransportResponse(status=201, body=None))
    dispatcher = Dispatcher(gate=SwitchGate(is_open=True), transport=transport, metrics=metrics)

    assert await dispatcher.post(URL, {"a": 1}) is True

    assert len(metrics.attempts) == 1
    attempt = metrics.attempts[0]
    assert attempt.status_code == 201
    assert attempt.outcome == "ok"
    assert attempt.is_failed is False
    assert attempt.deferred is False


@pytest.mark.asyncio
async def test_metrics_mark_queued_requests_as_deferred() -> None:
    """Requests that waited for the gate should be recorded as deferred."""
    metrics = DummyMetrics()
    gate = SwitchGate(is_open=False)
    transport = make_transport(TransportResponse(status=404, body={"code": "missing"}))
    dispatcher = Dispatcher(
        gate=gate, transport=transport, poll_interval_sec=LONG_INTERVAL, metrics=metrics
    )

    fut = dispatcher.get(URL)
    gate.open = True
    dispatcher.scheduler.tick()

    with pytest.raises(HttpFailure):
        await fut

    (attempt,) = metrics.attempts
    assert attempt.deferred is True
    assert attempt.outcome == "http_failure"
    assert attempt.status_code == 404
    assert attempt.settled_at_sec >= attempt.enqueued_at_sec


@pytest.mark.asyncio
async def test_metrics_record_gate_timeouts() -> None:
    """Gate timeouts never reach the transport but must still be recorded."""
    metrics = DummyMetrics()
    dispatcher = Dispatcher(
        gate=SwitchGate(is_open=False),
        transport=make_transport(),
        poll_interval_sec=LONG_INTERVAL,
        metrics=metrics,
    )

    waited = dispatcher.get(URL, retries=1)
    dispatcher.scheduler.tick()
    rejected = dispatcher.get(URL, retries=0)

    for fut in (waited, rejected):
        with pytest.raises(GateTimeout):
            await fut

    assert [(a.outcome, a.deferred, a.status_code) for a in metrics.attempts] == [
        ("gate_timeout", True, None),
        ("gate_timeout", False, None),
    ]


@pytest.mark.asyncio
async def test_metrics_record_transport_failure_kind() -> None:
    """A transport that raises should be recorded as transport_failure."""
    metrics = DummyMetrics()
    transport = make_transport(side_effect=aiohttp.ClientConnectionError("refused"))
    dispatcher = Dispatcher(gate=SwitchGate(is_open=True), transport=transport, metrics=metrics)

    with pytest.raises(TransportFailure):
        await dispatcher.get(URL)

    assert metrics.attempts[0].outcome == "transport_failure"
    assert metrics.attempts[0].is_failed is True


@pytest.mark.asyncio
async def test_context_manager_waits_for_inflight_calls() -> None:
    """Leaving the context should let started transport calls finish."""
    release = asyncio.Event()

    async def slow_send(request: HttpRequest) -> TransportResponse:
        await release.wait()
        return TransportResponse(status=200, body="done")

    transport = Mock()
    transport.send = slow_send

    async with Dispatcher(gate=SwitchGate(is_open=True), transport=transport) as dispatcher:
        fut = dispatcher.get(URL)
        await asyncio.sleep(0)
        assert dispatcher.inflight_count == 1
        asyncio.get_running_loop().call_soon(release.set)

    assert fut.result() == "done"
    assert dispatcher.inflight_count == 0
