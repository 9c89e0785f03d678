"""Application entrypoint."""

import asyncio
import logging
from typing import Any

from gated_dispatch.adapters.driven.config.settings import load_settings
from gated_dispatch.adapters.driven.gate.flag_gate import FlagGate
from gated_dispatch.adapters.driven.http.client import HttpClient
from gated_dispatch.adapters.driven.logging.error_hook import log_failure
from gated_dispatch.adapters.driven.logging.logging_config import configure_logs
from gated_dispatch.adapters.driven.metrics.dispatch_metrics import Metrics
from gated_dispatch.adapters.driving.signals import make_stop_on_sigterm
from gated_dispatch.core.dispatcher import Dispatcher
from gated_dispatch.ports.settings import SettingsPort

__all__ = ["main"]

logger = logging.getLogger(__name__)


async def main() -> None:
    """Dispatch the configured requests behind a handshake gate.

    Startup sequence:
    1. Configure logging.
    2. Load and validate configuration.
    3. Submit every request eagerly while the gate is still closed.
    4. Run the optional handshake probe and open the gate on success.
    5. Wait for all outcomes, or stop early on SIGTERM/SIGINT.
    """
    configure_logs()
    logger.info("Starting gated dispatcher...")

    try:
        config = load_settings()
    except (RuntimeError, ValueError) as exc:
        logger.error(
            "Configuration error: %s\n"
            "Hint: check REQUESTS_FILE_PATH, DISPATCH_POLL_INTERVAL_SECONDS, "
            "DISPATCH_RETRIES, HTTP_TIMEOUT_SECONDS and GATE_PROBE_ENDPOINT.",
            exc,
        )
        return

    # Wrap config into port so core depends on interface (hexagonal)
    settings_port = SettingsPort(
        poll_interval_sec=config.poll_interval_sec,
        retries=config.retries,
        http_timeout_sec=config.http_timeout_sec,
        requests=config.requests,
        gate_probe_endpoint=config.gate_probe_endpoint,
    )

    metrics = Metrics()
    gate = FlagGate()
    stop = make_stop_on_sigterm()

    async with HttpClient(timeout_sec=settings_port.http_timeout_sec) as http:
        dispatcher = Dispatcher(
            gate=gate,
            transport=http,
            on_error=log_failure,
            poll_interval_sec=settings_port.poll_interval_sec,
            metrics=metrics,
        )
        async with dispatcher:
            try:
                futures = submit_requests(settings_port, dispatcher)
                await open_gate(settings_port, http, gate)
                await wait_for_outcomes(settings_port.requests, futures, stop)
            except Exception as e:
                logger.error(f"Unhandled exception while dispatching: {e}", exc_info=True)

        logger.info(f"Final metrics: {metrics}")
        logger.info("Gated dispatcher stopped.")


def submit_requests(settings_port: SettingsPort, dispatcher: Dispatcher) -> list[asyncio.Future[Any]]:
    """Submit every configured request without waiting for results.

    Args:
        settings_port: Runtime settings holding the request descriptions.
        dispatcher: Dispatcher to submit through.

    Returns:
        One future per request, in file order.
    """
    futures = []
    for item in settings_port.requests:
        futures.append(
            dispatcher.send(
                item.get("method", "GET"),
                item["url"],
                item.get("params"),
                item.get("headers"),
                item.get("retries", settings_port.retries),
            )
        )
    logger.info(f"Submitted {len(futures)} request(s), {dispatcher.pending_count} waiting for the gate")
    return futures


async def open_gate(settings_port: SettingsPort, http: HttpClient, gate: FlagGate) -> bool:
    """Run the handshake probe and open the gate if it passes.

    Without a configured probe endpoint the gate opens immediately.

    Args:
        settings_port: Runtime settings.
        http: HTTP client for probing.
        gate: Gate to open.

    Returns:
        True if the gate was opened, False if the handshake failed.
    """
    if settings_port.gate_probe_endpoint:
        logger.info(f"Performing handshake on {settings_port.gate_probe_endpoint}...")
        if not await http.probe(url=settings_port.gate_probe_endpoint):
            logger.error(
                f"Handshake failed for {settings_port.gate_probe_endpoint}, "
                "gate stays closed and queued requests will time out"
            )
            return False

        logger.info("Handshake passed, opening gate...")
    gate.open()
    return True


async def wait_for_outcomes(
    requests: list[dict[str, Any]],
    futures: list[asyncio.Future[Any]],
    stop: asyncio.Event,
) -> dict[str, int]:
    """Wait until every future settles or the stop event is set, then log outcomes.

    Args:
        requests: Request descriptions, aligned with futures.
        futures: Futures returned by the dispatcher.
        stop: Event set on termination signals.

    Returns:
        Counts of "ok", "failed" and "abandoned" requests.
    """
    all_done = asyncio.gather(*futures, return_exceptions=True)
    stop_task = asyncio.ensure_future(stop.wait())
    await asyncio.wait({all_done, stop_task}, return_when=asyncio.FIRST_COMPLETED)

    stop_task.cancel()
    if not all_done.done():
        all_done.cancel()

    counts = {"ok": 0, "failed": 0, "abandoned": 0}
    for item, fut in zip(requests, futures):
        label = f"{item.get('method', 'GET')} {item['url']}"
        if not fut.done() or fut.cancelled():
            counts["abandoned"] += 1
            logger.info(f"{label}: abandoned")
        elif fut.exception() is not None:
            counts["failed"] += 1
            logger.info(f"{label}: failed ({fut.exception()})")
        else:
            counts["ok"] += 1
            logger.info(f"{label}: ok -> {fut.result()!r}")

    logger.info(
        f"Outcomes: ok={counts['ok']} failed={counts['failed']} abandoned={counts['abandoned']}"
    )
    return counts


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Shutdown requested by user (Ctrl+C).")
