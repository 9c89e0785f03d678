"""Signal handling for graceful shutdown."""

import asyncio
import logging
import signal

__all__ = ["make_stop_on_sigterm"]

logger = logging.getLogger(__name__)


def make_stop_on_sigterm() -> asyncio.Event:
    """Create a SIGTERM/SIGINT stop flag.

    Registers a handler that sets an asyncio.Event. The entrypoint waits on
    it next to the outstanding dispatches and stops at whichever finishes
    first.

    On Docker/Kubernetes, SIGTERM is sent 30s before SIGKILL,
    allowing graceful shutdown.

    Returns:
        Event set once SIGTERM or SIGINT has been received.
    """
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def handle_signal() -> None:
        """Signal handler that sets the stop event on SIGTERM/SIGINT."""
        logger.info("Termination signal received, abandoning outstanding requests...")
        stop.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal)

    return stop
