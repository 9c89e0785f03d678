"""Default error hook: log every failed dispatch."""

import logging

from gated_dispatch.core.outcome import DispatchError, GateTimeout, HttpFailure, TransportFailure

__all__ = ["log_failure"]

logger = logging.getLogger(__name__)


def log_failure(error: DispatchError) -> None:
    """Log a failed dispatch before the caller sees it.

    Args:
        error: The failure, with merged diagnostics in error.details.
    """
    if isinstance(error, HttpFailure):
        logger.warning(f"HTTP {error.status} from {error.url}: {error.body!r}")
    elif isinstance(error, TransportFailure):
        logger.warning(f"No response from {error.url}: {error.cause!r}")
    elif isinstance(error, GateTimeout):
        logger.warning(f"Gate stayed closed for {error.url} ({error.retries} polls), request dropped")
    else:
        logger.warning(f"Request failed: {error.to_dict()!r}")
