"""Healthcheck validator for container orchestration."""

import logging

from gated_dispatch.adapters.driven.config.settings import load_settings
from gated_dispatch.adapters.driven.logging.logging_config import configure_logs

__all__ = ["main"]

logger = logging.getLogger(__name__)


def main() -> int:
    """Validate dispatcher configuration for container orchestration.

    Checks that the environment variables parse, the gate probe endpoint
    (if any) is a valid URL and the requests file holds valid requests.

    Returns:
        0 if healthy, 1 if unhealthy.
    """
    configure_logs()

    try:
        _ = load_settings()
    except (RuntimeError, ValueError) as exc:
        logger.error(f"Dispatcher healthcheck FAILED: {exc}")
        return 1

    logger.info("Dispatcher healthcheck OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
