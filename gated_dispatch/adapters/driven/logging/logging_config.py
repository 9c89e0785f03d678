"""Console logging setup for the dispatcher."""

import logging

__all__ = ["configure_logs"]


def configure_logs(level: int = logging.INFO) -> None:
    """Configure console logging.

    Sets up:
    - Root logger at the given level (INFO by default).
    - Framework loggers (aiohttp, asyncio) at WARNING level.
    - Application loggers (gated_dispatch) at DEBUG level, so every
      dispatch with its params, headers and result is visible.
    - Format with timestamp, level, module, and line number.

    Calling it twice does not duplicate the handler.

    Args:
        level: Root logger level.
    """
    log_format = "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s"
    date_format = "%d/%m/%y %H:%M:%S"

    root = logging.getLogger()
    root.setLevel(level)
    if not any(getattr(h, "_gated_dispatch", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(log_format, date_format))
        handler._gated_dispatch = True  # type: ignore[attr-defined]
        root.addHandler(handler)

    # Suppress verbose framework loggers
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    # Application loggers
    logging.getLogger("gated_dispatch").setLevel(logging.DEBUG)
