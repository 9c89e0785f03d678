"""Backoff retry for the gate handshake probe.

Dispatched requests are never retried at the transport level; only the
probe that decides whether to open the gate goes through this decorator.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import TypeVar

import aiohttp

__all__ = ["retry", "RETRYABLE_ERRORS"]

logger = logging.getLogger(__name__)

# Exceptions considered transient and eligible for retry
RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    aiohttp.ClientConnectorError,  # Connection refused, DNS failed
    aiohttp.ClientConnectionError,  # Connection error
    aiohttp.ClientOSError,  # OS-level network error
    aiohttp.ServerTimeoutError,  # Server timeout
    aiohttp.ClientPayloadError,  # Streaming error
)

T = TypeVar("T")
AsyncFn = Callable[..., Awaitable[T]]


def retry(
    times: int = 3,
    delay_sec: tuple[float, ...] = (0.2, 0.5, 1.0),
    retry_on: tuple[type[BaseException], ...] = RETRYABLE_ERRORS,
) -> Callable[[AsyncFn[T]], AsyncFn[T]]:
    """Decorate an async call with stepped backoff retry.

    Only errors listed in retry_on are retried; anything else propagates
    on the first attempt.

    Args:
        times: Number of attempts (1 = no retry).
        delay_sec: Delays between attempts in seconds; the last one repeats.
        retry_on: Exception types treated as transient.

    Returns:
        Decorator function.

    Example:
        @retry(times=5)
        async def handshake():
            return await session.get(url)
    """
    if times < 1:
        raise ValueError(f"times must be >= 1 (got: {times})")

    def decorator(func: AsyncFn[T]) -> AsyncFn[T]:
        @wraps(func)
        async def wrapper(*args: object, **kwargs: object) -> T:
            for attempt in range(times):
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    if attempt == times - 1:
                        logger.debug(f"Retry exhausted after {times} attempts: {e}")
                        raise
                    delay = delay_sec[min(attempt, len(delay_sec) - 1)]
                    logger.debug(f"Attempt {attempt + 1}/{times} failed ({e}), retrying in {delay}s")
                    await asyncio.sleep(delay)

            raise RuntimeError("Retry wrapper exhausted")

        return wrapper

    return decorator
