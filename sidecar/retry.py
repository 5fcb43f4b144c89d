"""Async retry decorator with exponential backoff.

The backoff sleep is interruptible: when the decorated coroutine is
called with a ``shutdown=`` keyword argument, a triggered shutdown ends
the retries early and the last error is raised.

Usage:
    from sidecar.retry import async_retry

    @async_retry(max_retries=5, base_delay=0.5, exceptions=(httpx.TransportError,))
    async def connect(self, shutdown=None):
        ...
"""

from __future__ import annotations

import asyncio
import functools
from typing import Any, Callable, TypeVar

from sidecar.log import get_logger

F = TypeVar("F", bound=Callable[..., Any])


def backoff_delays(max_retries: int, base_delay: float, max_delay: float) -> list[float]:
    """Delays slept between attempts, capped at max_delay."""
    return [min(base_delay * (2**n), max_delay) for n in range(max_retries)]


def async_retry(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exceptions: tuple[type[Exception], ...] = (Exception,),
) -> Callable[[F], F]:
    """Retry an async callable on the given exceptions.

    Args:
        max_retries: Retries after the first attempt; 0 disables retrying.
        base_delay: Delay before the first retry in seconds, doubled each time.
        max_delay: Upper bound for a single delay.
        exceptions: Exception types that trigger a retry. Anything else
            propagates immediately.
    """

    def decorator(func: F) -> F:
        logger = get_logger("retry")

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            shutdown = kwargs.get("shutdown")
            delays = backoff_delays(max_retries, base_delay, max_delay)
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except exceptions as exc:
                    if attempt >= len(delays):
                        raise
                    delay = delays[attempt]
                    attempt += 1
                    logger.warning(
                        "retry_attempt",
                        func=func.__qualname__,
                        attempt=attempt,
                        max_retries=max_retries,
                        delay=delay,
                        error=str(exc),
                    )
                    if shutdown is None:
                        await asyncio.sleep(delay)
                    elif await shutdown.sleep(delay):
                        logger.info("retry_aborted_by_shutdown", func=func.__qualname__)
                        raise

        return wrapper  # type: ignore[return-value]

    return decorator
