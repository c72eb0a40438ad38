"""Retry with exponential backoff for outbound transport calls."""
from __future__ import annotations

import functools
import logging
import random
import time
from collections.abc import Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_EXCEPTIONS: tuple[type[Exception], ...] = (
    ConnectionError,
    TimeoutError,
)


def backoff_delay(attempt: int, base_delay: float, max_delay: float, jitter: bool) -> float:
    delay = min(base_delay * (2.0**attempt), max_delay)
    if jitter:
        # ±25% so concurrent senders do not retry in lockstep
        delay = delay * (0.75 + random.random() * 0.5)
    return delay


def retry_with_backoff(
    max_retries: int = 2,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    jitter: bool = True,
    retry_on: tuple[type[Exception], ...] | None = None,
    sleep: Callable[[float], None] | None = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator that retries a function with exponential backoff.

    Args:
        max_retries: Retry attempts after the first call (0 = no retries)
        base_delay: Delay before the first retry, in seconds
        max_delay: Upper bound for any single delay
        jitter: Randomize each delay by ±25%
        retry_on: Exception types that trigger a retry; anything else propagates at once
        sleep: Sleep function, swappable in tests (defaults to time.sleep)

    The last exception is re-raised once retries are exhausted.
    """
    exceptions_to_catch = retry_on or DEFAULT_RETRY_EXCEPTIONS

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions_to_catch as e:
                    if attempt >= max_retries:
                        logger.error(
                            "[retry] %s failed after %s attempts: %s", func.__name__, max_retries + 1, e
                        )
                        raise
                    delay = backoff_delay(attempt, base_delay, max_delay, jitter)
                    logger.warning(
                        "[retry] %s attempt %s/%s failed: %s. Retrying in %.2fs",
                        func.__name__,
                        attempt + 1,
                        max_retries + 1,
                        e,
                        delay,
                    )
                    (sleep or time.sleep)(delay)
            raise RuntimeError("Unexpected retry loop exit")

        return wrapper

    return decorator
