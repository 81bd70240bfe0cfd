"""Retry logic with exponential backoff for outbound notification calls."""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

logger = logging.getLogger(__name__)

# Retryable exceptions: any failed webhook call (transport error or non-2xx
# status once raise_for_status ran) and socket-level failures, which covers
# smtplib errors
RETRYABLE_EXCEPTIONS = (
    httpx.HTTPError,
    TimeoutError,
    OSError,
)

T = TypeVar("T")


def calculate_backoff(
    attempt: int,
    base_delay: float = 2.0,
    multiplier: float = 2.0,
    max_delay: float = 10.0,
    jitter: bool = False,
) -> float:
    """Calculate exponential backoff delay with optional jitter.

    Args:
        attempt: The attempt that just failed (1-indexed)
        base_delay: Delay after the first failure, in seconds
        multiplier: Growth factor between consecutive delays
        max_delay: Maximum delay in seconds
        jitter: Whether to add random jitter

    Returns:
        Delay in seconds
    """
    delay = min(base_delay * (multiplier ** (attempt - 1)), max_delay)
    if jitter:
        delay = delay * (0.5 + random.random())
    return delay


def is_retryable(exc: BaseException) -> bool:
    """Check if the exception is worth another attempt."""
    return isinstance(exc, RETRYABLE_EXCEPTIONS)


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    base_delay: float = 2.0,
    multiplier: float = 2.0,
    max_delay: float = 10.0,
    should_retry: Callable[[BaseException], bool] = is_retryable,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    description: str = "call",
) -> T:
    """Await ``func`` until it succeeds or ``max_attempts`` is exhausted.

    The last exception is re-raised when every attempt failed or when the
    failure is not retryable.
    """
    last_exception: Optional[BaseException] = None

    for attempt in range(1, max_attempts + 1):
        try:
            return await func()
        except Exception as exc:
            if not should_retry(exc):
                raise
            last_exception = exc
            if attempt < max_attempts:
                delay = calculate_backoff(attempt, base_delay, multiplier, max_delay)
                logger.warning(
                    f"{description} failed (attempt {attempt}/{max_attempts}): {exc!r}; "
                    f"retrying in {delay:.1f}s"
                )
                await sleep(delay)

    if last_exception is not None:
        raise last_exception
    raise RuntimeError("Unexpected state in retry logic")
