"""
Retry / Backoff for Gateway Calls

Exponential backoff: the delay after failed attempt n is 2**n * base_delay
(base 1s gives 2s, 4s, 8s). Only errors marked retryable are retried;
everything else propagates immediately.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from ..exceptions import PaymentError, NetworkFailureError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


def compute_backoff(attempt: int, base_delay: float) -> float:
    """Delay in seconds after the given 1-based failed attempt."""
    return (2 ** attempt) * base_delay


def is_retryable(error: BaseException) -> bool:
    """Transient gateway errors are retryable; business rejections are not."""
    return isinstance(error, PaymentError) and error.retryable


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    sleep: Optional[SleepFunc] = None,
    label: str = "gateway call"
) -> T:
    """
    Run an async operation with exponential backoff.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        max_attempts: Total attempts including the first
        base_delay: Backoff unit in seconds
        sleep: Awaitable sleep, injectable for tests
        label: Name used in log lines

    Returns:
        Result of the first successful attempt

    Raises:
        The last error once attempts are exhausted, or the first
        non-retryable error.
    """
    sleep = sleep or asyncio.sleep
    attempts = max(1, max_attempts)
    last_error: Optional[PaymentError] = None

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except PaymentError as e:
            if not is_retryable(e):
                raise
            last_error = e
            logger.warning(
                f"{label}: attempt {attempt}/{attempts} failed "
                f"({e.error_code}: {e.message})"
            )
            if attempt == attempts:
                break
            await sleep(compute_backoff(attempt, base_delay))

    if last_error is None:
        raise NetworkFailureError(f"{label}: no attempts made")
    raise last_error
