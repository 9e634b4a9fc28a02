"""Retry engine for mutating API calls.

Re-issues a failed operation with exponential backoff via Tenacity:
- Delay before retry k (0-indexed): initial_delay * 2**k, no jitter
- Client errors (4xx except 429) are re-raised on first occurrence
- Timeouts, 5xx, 429 and transport failures are retried
- After max_attempts failures the last error is re-raised unchanged
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .errors import ApiError, is_retryable
from .metrics import retries_total

logger = logging.getLogger("appgen.retry")

__all__ = ["DEFAULT_INITIAL_DELAY", "DEFAULT_MAX_ATTEMPTS", "with_retry"]

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_INITIAL_DELAY = 1.0  # seconds


def _log_retry(retry_state: RetryCallState) -> None:
    """Log and count a retry; called by Tenacity before sleeping."""
    exception = retry_state.outcome.exception()
    retries_total.labels(error_type=type(exception).__name__).inc()
    logger.debug(
        "retrying_request",
        extra={
            "attempt": retry_state.attempt_number,
            "wait_seconds": retry_state.next_action.sleep,
            "exception_type": type(exception).__name__,
            "status": exception.status if isinstance(exception, ApiError) else None,
        },
    )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    initial_delay: float = DEFAULT_INITIAL_DELAY,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds, fails permanently, or attempts run out.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt
        max_attempts: Total attempts including the first (default: 3)
        initial_delay: Delay before the first retry in seconds (default: 1.0)
        sleep: Awaitable sleep function, injectable for tests

    Returns:
        The operation's result

    Raises:
        The last error raised by ``operation``

    Example:
        >>> job_id = await with_retry(lambda: client.create_job(token, prompt))
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=initial_delay, exp_base=2, min=0),
        retry=retry_if_exception(is_retryable),
        before_sleep=_log_retry,
        sleep=sleep,
        reraise=True,
    )

    async for attempt in retrying:
        with attempt:
            return await operation()

    # AsyncRetrying either returns from inside the loop or re-raises
    raise AssertionError("unreachable")
