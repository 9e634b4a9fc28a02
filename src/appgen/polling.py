"""Poll engine with growing backoff.

Repeatedly re-issues a status check until a success predicate or a failure
predicate fires, or the attempt budget is exhausted:

    poll -> notify -> success? return -> failure? raise -> sleep -> grow interval

The success predicate is checked before the failure predicate, so a result
matching both counts as success. The interval after attempt k is
``min(initial * 1.5**k, max_interval)``.

Two forms share one loop:
- ``iter_polls()`` is pull-based: an async generator of PollAttempt events.
  Consumers that stop pulling (``aclose()``) stop the loop while it is parked
  at a yield, so no sleep is pending and no further poll is issued.
- ``poll_with_backoff()`` drains it and reports each attempt to an observer.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from .errors import PollTimeoutError, RemoteFailureError
from .metrics import polls_total

logger = logging.getLogger("appgen.polling")

__all__ = [
    "BACKOFF_FACTOR",
    "PollAttempt",
    "PollOutcome",
    "iter_polls",
    "max_poll_duration",
    "next_interval",
    "poll_with_backoff",
]

T = TypeVar("T")

BACKOFF_FACTOR = 1.5


class PollOutcome(str, Enum):
    """Classification of one poll result."""

    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"


@dataclass(frozen=True)
class PollAttempt(Generic[T]):
    """One poll: the raw result, its 0-based attempt index, and its outcome."""

    result: T
    attempt: int
    outcome: PollOutcome

    @property
    def is_terminal(self) -> bool:
        return self.outcome is not PollOutcome.PENDING


def next_interval(interval: float, max_interval: float) -> float:
    """Grow a polling interval by BACKOFF_FACTOR, capped at max_interval."""
    return min(interval * BACKOFF_FACTOR, max_interval)


def max_poll_duration(max_attempts: int, initial_interval: float, max_interval: float) -> float:
    """Upper bound on time spent sleeping by one polling loop (seconds).

    Request time is not included; add ``max_attempts * read_timeout`` for a
    wall-clock bound.
    """
    total = 0.0
    interval = min(initial_interval, max_interval)
    for _ in range(max_attempts - 1):
        total += interval
        interval = next_interval(interval, max_interval)
    return total


def _status_of(result: Any) -> str:
    status = getattr(result, "status", result)
    return str(getattr(status, "value", status))


async def iter_polls(
    poll: Callable[[], Awaitable[T]],
    is_success: Callable[[T], bool],
    is_failure: Callable[[T], bool],
    *,
    max_attempts: int,
    initial_interval: float,
    max_interval: float,
    stage: str = "poll",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> AsyncIterator[PollAttempt[T]]:
    """Yield one PollAttempt per poll until a terminal state.

    The last attempt yielded before normal exhaustion is the success. A failing
    attempt is yielded first (so observers see it), then RemoteFailureError is
    raised on the next pull.

    Raises:
        RemoteFailureError: When ``is_failure`` matches a result
        PollTimeoutError: When max_attempts polls produced no terminal result
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    interval = min(initial_interval, max_interval)
    for attempt in range(max_attempts):
        result = await poll()

        if is_success(result):
            polls_total.labels(stage=stage, outcome=PollOutcome.SUCCESS.value).inc()
            yield PollAttempt(result, attempt, PollOutcome.SUCCESS)
            return

        if is_failure(result):
            polls_total.labels(stage=stage, outcome=PollOutcome.FAILURE.value).inc()
            status = _status_of(result)
            logger.warning(
                "poll_remote_failure",
                extra={"stage": stage, "attempt": attempt + 1, "status": status},
            )
            yield PollAttempt(result, attempt, PollOutcome.FAILURE)
            raise RemoteFailureError(status, stage=stage, snapshot=result)

        polls_total.labels(stage=stage, outcome=PollOutcome.PENDING.value).inc()
        yield PollAttempt(result, attempt, PollOutcome.PENDING)

        # No sleep after the final attempt
        if attempt + 1 < max_attempts:
            logger.debug(
                "poll_waiting",
                extra={"stage": stage, "attempt": attempt + 1, "wait_seconds": interval},
            )
            await sleep(interval)
            interval = next_interval(interval, max_interval)

    logger.warning("poll_timeout", extra={"stage": stage, "attempts": max_attempts})
    raise PollTimeoutError(max_attempts, stage=stage)


async def poll_with_backoff(
    poll: Callable[[], Awaitable[T]],
    is_success: Callable[[T], bool],
    is_failure: Callable[[T], bool],
    *,
    max_attempts: int = 60,
    initial_interval: float = 2.0,
    max_interval: float = 30.0,
    on_poll: Callable[[T, int], None] | None = None,
    stage: str = "poll",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Poll until success, failure, or exhaustion.

    Args:
        poll: Zero-argument coroutine factory issuing one status check
        is_success: Predicate for the success state (checked first)
        is_failure: Predicate for the failure state
        max_attempts: Maximum number of poll() calls
        initial_interval: First wait in seconds
        max_interval: Cap on the wait in seconds
        on_poll: Observer called once per poll with (result, attempt index)
        stage: Name used in logs and metrics
        sleep: Awaitable sleep function, injectable for tests

    Returns:
        The first result satisfying ``is_success``

    Raises:
        RemoteFailureError: When ``is_failure`` matches a result
        PollTimeoutError: When attempts are exhausted
    """
    polls = iter_polls(
        poll,
        is_success,
        is_failure,
        max_attempts=max_attempts,
        initial_interval=initial_interval,
        max_interval=max_interval,
        stage=stage,
        sleep=sleep,
    )
    try:
        async for attempt in polls:
            if on_poll is not None:
                on_poll(attempt.result, attempt.attempt)
            if attempt.outcome is PollOutcome.SUCCESS:
                return attempt.result
    finally:
        await polls.aclose()

    # iter_polls ends only by success or by raising
    raise AssertionError("unreachable")
