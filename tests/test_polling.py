"""Unit tests for the poll engine."""

from unittest.mock import AsyncMock, Mock

import pytest

from appgen.errors import PollTimeoutError, RemoteFailureError
from appgen.models import JobSnapshot, JobStatus
from appgen.polling import (
    PollOutcome,
    iter_polls,
    max_poll_duration,
    next_interval,
    poll_with_backoff,
)


def statuses(*values):
    """Poll function returning the given statuses in order."""
    return AsyncMock(side_effect=list(values))


def is_done(status):
    return status == "Done"


def is_failed(status):
    return status == "Failed"


class TestIntervals:
    """Backoff arithmetic."""

    def test_next_interval_grows_by_half(self):
        assert next_interval(2.0, 30.0) == 3.0
        assert next_interval(3.0, 30.0) == 4.5

    def test_next_interval_is_capped(self):
        assert next_interval(25.0, 30.0) == 30.0
        assert next_interval(30.0, 30.0) == 30.0

    def test_max_poll_duration(self):
        assert max_poll_duration(4, 2.0, 30.0) == pytest.approx(2.0 + 3.0 + 4.5)
        assert max_poll_duration(1, 2.0, 30.0) == 0.0


class TestPollWithBackoff:
    """Polling until success, failure or exhaustion."""

    @pytest.mark.asyncio
    async def test_success_on_first_poll(self, recording_sleep):
        poll = statuses("Done")

        result = await poll_with_backoff(poll, is_done, is_failed, sleep=recording_sleep)

        assert result == "Done"
        poll.assert_awaited_once()
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_interval_sequence(self, recording_sleep):
        poll = statuses("Pending", "Pending", "Pending", "Done")

        await poll_with_backoff(
            poll,
            is_done,
            is_failed,
            initial_interval=2.0,
            max_interval=30.0,
            sleep=recording_sleep,
        )

        assert recording_sleep.delays == [2.0, 3.0, 4.5]

    @pytest.mark.asyncio
    async def test_interval_never_exceeds_cap(self, recording_sleep):
        poll = statuses(*["Pending"] * 6, "Done")

        await poll_with_backoff(
            poll,
            is_done,
            is_failed,
            initial_interval=2.0,
            max_interval=3.0,
            sleep=recording_sleep,
        )

        assert recording_sleep.delays == [2.0, 3.0, 3.0, 3.0, 3.0, 3.0]

    @pytest.mark.asyncio
    async def test_initial_interval_above_cap_is_clamped(self, recording_sleep):
        poll = statuses("Pending", "Pending", "Pending", "Done")

        await poll_with_backoff(
            poll,
            is_done,
            is_failed,
            initial_interval=5.0,
            max_interval=2.0,
            sleep=recording_sleep,
        )

        assert recording_sleep.delays == [2.0, 2.0, 2.0]
        assert sum(recording_sleep.delays) == max_poll_duration(4, 5.0, 2.0)

    @pytest.mark.asyncio
    async def test_success_checked_before_failure(self, recording_sleep):
        poll = statuses("Done")

        result = await poll_with_backoff(
            poll, lambda s: True, lambda s: True, sleep=recording_sleep
        )

        assert result == "Done"

    @pytest.mark.asyncio
    async def test_failure_raises_remote_failure(self, recording_sleep):
        snapshot = JobSnapshot(key="job-1", status=JobStatus.FAILED)
        poll = AsyncMock(return_value=snapshot)

        with pytest.raises(RemoteFailureError) as exc_info:
            await poll_with_backoff(
                poll,
                lambda s: s.status == JobStatus.DONE,
                lambda s: s.status == JobStatus.FAILED,
                stage="generation",
                sleep=recording_sleep,
            )

        assert exc_info.value.status == "Failed"
        assert exc_info.value.stage == "generation"
        assert exc_info.value.snapshot is snapshot
        poll.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_exhaustion_raises_poll_timeout(self, recording_sleep):
        poll = AsyncMock(return_value="Pending")

        with pytest.raises(PollTimeoutError) as exc_info:
            await poll_with_backoff(
                poll, is_done, is_failed, max_attempts=4, sleep=recording_sleep
            )

        assert exc_info.value.attempts == 4
        assert poll.await_count == 4
        assert len(recording_sleep.delays) == 3  # no sleep after the last poll

    @pytest.mark.asyncio
    async def test_observer_sees_every_poll(self, recording_sleep):
        poll = statuses("Pending", "Pending", "Done")
        on_poll = Mock()

        await poll_with_backoff(poll, is_done, is_failed, on_poll=on_poll, sleep=recording_sleep)

        assert [c.args for c in on_poll.call_args_list] == [
            ("Pending", 0),
            ("Pending", 1),
            ("Done", 2),
        ]


class TestIterPolls:
    """Pull-based polling."""

    @pytest.mark.asyncio
    async def test_outcomes(self, recording_sleep):
        polls = iter_polls(
            statuses("Pending", "Done"),
            is_done,
            is_failed,
            max_attempts=5,
            initial_interval=1.0,
            max_interval=5.0,
            sleep=recording_sleep,
        )

        attempts = [attempt async for attempt in polls]

        assert [(a.result, a.attempt, a.outcome) for a in attempts] == [
            ("Pending", 0, PollOutcome.PENDING),
            ("Done", 1, PollOutcome.SUCCESS),
        ]
        assert attempts[-1].is_terminal

    @pytest.mark.asyncio
    async def test_failure_attempt_is_yielded_before_raising(self, recording_sleep):
        polls = iter_polls(
            statuses("Failed"),
            is_done,
            is_failed,
            max_attempts=5,
            initial_interval=1.0,
            max_interval=5.0,
            sleep=recording_sleep,
        )

        first = await polls.__anext__()
        assert first.outcome is PollOutcome.FAILURE
        with pytest.raises(RemoteFailureError):
            await polls.__anext__()

    @pytest.mark.asyncio
    async def test_aclose_stops_polling(self, recording_sleep):
        poll = AsyncMock(return_value="Pending")
        polls = iter_polls(
            poll,
            is_done,
            is_failed,
            max_attempts=10,
            initial_interval=1.0,
            max_interval=5.0,
            sleep=recording_sleep,
        )

        await polls.__anext__()
        await polls.aclose()

        poll.assert_awaited_once()
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_rejects_zero_attempts(self, recording_sleep):
        polls = iter_polls(
            AsyncMock(),
            is_done,
            is_failed,
            max_attempts=0,
            initial_interval=1.0,
            max_interval=5.0,
            sleep=recording_sleep,
        )

        with pytest.raises(ValueError):
            await polls.__anext__()
