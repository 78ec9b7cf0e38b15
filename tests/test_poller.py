"""Tests for the transcription job poll state machine."""

from unittest.mock import AsyncMock, patch

import pytest

from recap.core.errors import ExternalServiceError
from recap.orchestration.poller import PollState, _next_state, poll_transcription_job
from recap.schemas.jobs import TranscriptionJob

JOB_NAME = "transcription-user-alice-" + "a" * 64


def _job(status: str, **extra) -> TranscriptionJob:
    return TranscriptionJob(
        job_name=JOB_NAME,
        user_id="user-alice",
        file_hash="a" * 64,
        status=status,
        media_object_key="uploads/user-alice/" + "a" * 64 + ".wav",
        **extra,
    )


@pytest.fixture
def sleep():
    with patch("recap.orchestration.poller.asyncio.sleep", new=AsyncMock()) as mocked:
        yield mocked


class TestPollTranscriptionJob:
    """Tests for poll_transcription_job."""

    async def test_completes_after_in_progress(self, settings, sleep) -> None:
        fetch = AsyncMock(side_effect=[_job("QUEUED"), _job("IN_PROGRESS"), _job("COMPLETED")])
        with patch("recap.orchestration.poller.fetch_job", fetch):
            outcome = await poll_transcription_job(object(), JOB_NAME, settings)

        assert outcome.state == PollState.COMPLETED
        assert outcome.polls == 3
        assert outcome.job.status == "COMPLETED"
        assert [call.args[0] for call in sleep.await_args_list] == [settings.poll_interval_seconds] * 2

    async def test_failed_job(self, settings, sleep) -> None:
        fetch = AsyncMock(return_value=_job("FAILED", failure_reason="bad audio"))
        with patch("recap.orchestration.poller.fetch_job", fetch):
            outcome = await poll_transcription_job(object(), JOB_NAME, settings)

        assert outcome.state == PollState.FAILED
        assert outcome.job.failure_reason == "bad audio"
        sleep.assert_not_awaited()

    async def test_missing_job_is_failed(self, settings, sleep) -> None:
        with patch("recap.orchestration.poller.fetch_job", AsyncMock(return_value=None)):
            outcome = await poll_transcription_job(object(), JOB_NAME, settings)

        assert outcome.state == PollState.FAILED
        assert outcome.job is None

    async def test_times_out_after_bounded_polls(self, settings, sleep) -> None:
        """With a 30s timeout at 5s intervals the job is read at most six times."""
        fetch = AsyncMock(return_value=_job("IN_PROGRESS"))
        with patch("recap.orchestration.poller.fetch_job", fetch):
            outcome = await poll_transcription_job(object(), JOB_NAME, settings)

        assert outcome.state == PollState.TIMED_OUT
        assert fetch.await_count == 6
        assert outcome.polls == 6

    async def test_times_out_on_wall_clock(self, settings, sleep) -> None:
        fetch = AsyncMock(return_value=_job("QUEUED"))
        with (
            patch("recap.orchestration.poller.fetch_job", fetch),
            patch("recap.orchestration.poller.time") as clock,
        ):
            clock.monotonic.side_effect = [0.0, 100.0, 100.0]
            outcome = await poll_transcription_job(object(), JOB_NAME, settings)

        assert outcome.state == PollState.TIMED_OUT
        assert fetch.await_count == 1

    async def test_transient_errors_back_off_then_recover(self, settings, sleep) -> None:
        fetch = AsyncMock(side_effect=[ExternalServiceError("blip"), ExternalServiceError("blip"), _job("COMPLETED")])
        with patch("recap.orchestration.poller.fetch_job", fetch):
            outcome = await poll_transcription_job(object(), JOB_NAME, settings)

        assert outcome.state == PollState.COMPLETED
        interval = settings.poll_interval_seconds
        assert [call.args[0] for call in sleep.await_args_list] == [interval, interval * 2]

    async def test_repeated_errors_are_raised(self, settings, sleep) -> None:
        fetch = AsyncMock(side_effect=ExternalServiceError("down"))
        with patch("recap.orchestration.poller.fetch_job", fetch):
            with pytest.raises(ExternalServiceError):
                await poll_transcription_job(object(), JOB_NAME, settings)

        assert fetch.await_count == settings.poll_max_errors


class TestNextState:
    """Tests for the per-read state transition."""

    @pytest.mark.parametrize("status", ["QUEUED", "IN_PROGRESS"])
    def test_running_job_keeps_polling(self, status) -> None:
        assert _next_state(_job(status)) == PollState.POLLING

    def test_completed_job(self) -> None:
        assert _next_state(_job("COMPLETED")) == PollState.COMPLETED

    def test_failed_job(self) -> None:
        assert _next_state(_job("FAILED")) == PollState.FAILED

    def test_deleted_job(self) -> None:
        assert _next_state(None) == PollState.FAILED
