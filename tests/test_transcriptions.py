"""Tests for the idempotent transcription job cache."""

import asyncio
import hashlib
import logging
from unittest.mock import AsyncMock, patch

import pytest

from recap.application.transcriptions import delete_transcription, list_transcriptions, submit_transcription
from recap.core.constants import SUMMARY_SECTIONS, SUMMARY_UNAVAILABLE
from recap.core.errors import (
    AuthenticationError,
    InvalidRequestError,
    MissingArtifactError,
    NotFoundError,
    PayloadTooLargeError,
    TranscriptionFailedError,
    TranscriptionTimedOutError,
)
from recap.schemas.transcriptions import ArtifactUpload
from recap.services.summarizer import SummarizationError

AUDIO = b"RIFF....WAVEfmt interview audio bytes"


def _upload(data: bytes = AUDIO, filename: str = "interview.wav", context: str = "team standup") -> ArtifactUpload:
    return ArtifactUpload(data=data, filename=filename, content_type="audio/wav", context=context)


def _hash(data: bytes = AUDIO) -> str:
    return hashlib.sha256(data).hexdigest()


class TestSubmit:
    """Tests for submit_transcription."""

    async def test_first_submit_transcribes_and_stores(self, backend, alice, settings) -> None:
        """A new artifact is uploaded, transcribed, summarized and recorded."""
        result = await submit_transcription(_upload(), alice, settings)

        assert result.is_existing is False
        assert result.transcription == backend.transcript
        for section in SUMMARY_SECTIONS:
            assert section in result.summary
        assert backend.job_starts == 1
        assert f"uploads/user-alice/{_hash()}.wav" in backend.objects
        assert (alice.user_id, _hash()) in backend.records

    async def test_summary_receives_context(self, backend, alice, settings) -> None:
        await submit_transcription(_upload(context="team standup"), alice, settings)

        backend.summarize.assert_awaited_once()
        assert backend.summarize.await_args.kwargs["context"] == "team standup"

    async def test_resubmit_returns_cached_result(self, backend, alice, settings) -> None:
        """Identical bytes from the same user are served from the record store."""
        first = await submit_transcription(_upload(), alice, settings)
        second = await submit_transcription(_upload(filename="renamed.mp3"), alice, settings)

        assert second.is_existing is True
        assert second.transcription == first.transcription
        assert second.summary == first.summary
        assert backend.job_starts == 1
        assert backend.summarize.await_count == 1

    async def test_concurrent_submits_share_one_job(self, backend, alice, settings) -> None:
        results = await asyncio.gather(
            submit_transcription(_upload(), alice, settings),
            submit_transcription(_upload(), alice, settings),
        )

        assert backend.job_starts == 1
        assert results[0].transcription == results[1].transcription
        assert len(backend.records) == 1

    async def test_owners_are_independent(self, backend, alice, bob, settings) -> None:
        """The same bytes from two users produce two jobs and two records."""
        await submit_transcription(_upload(), alice, settings)
        result = await submit_transcription(_upload(), bob, settings)

        assert result.is_existing is False
        assert backend.job_starts == 2
        assert backend.record_keys() == {f"user-alice/{_hash()}", f"user-bob/{_hash()}"}

    async def test_empty_artifact_rejected_before_storage(self, backend, alice, settings) -> None:
        with pytest.raises(MissingArtifactError):
            await submit_transcription(_upload(data=b""), alice, settings)

        assert backend.storage_writes == 0
        assert backend.job_starts == 0

    async def test_oversize_artifact_rejected_before_storage(self, backend, alice, settings) -> None:
        limited = settings.model_copy(update={"max_upload_bytes": 16})

        with pytest.raises(PayloadTooLargeError):
            await submit_transcription(_upload(data=b"x" * 17), alice, limited)

        assert backend.storage_writes == 0
        assert backend.job_starts == 0

    async def test_artifact_at_limit_is_accepted(self, backend, alice, settings) -> None:
        limited = settings.model_copy(update={"max_upload_bytes": 16})

        result = await submit_transcription(_upload(data=b"x" * 16), alice, limited)

        assert result.is_existing is False

    async def test_failed_job_raises_and_persists_nothing(self, backend, alice, settings) -> None:
        backend.outcome = "fail"

        with pytest.raises(TranscriptionFailedError):
            await submit_transcription(_upload(), alice, settings)

        assert backend.records == {}
        backend.summarize.assert_not_awaited()

    async def test_resubmit_after_failure_restarts_job(self, backend, alice, settings) -> None:
        backend.outcome = "fail"
        with pytest.raises(TranscriptionFailedError):
            await submit_transcription(_upload(), alice, settings)

        backend.outcome = "complete"
        result = await submit_transcription(_upload(), alice, settings)

        assert result.is_existing is False
        assert backend.job_starts == 1
        assert backend.job_restarts == 1
        assert backend.job_for(alice.user_id, _hash()).status == "COMPLETED"

    async def test_timeout_leaves_job_running(self, backend, alice, settings) -> None:
        backend.outcome = "hang"

        with pytest.raises(TranscriptionTimedOutError):
            await submit_transcription(_upload(), alice, settings)

        assert backend.records == {}
        assert backend.job_for(alice.user_id, _hash()).status == "QUEUED"

    async def test_retry_after_timeout_attaches(self, backend, alice, settings) -> None:
        backend.outcome = "hang"
        with pytest.raises(TranscriptionTimedOutError):
            await submit_transcription(_upload(), alice, settings)

        backend.outcome = "complete"
        result = await submit_transcription(_upload(), alice, settings)

        assert result.transcription == backend.transcript
        assert backend.job_starts == 1

    async def test_summary_failure_returns_sentinel_without_record(self, backend, alice, settings) -> None:
        backend.summarize.side_effect = SummarizationError("provider down")

        result = await submit_transcription(_upload(), alice, settings)

        assert result.transcription == backend.transcript
        assert result.summary == SUMMARY_UNAVAILABLE
        assert result.is_existing is False
        assert backend.records == {}

    async def test_summary_retry_reuses_completed_job(self, backend, alice, settings) -> None:
        """Retrying after a summary failure re-attempts only summarization."""
        backend.summarize.side_effect = [SummarizationError("provider down"), "**Summary:**\nok"]

        await submit_transcription(_upload(), alice, settings)
        uploads_after_first = backend.storage_writes
        result = await submit_transcription(_upload(), alice, settings)

        assert result.summary == "**Summary:**\nok"
        assert result.is_existing is False
        assert backend.job_starts == 1
        assert backend.storage_writes == uploads_after_first
        assert (alice.user_id, _hash()) in backend.records

    async def test_submit_logs_at_info(self, backend, alice, settings, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="recap"):
            result = await submit_transcription(_upload(), alice, settings)

        assert result.transcription == backend.transcript
        start = next(record for record in caplog.records if record.getMessage() == "transcription submit start")
        assert start.source_name == "interview.wav"

    async def test_missing_result_reruns_completed_job(self, backend, alice, settings) -> None:
        """A COMPLETED job whose transcript object is gone is re-queued instead of failing forever."""
        backend.summarize.side_effect = [SummarizationError("provider down"), "**Summary:**\nok"]
        await submit_transcription(_upload(), alice, settings)
        backend.objects.pop(f"transcripts/user-alice/{_hash()}.json")

        result = await submit_transcription(_upload(), alice, settings)

        assert result.transcription == backend.transcript
        assert result.summary == "**Summary:**\nok"
        assert backend.job_starts == 1
        assert backend.job_restarts == 1
        assert (alice.user_id, _hash()) in backend.records


class TestList:
    """Tests for list_transcriptions."""

    async def test_empty_history(self, backend, alice, settings) -> None:
        assert await list_transcriptions(alice, settings) == []

    async def test_lists_only_callers_records(self, backend, alice, bob, settings) -> None:
        await submit_transcription(_upload(), alice, settings)
        await submit_transcription(_upload(data=b"other audio"), bob, settings)

        records = await list_transcriptions(alice, settings)

        assert [record.key for record in records] == [f"user-alice/{_hash()}"]
        assert records[0].file_name == "interview.wav"
        assert records[0].context == "team standup"

    async def test_newest_first(self, backend, alice, settings) -> None:
        await submit_transcription(_upload(data=b"first"), alice, settings)
        await submit_transcription(_upload(data=b"second"), alice, settings)
        backend.records[(alice.user_id, _hash(b"first"))]["created_at"] = "2026-01-01T00:00:00+00:00"
        backend.records[(alice.user_id, _hash(b"second"))]["created_at"] = "2026-02-01T00:00:00+00:00"

        records = await list_transcriptions(alice, settings)

        assert [record.file_hash for record in records] == [_hash(b"second"), _hash(b"first")]

    async def test_serializes_with_camel_case(self, backend, alice, settings) -> None:
        await submit_transcription(_upload(), alice, settings)

        payload = (await list_transcriptions(alice, settings))[0].model_dump(by_alias=True)

        assert {"key", "fileHash", "fileName", "context", "transcription", "summary", "createdAt"} <= payload.keys()


class TestDelete:
    """Tests for delete_transcription."""

    async def test_delete_removes_record_job_and_objects(self, backend, alice, settings) -> None:
        await submit_transcription(_upload(), alice, settings)

        result = await delete_transcription(f"user-alice/{_hash()}", alice, settings)

        assert result.success is True
        assert await list_transcriptions(alice, settings) == []
        assert backend.job_for(alice.user_id, _hash()) is None
        assert backend.objects == {}

    async def test_delete_accepts_bare_hash(self, backend, alice, settings) -> None:
        await submit_transcription(_upload(), alice, settings)

        await delete_transcription(_hash(), alice, settings)

        assert backend.records == {}

    async def test_resubmit_after_delete_starts_fresh(self, backend, alice, settings) -> None:
        await submit_transcription(_upload(), alice, settings)
        await delete_transcription(_hash(), alice, settings)

        result = await submit_transcription(_upload(), alice, settings)

        assert result.is_existing is False
        assert backend.job_starts == 2

    async def test_other_owner_is_rejected(self, backend, alice, bob, settings) -> None:
        await submit_transcription(_upload(), alice, settings)

        with pytest.raises(AuthenticationError):
            await delete_transcription(f"user-alice/{_hash()}", bob, settings)

        assert (alice.user_id, _hash()) in backend.records
        assert backend.job_for(alice.user_id, _hash()) is not None

    async def test_unknown_key_is_not_found(self, backend, alice, settings) -> None:
        with pytest.raises(NotFoundError):
            await delete_transcription(f"user-alice/{_hash()}", alice, settings)

    async def test_malformed_key_is_invalid(self, backend, alice, settings) -> None:
        with pytest.raises(InvalidRequestError):
            await delete_transcription("user-alice/not-a-hash", alice, settings)

    async def test_deletes_job_without_record(self, backend, alice, settings) -> None:
        """An abandoned job (e.g. summary never succeeded) can still be removed."""
        backend.summarize.side_effect = SummarizationError("provider down")
        await submit_transcription(_upload(), alice, settings)

        result = await delete_transcription(_hash(), alice, settings)

        assert result.success is True
        assert backend.job_for(alice.user_id, _hash()) is None

    async def test_cleanup_failures_are_swallowed(self, backend, alice, settings) -> None:
        await submit_transcription(_upload(), alice, settings)
        broken = AsyncMock(side_effect=RuntimeError("storage offline"))

        with patch("recap.application.transcriptions.delete_object", broken):
            result = await delete_transcription(_hash(), alice, settings)

        assert broken.await_count == 2
        assert result.success is True
        assert backend.records == {}

    async def test_objects_kept_when_job_delete_fails(self, backend, alice, settings) -> None:
        """A surviving job row keeps its transcript, so the same upload still resolves afterwards."""
        await submit_transcription(_upload(), alice, settings)
        broken = AsyncMock(side_effect=RuntimeError("database offline"))

        with patch("recap.application.transcriptions.delete_job", broken):
            result = await delete_transcription(_hash(), alice, settings)

        assert result.success is True
        assert backend.records == {}
        assert backend.job_for(alice.user_id, _hash()).status == "COMPLETED"
        assert f"transcripts/user-alice/{_hash()}.json" in backend.objects

        again = await submit_transcription(_upload(), alice, settings)

        assert again.transcription == backend.transcript
        assert backend.job_starts == 1
        assert (alice.user_id, _hash()) in backend.records

    async def test_audio_removed_when_job_row_is_gone(self, backend, alice, settings) -> None:
        await submit_transcription(_upload(), alice, settings)
        backend.jobs.clear()

        result = await delete_transcription(_hash(), alice, settings)

        assert result.success is True
        assert backend.objects == {}
