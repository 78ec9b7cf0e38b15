"""Idempotent transcription cache.

Identical audio from the same user is transcribed and summarized once. The
durable record is only written after both steps succeed; until then the job
registry row (named after the user and content hash) is the source of truth,
so retries and concurrent submits attach to the same job.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from datetime import UTC, datetime
from typing import Any

from recap.api.deps.auth import AuthContext
from recap.application.guards import validate_artifact
from recap.core.config import Settings
from recap.core.constants import DEFAULT_CONTENT_TYPE, SUMMARY_UNAVAILABLE
from recap.core.errors import AuthenticationError, NotFoundError, TranscriptionFailedError, TranscriptionTimedOutError
from recap.core.keys import (
    audio_object_key,
    build_job_name,
    build_record_key,
    compute_content_hash,
    parse_record_key,
    transcript_object_key,
)
from recap.core.logging import log_context
from recap.crud.supabase.storage_objects import delete_object, download_object, upload_object
from recap.crud.supabase.transcription_jobs import (
    create_job_if_absent,
    delete_job,
    fetch_job,
    requeue_job,
)
from recap.crud.supabase.transcriptions import create_record, delete_record, fetch_record, list_records
from recap.orchestration.poller import PollState, poll_transcription_job
from recap.schemas.jobs import TranscriptionJob
from recap.schemas.transcriptions import ArtifactUpload, DeleteResponse, TranscriptionRecord, TranscriptionResponse
from recap.services.summarizer import SummarizationError, summarize_transcript
from recap.services.supabase import create_supabase_admin_client
from recap.services.transcriber import decode_transcript_payload
from supabase import AsyncClient

logger = logging.getLogger(__name__)


def _to_record(row: dict[str, Any]) -> TranscriptionRecord:
    return TranscriptionRecord(
        key=build_record_key(row["user_id"], row["file_hash"]),
        file_hash=row["file_hash"],
        file_name=row.get("filename") or "Unknown file",
        context=row.get("context") or "",
        transcription=row.get("transcription") or "",
        summary=row.get("summary") or SUMMARY_UNAVAILABLE,
        created_at=row["created_at"],
    )


async def _start_or_attach(
    client: AsyncClient,
    *,
    upload: ArtifactUpload,
    user_id: str,
    file_hash: str,
    settings: Settings,
    restart_completed: bool = False,
) -> TranscriptionJob:
    """
    Attach to the job for this input, starting it if needed.

    FAILED jobs are re-queued. With ``restart_completed`` a COMPLETED job whose
    result went missing is re-queued as well.
    """
    job_name = build_job_name(user_id, file_hash)
    job = await fetch_job(client, job_name)
    restartable = {"FAILED", "COMPLETED"} if restart_completed else {"FAILED"}
    if job is not None and job.status not in restartable:
        logger.info("attaching to existing transcription job", extra={"job_name": job_name, "job_status": job.status})
        return job

    media_key = audio_object_key(user_id, file_hash, upload.filename)
    await upload_object(
        client,
        bucket=settings.supabase_audio_bucket,
        object_key=media_key,
        data=upload.data,
        content_type=upload.content_type or DEFAULT_CONTENT_TYPE,
    )

    if job is not None:
        restarted = await requeue_job(
            client,
            job_name=job_name,
            media_object_key=media_key,
            expected_status=job.status,
        )
        if restarted is not None:
            logger.info("restarted transcription job", extra={"job_name": job_name, "previous_status": job.status})
            return restarted
        current = await fetch_job(client, job_name)
        if current is not None:
            return current

    job, created = await create_job_if_absent(
        client,
        job_name=job_name,
        user_id=user_id,
        file_hash=file_hash,
        media_object_key=media_key,
        language_code=settings.transcription_language,
    )
    if created:
        logger.info("transcription job started", extra={"job_name": job_name, "object_key": media_key})
    else:
        logger.info("transcription job started concurrently, attaching", extra={"job_name": job_name})
    return job


async def _await_completion(client: AsyncClient, job: TranscriptionJob, settings: Settings) -> TranscriptionJob:
    if job.status == "COMPLETED":
        logger.info("transcription job already completed", extra={"job_name": job.job_name})
        return job

    outcome = await poll_transcription_job(client, job.job_name, settings)
    if outcome.state == PollState.TIMED_OUT:
        raise TranscriptionTimedOutError("Transcription is still running. Retry the same upload to resume waiting.")
    if outcome.state != PollState.COMPLETED or outcome.job is None:
        reason = outcome.job.failure_reason if outcome.job else None
        logger.warning("transcription job failed", extra={"job_name": job.job_name, "failure_reason": reason})
        raise TranscriptionFailedError("Failed to transcribe audio.")
    return outcome.job


async def _read_transcript(client: AsyncClient, job: TranscriptionJob, settings: Settings) -> str:
    if not job.transcript_object_key:
        raise TranscriptionFailedError("Transcription job completed without a result location.")
    data = await download_object(client, bucket=settings.supabase_audio_bucket, object_key=job.transcript_object_key)
    return decode_transcript_payload(data)


async def submit_transcription(
    upload: ArtifactUpload,
    auth: AuthContext,
    settings: Settings,
) -> TranscriptionResponse:
    data = validate_artifact(upload.data, settings)
    file_hash = compute_content_hash(data)

    with log_context(user_id=auth.user_id, file_hash=file_hash):
        logger.info("transcription submit start", extra={"bytes": len(data), "source_name": upload.filename})
        client = await create_supabase_admin_client(settings)

        existing = await fetch_record(client, user_id=auth.user_id, file_hash=file_hash)
        if existing:
            logger.info("transcription cache_hit=true")
            return TranscriptionResponse(
                transcription=existing["transcription"],
                summary=existing["summary"],
                is_existing=True,
            )

        job = await _start_or_attach(
            client,
            upload=upload,
            user_id=auth.user_id,
            file_hash=file_hash,
            settings=settings,
        )
        job = await _await_completion(client, job, settings)
        try:
            transcript = await _read_transcript(client, job, settings)
        except NotFoundError:
            logger.warning("transcription result missing, re-running job", extra={"job_name": job.job_name})
            job = await _start_or_attach(
                client,
                upload=upload,
                user_id=auth.user_id,
                file_hash=file_hash,
                settings=settings,
                restart_completed=True,
            )
            job = await _await_completion(client, job, settings)
            transcript = await _read_transcript(client, job, settings)

        try:
            summary = await summarize_transcript(transcript, context=upload.context, settings=settings)
        except SummarizationError as exc:
            # Not persisted: a retry re-attempts only the summary against the completed job.
            logger.warning("summary unavailable, returning transcript only", extra={"error_code": exc.code})
            return TranscriptionResponse(transcription=transcript, summary=SUMMARY_UNAVAILABLE, is_existing=False)

        record = await create_record(
            client,
            user_id=auth.user_id,
            file_hash=file_hash,
            filename=upload.filename,
            context=upload.context,
            transcription=transcript,
            summary=summary,
            created_at=datetime.now(UTC).isoformat(),
        )
        logger.info("transcription stored")

    return TranscriptionResponse(
        transcription=record["transcription"],
        summary=record["summary"],
        is_existing=False,
    )


async def list_transcriptions(auth: AuthContext, settings: Settings) -> list[TranscriptionRecord]:
    with log_context(user_id=auth.user_id):
        client = await create_supabase_admin_client(settings)
        rows = await list_records(client, user_id=auth.user_id)
        logger.info("history fetched", extra={"count": len(rows)})
        return [_to_record(row) for row in rows]


async def _cleanup(label: str, action: Awaitable[None]) -> bool:
    try:
        await action
    except Exception:
        logger.warning("failed to cleanup %s", label, exc_info=True)
        return False
    return True


async def delete_transcription(key: str, auth: AuthContext, settings: Settings) -> DeleteResponse:
    owner_id, file_hash = parse_record_key(key, default_user_id=auth.user_id)

    with log_context(user_id=auth.user_id, file_hash=file_hash):
        if owner_id != auth.user_id:
            logger.warning("delete rejected for another user's record", extra={"error_code": "unauthorized"})
            raise AuthenticationError("Unauthorized")

        client = await create_supabase_admin_client(settings)
        job_name = build_job_name(owner_id, file_hash)

        job: TranscriptionJob | None = None
        try:
            job = await fetch_job(client, job_name)
        except Exception:
            logger.warning("failed to look up transcription job before delete", exc_info=True)

        record = await delete_record(client, user_id=owner_id, file_hash=file_hash)
        if record is None and job is None:
            raise NotFoundError("Transcription not found.")
        logger.info("transcription deleted", extra={"record_deleted": record is not None, "had_job": job is not None})

        # The job row points at both objects; keep them while it survives.
        if not await _cleanup("transcription job", delete_job(client, job_name)):
            return DeleteResponse(success=True)

        audio_keys: set[str] = set()
        if job is not None:
            audio_keys.add(job.media_object_key)
        if record is not None:
            audio_keys.add(audio_object_key(owner_id, file_hash, record.get("filename")))

        bucket = settings.supabase_audio_bucket
        await _cleanup(
            "transcript object",
            delete_object(client, bucket=bucket, object_key=transcript_object_key(owner_id, file_hash)),
        )
        for audio_key in sorted(audio_keys):
            await _cleanup("audio object", delete_object(client, bucket=bucket, object_key=audio_key))

    return DeleteResponse(success=True)
