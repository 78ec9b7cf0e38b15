"""Supabase transcription job registry CRUD.

Rows are keyed by the deterministic job name, so inserting is the atomic
start-if-absent primitive for a given (user, fingerprint).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from postgrest import APIError

from recap.core.errors import ExternalServiceError
from recap.schemas.jobs import TranscriptionJob, TranscriptionJobStatus
from recap.services.supabase.helpers import (
    first_row,
    is_unique_violation,
    optional_row,
    raise_for_postgrest_error,
)
from supabase import AsyncClient

TABLE = "transcription_jobs"
_COLUMNS = (
    "job_name,user_id,file_hash,status,media_object_key,language_code,"
    "transcript_object_key,error_code,failure_reason,attempt_count"
)


def _to_job(row: dict[str, Any]) -> TranscriptionJob:
    try:
        return TranscriptionJob.model_validate(row)
    except ValueError as exc:
        raise ExternalServiceError("Supabase returned an unexpected transcription_jobs shape.") from exc


async def fetch_job(client: AsyncClient, job_name: str) -> TranscriptionJob | None:
    try:
        response = await client.table(TABLE).select(_COLUMNS).eq("job_name", job_name).limit(1).execute()
    except APIError as exc:
        raise_for_postgrest_error(exc, "Failed to fetch transcription job.")

    row = optional_row(response.data, error_message="Supabase returned an unexpected transcription_jobs shape.")
    return _to_job(row) if row else None


async def create_job_if_absent(
    client: AsyncClient,
    *,
    job_name: str,
    user_id: str,
    file_hash: str,
    media_object_key: str,
    language_code: str,
) -> tuple[TranscriptionJob, bool]:
    """
    Start a job unless one with the same name already exists.

    Returns (job, created). ``created`` is False when another request got there first.
    """
    payload = {
        "job_name": job_name,
        "user_id": user_id,
        "file_hash": file_hash,
        "media_object_key": media_object_key,
        "language_code": language_code,
        "status": "QUEUED",
    }
    try:
        response = await client.table(TABLE).insert(payload).execute()
    except APIError as exc:
        if is_unique_violation(exc):
            existing = await fetch_job(client, job_name)
            if existing:
                return existing, False
        raise_for_postgrest_error(exc, "Failed to start transcription job.")

    return _to_job(first_row(response.data, error_message="Failed to start transcription job.")), True


async def requeue_job(
    client: AsyncClient,
    *,
    job_name: str,
    media_object_key: str,
    expected_status: TranscriptionJobStatus,
) -> TranscriptionJob | None:
    """
    Move a terminal job back to QUEUED with a fresh attempt budget.

    The status filter makes this a compare-and-set: None means the row is no
    longer in ``expected_status`` (someone else already requeued it).
    """
    try:
        response = await (
            client.table(TABLE)
            .update(
                {
                    "status": "QUEUED",
                    "media_object_key": media_object_key,
                    "attempt_count": 0,
                    "error_code": None,
                    "failure_reason": None,
                    "transcript_object_key": None,
                    "run_after": None,
                }
            )
            .eq("job_name", job_name)
            .eq("status", expected_status)
            .execute()
        )
    except APIError as exc:
        raise_for_postgrest_error(exc, "Failed to restart transcription job.")

    row = optional_row(response.data, error_message="Failed to restart transcription job.")
    return _to_job(row) if row else None


async def claim_next_job(client: AsyncClient) -> TranscriptionJob | None:
    try:
        response = await client.rpc("claim_next_transcription_job").execute()
    except APIError as exc:
        raise_for_postgrest_error(exc, "Failed to claim transcription job.")

    data = response.data
    if not data:
        return None
    row = dict(data) if isinstance(data, dict) else first_row(data, error_message="Unexpected claim shape.")
    # The RPC returns a null composite when the queue is empty.
    if not row.get("job_name"):
        return None
    return _to_job(row)


async def requeue_stale_jobs(client: AsyncClient, *, stale_after_seconds: int) -> int:
    try:
        response = await client.rpc(
            "requeue_stale_transcription_jobs",
            {"stale_after": f"{stale_after_seconds} seconds"},
        ).execute()
    except APIError as exc:
        raise_for_postgrest_error(exc, "Failed to requeue stale transcription jobs.")

    data = response.data
    if isinstance(data, int):
        return data
    if isinstance(data, dict) and isinstance(data.get("requeue_stale_transcription_jobs"), int):
        return data["requeue_stale_transcription_jobs"]
    return 0


async def _update_job(client: AsyncClient, job_name: str, payload: dict[str, Any], error_message: str) -> bool:
    """Returns whether a row was updated (False when the job was deleted)."""
    try:
        response = await client.table(TABLE).update(payload).eq("job_name", job_name).execute()
    except APIError as exc:
        raise_for_postgrest_error(exc, error_message)

    return bool(response.data)


async def mark_job_completed(client: AsyncClient, *, job_name: str, transcript_object_key: str) -> bool:
    return await _update_job(
        client,
        job_name,
        {
            "status": "COMPLETED",
            "transcript_object_key": transcript_object_key,
            "error_code": None,
            "failure_reason": None,
            "run_after": None,
            "completed_at": datetime.now(UTC).isoformat(),
        },
        "Failed to update transcription job status.",
    )


async def mark_job_failed(client: AsyncClient, *, job_name: str, error_code: str, failure_reason: str) -> None:
    await _update_job(
        client,
        job_name,
        {
            "status": "FAILED",
            "error_code": error_code,
            "failure_reason": failure_reason,
            "last_error_at": datetime.now(UTC).isoformat(),
            "run_after": None,
        },
        "Failed to update transcription job status.",
    )


async def mark_job_retry(
    client: AsyncClient,
    *,
    job_name: str,
    error_code: str,
    failure_reason: str,
    run_after: datetime,
) -> None:
    await _update_job(
        client,
        job_name,
        {
            "status": "QUEUED",
            "error_code": error_code,
            "failure_reason": failure_reason,
            "last_error_at": datetime.now(UTC).isoformat(),
            "run_after": run_after.isoformat(),
        },
        "Failed to update transcription job status.",
    )


async def delete_job(client: AsyncClient, job_name: str) -> None:
    try:
        await client.table(TABLE).delete().eq("job_name", job_name).execute()
    except APIError as exc:
        raise_for_postgrest_error(exc, "Failed to delete transcription job.")
