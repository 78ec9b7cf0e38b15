from __future__ import annotations

import asyncio
import logging
import time
from datetime import UTC, datetime, timedelta

from recap.core.config import Settings, get_settings
from recap.core.constants import SIGNED_URL_TTL_SECONDS
from recap.core.errors import AppError, ConfigurationError, InvalidRequestError, NotFoundError
from recap.core.keys import transcript_object_key
from recap.core.logging import log_context, setup_logging
from recap.crud.supabase.storage_objects import create_signed_url, delete_object, upload_object
from recap.crud.supabase.transcription_jobs import (
    claim_next_job,
    mark_job_completed,
    mark_job_failed,
    mark_job_retry,
    requeue_stale_jobs,
)
from recap.schemas.jobs import TranscriptionJob
from recap.services.supabase import create_supabase_admin_client, wait_for_job_created
from recap.services.transcriber import encode_transcript_payload, transcribe_url
from supabase import AsyncClient

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Worker configuration
# ---------------------------------------------------------------------------
WORKER_IDLE_SLEEP_SECONDS = 1
WORKER_MAX_ATTEMPTS = 3
WORKER_BACKOFF_BASE_SECONDS = 5
WORKER_STALE_AFTER_SECONDS = 900  # 15 minutes

# Retrying these cannot succeed.
_PERMANENT_ERRORS = (ConfigurationError, InvalidRequestError, NotFoundError)


def _compute_backoff_seconds(base: int, attempt: int) -> int:
    return int(base * (2 ** max(attempt - 1, 0)))


def _extract_error(exc: Exception) -> tuple[str, str]:
    if isinstance(exc, AppError):
        return exc.code, exc.detail
    return "internal_error", str(exc) or "Unhandled error."


async def _process_job(job: TranscriptionJob, settings: Settings, admin_client: AsyncClient) -> None:
    bucket = settings.supabase_audio_bucket
    job_start = time.perf_counter()

    signed_url = await create_signed_url(
        admin_client,
        bucket=bucket,
        object_key=job.media_object_key,
        ttl_seconds=SIGNED_URL_TTL_SECONDS,
    )
    transcript = await asyncio.to_thread(
        transcribe_url,
        signed_url,
        settings.groq_api_key,
        settings.transcription_model,
        job.language_code or settings.transcription_language,
    )
    logger.info(
        "transcribe_url %.2fms chars=%s",
        (time.perf_counter() - job_start) * 1000,
        len(transcript),
    )

    result_key = transcript_object_key(job.user_id, job.file_hash)
    await upload_object(
        admin_client,
        bucket=bucket,
        object_key=result_key,
        data=encode_transcript_payload(job.job_name, transcript),
        content_type="application/json",
    )
    if not await mark_job_completed(admin_client, job_name=job.job_name, transcript_object_key=result_key):
        # Deleted by its owner while running; nothing references the result any more.
        logger.warning("job deleted while running, discarding transcript", extra={"object_key": result_key})
        await delete_object(admin_client, bucket=bucket, object_key=result_key)
        return
    logger.info("job complete %.2fms", (time.perf_counter() - job_start) * 1000)


async def _handle_claimed_job(job: TranscriptionJob, settings: Settings, admin_client: AsyncClient) -> None:
    attempt_count = job.attempt_count
    with log_context(job_name=job.job_name, user_id=job.user_id, file_hash=job.file_hash, attempt=attempt_count):
        logger.info("job claimed")

        if attempt_count > WORKER_MAX_ATTEMPTS:
            await mark_job_failed(
                admin_client,
                job_name=job.job_name,
                error_code="max_attempts_exceeded",
                failure_reason="Job exceeded maximum retry attempts.",
            )
            return

        try:
            await _process_job(job, settings, admin_client)
        except Exception as exc:
            error_code, error_message = _extract_error(exc)
            logger.exception("job failed", extra={"error_code": error_code})
            if attempt_count < WORKER_MAX_ATTEMPTS and not isinstance(exc, _PERMANENT_ERRORS):
                backoff_seconds = _compute_backoff_seconds(WORKER_BACKOFF_BASE_SECONDS, attempt_count)
                await mark_job_retry(
                    admin_client,
                    job_name=job.job_name,
                    error_code=error_code,
                    failure_reason=error_message,
                    run_after=datetime.now(UTC) + timedelta(seconds=backoff_seconds),
                )
            else:
                await mark_job_failed(
                    admin_client,
                    job_name=job.job_name,
                    error_code=error_code,
                    failure_reason=error_message,
                )


async def _wait_for_job_notification(settings: Settings, timeout_seconds: float) -> bool:
    try:
        payload = await wait_for_job_created(settings, timeout_seconds=timeout_seconds)
    except Exception as exc:
        logger.debug("job_created listen unavailable, falling back to idle sleep", exc_info=exc)
        return False
    return payload is not None


def _drain_completed_tasks(tasks: set[asyncio.Task[None]]) -> None:
    done_tasks = {task for task in tasks if task.done()}
    for task in done_tasks:
        tasks.remove(task)
        try:
            task.result()
        except Exception:
            logger.exception("worker task crashed unexpectedly")


async def run_worker(settings: Settings) -> None:
    admin_client = await create_supabase_admin_client(settings)
    max_concurrent_jobs = settings.worker_max_concurrent_jobs
    running_tasks: set[asyncio.Task[None]] = set()

    while True:
        _drain_completed_tasks(running_tasks)
        requeued = await requeue_stale_jobs(admin_client, stale_after_seconds=WORKER_STALE_AFTER_SECONDS)
        if requeued:
            logger.warning("requeued stale transcription jobs", extra={"count": requeued})

        while len(running_tasks) < max_concurrent_jobs:
            job = await claim_next_job(admin_client)
            if not job:
                break
            running_tasks.add(asyncio.create_task(_handle_claimed_job(job, settings, admin_client)))

        if running_tasks:
            await asyncio.sleep(WORKER_IDLE_SLEEP_SECONDS)
            continue

        if not await _wait_for_job_notification(settings, settings.worker_job_notify_timeout_seconds):
            await asyncio.sleep(WORKER_IDLE_SLEEP_SECONDS)


def main() -> None:
    setup_logging()
    settings = get_settings()
    logger.info("Starting transcription worker loop")
    asyncio.run(run_worker(settings))


if __name__ == "__main__":
    main()
