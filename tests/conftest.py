"""Test configuration."""

import os
from collections.abc import Iterator
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

# Settings are read at import time by recap.api.app, so the environment has to
# be in place before anything under recap is imported.
_TEST_ENV = {
    "OPENROUTER_API_KEY": "test-openrouter-key",
    "GROQ_API_KEY": "test-groq-key",
    "SUPABASE_URL": "http://localhost:54321",
    "SUPABASE_PUBLISHABLE_KEY": "test-publishable-key",
    "SUPABASE_SECRET_KEY": "test-secret-key",
    "SUPABASE_AUTH_MODE": "local",
    "SUPABASE_JWT_SECRET": "test-jwt-secret-with-enough-length-for-hs256",
    "APP_ENV": "test",
    "LOG_COLOR": "0",
    "RUN_WORKER_IN_API": "0",
}
os.environ.update(_TEST_ENV)

from recap.api.deps.auth import AuthContext  # noqa: E402
from recap.core.config import Settings, get_settings  # noqa: E402
from recap.core.errors import NotFoundError  # noqa: E402
from recap.core.keys import build_job_name, build_record_key  # noqa: E402
from recap.schemas.jobs import TranscriptionJob  # noqa: E402
from recap.services.transcriber import encode_transcript_payload  # noqa: E402

FOUR_SECTION_SUMMARY = (
    "**Summary:**\nThe team reviewed the sprint.\n\n"
    "**Participants:**\nAlice, Bob\n\n"
    "**Key Points:**\n- Release is on track\n\n"
    "**Action Items:**\n- Bob to update the changelog"
)


@pytest.fixture
def settings() -> Settings:
    """Settings with tight polling bounds so failing tests end quickly."""
    get_settings.cache_clear()
    return Settings().model_copy(
        update={
            "poll_interval_seconds": 5.0,
            "poll_timeout_seconds": 30.0,
            "summary_backoff_base_seconds": 0.0,
        }
    )


@pytest.fixture
def alice() -> AuthContext:
    return AuthContext(access_token="token-alice", user_id="user-alice")


@pytest.fixture
def bob() -> AuthContext:
    return AuthContext(access_token="token-bob", user_id="user-bob")


class FakeBackend:
    """In-memory stand-in for the record table, the job registry and the bucket.

    ``outcome`` decides what the simulated worker does with a job the next time
    it is read: ``"complete"`` writes a transcript and completes it, ``"fail"``
    marks it FAILED, ``"hang"`` leaves it running.
    """

    def __init__(self) -> None:
        self.records: dict[tuple[str, str], dict[str, Any]] = {}
        self.jobs: dict[str, TranscriptionJob] = {}
        self.objects: dict[str, bytes] = {}
        self.outcome = "complete"
        self.transcript = "Alice: the release is on track. Bob: I will update the changelog."
        self.job_starts = 0
        self.job_restarts = 0
        self.storage_writes = 0
        self.client = object()

    # -- simulated worker --------------------------------------------------

    def _advance(self, job: TranscriptionJob) -> TranscriptionJob:
        if job.is_terminal or self.outcome == "hang":
            return job
        if self.outcome == "fail":
            updated = job.model_copy(update={"status": "FAILED", "error_code": "transcription_failed"})
        else:
            result_key = f"transcripts/{job.user_id}/{job.file_hash}.json"
            self.objects[result_key] = encode_transcript_payload(job.job_name, self.transcript)
            updated = job.model_copy(update={"status": "COMPLETED", "transcript_object_key": result_key})
        self.jobs[job.job_name] = updated
        return updated

    # -- job registry -----------------------------------------------------

    async def fetch_job(self, client: Any, job_name: str) -> TranscriptionJob | None:
        job = self.jobs.get(job_name)
        return self._advance(job) if job else None

    async def create_job_if_absent(self, client: Any, **fields: Any) -> tuple[TranscriptionJob, bool]:
        existing = self.jobs.get(fields["job_name"])
        if existing:
            return existing, False
        job = TranscriptionJob(
            job_name=fields["job_name"],
            user_id=fields["user_id"],
            file_hash=fields["file_hash"],
            status="QUEUED",
            media_object_key=fields["media_object_key"],
            language_code=fields["language_code"],
        )
        self.jobs[job.job_name] = job
        self.job_starts += 1
        return job, True

    async def requeue_job(
        self,
        client: Any,
        *,
        job_name: str,
        media_object_key: str,
        expected_status: str,
    ) -> TranscriptionJob | None:
        job = self.jobs.get(job_name)
        if job is None or job.status != expected_status:
            return None
        restarted = job.model_copy(
            update={
                "status": "QUEUED",
                "media_object_key": media_object_key,
                "error_code": None,
                "transcript_object_key": None,
            }
        )
        self.jobs[job_name] = restarted
        self.job_restarts += 1
        return restarted

    async def delete_job(self, client: Any, job_name: str) -> None:
        self.jobs.pop(job_name, None)

    # -- record table -----------------------------------------------------

    async def fetch_record(self, client: Any, *, user_id: str, file_hash: str) -> dict[str, Any] | None:
        return self.records.get((user_id, file_hash))

    async def list_records(self, client: Any, *, user_id: str) -> list[dict[str, Any]]:
        rows = [row for (owner, _), row in self.records.items() if owner == user_id]
        return sorted(rows, key=lambda row: row["created_at"], reverse=True)

    async def create_record(self, client: Any, **row: Any) -> dict[str, Any]:
        key = (row["user_id"], row["file_hash"])
        return self.records.setdefault(key, dict(row))

    async def delete_record(self, client: Any, *, user_id: str, file_hash: str) -> dict[str, Any] | None:
        return self.records.pop((user_id, file_hash), None)

    # -- bucket -------------------------------------------------------------

    async def upload_object(self, client: Any, *, bucket: str, object_key: str, data: bytes, content_type: str) -> None:
        self.storage_writes += 1
        self.objects[object_key] = data

    async def download_object(self, client: Any, *, bucket: str, object_key: str) -> bytes:
        if object_key not in self.objects:
            raise NotFoundError("Storage resource not found.")
        return self.objects[object_key]

    async def delete_object(self, client: Any, *, bucket: str, object_key: str) -> None:
        self.objects.pop(object_key, None)

    # -- helpers for assertions --------------------------------------------

    def job_for(self, user_id: str, file_hash: str) -> TranscriptionJob | None:
        return self.jobs.get(build_job_name(user_id, file_hash))

    def record_keys(self) -> set[str]:
        return {build_record_key(owner, file_hash) for owner, file_hash in self.records}


_APPLICATION = "recap.application.transcriptions"


@pytest.fixture
def backend() -> Iterator[FakeBackend]:
    """Patch the storage boundary of the job cache with a FakeBackend."""
    fake = FakeBackend()
    summarize = AsyncMock(return_value=FOUR_SECTION_SUMMARY)
    targets = {
        f"{_APPLICATION}.create_supabase_admin_client": AsyncMock(return_value=fake.client),
        f"{_APPLICATION}.fetch_job": fake.fetch_job,
        f"{_APPLICATION}.create_job_if_absent": fake.create_job_if_absent,
        f"{_APPLICATION}.requeue_job": fake.requeue_job,
        f"{_APPLICATION}.delete_job": fake.delete_job,
        f"{_APPLICATION}.fetch_record": fake.fetch_record,
        f"{_APPLICATION}.list_records": fake.list_records,
        f"{_APPLICATION}.create_record": fake.create_record,
        f"{_APPLICATION}.delete_record": fake.delete_record,
        f"{_APPLICATION}.upload_object": fake.upload_object,
        f"{_APPLICATION}.download_object": fake.download_object,
        f"{_APPLICATION}.delete_object": fake.delete_object,
        f"{_APPLICATION}.summarize_transcript": summarize,
        "recap.orchestration.poller.fetch_job": fake.fetch_job,
        "recap.orchestration.poller.asyncio.sleep": AsyncMock(),
    }
    patchers = [patch(target, new) for target, new in targets.items()]
    for patcher in patchers:
        patcher.start()
    fake.summarize = summarize  # type: ignore[attr-defined]
    try:
        yield fake
    finally:
        for patcher in reversed(patchers):
            patcher.stop()
