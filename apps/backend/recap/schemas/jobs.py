from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict

TranscriptionJobStatus = Literal["QUEUED", "IN_PROGRESS", "COMPLETED", "FAILED"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"COMPLETED", "FAILED"})


class TranscriptionJob(BaseModel):
    """A row of the ``transcription_jobs`` registry."""

    model_config = ConfigDict(extra="ignore")

    job_name: str
    user_id: str
    file_hash: str
    status: TranscriptionJobStatus
    media_object_key: str
    language_code: str | None = None
    transcript_object_key: str | None = None
    error_code: str | None = None
    failure_reason: str | None = None
    attempt_count: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
