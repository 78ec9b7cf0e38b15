"""Bounded polling of a transcription job until it reaches a terminal state."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from enum import StrEnum

from recap.core.config import Settings
from recap.core.errors import ExternalServiceError
from recap.crud.supabase.transcription_jobs import fetch_job
from recap.schemas.jobs import TranscriptionJob
from supabase import AsyncClient

logger = logging.getLogger(__name__)

MAX_ERROR_BACKOFF_SECONDS = 60.0


class PollState(StrEnum):
    PENDING = "PENDING"
    POLLING = "POLLING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"


@dataclass(frozen=True)
class PollOutcome:
    state: PollState
    job: TranscriptionJob | None
    polls: int
    elapsed_seconds: float


def _error_backoff_seconds(interval: float, consecutive_errors: int) -> float:
    return min(interval * (2 ** max(consecutive_errors - 1, 0)), MAX_ERROR_BACKOFF_SECONDS)


def _next_state(job: TranscriptionJob | None) -> PollState:
    if job is None:
        # Row vanished underneath us (deleted by its owner).
        return PollState.FAILED
    if not job.is_terminal:
        return PollState.POLLING
    return PollState.COMPLETED if job.status == "COMPLETED" else PollState.FAILED


async def poll_transcription_job(client: AsyncClient, job_name: str, settings: Settings) -> PollOutcome:
    """
    Poll ``job_name`` every ``poll_interval_seconds`` until it is terminal.

    The wait is bounded by ``poll_timeout_seconds`` (and the equivalent number
    of polls). Consecutive registry read errors back off exponentially and
    are re-raised after ``poll_max_errors``.
    """
    interval = settings.poll_interval_seconds
    timeout = settings.poll_timeout_seconds
    max_polls = max(1, math.ceil(timeout / interval))

    started = time.monotonic()
    deadline = started + timeout
    state = PollState.PENDING
    job: TranscriptionJob | None = None
    polls = 0
    consecutive_errors = 0

    while True:
        try:
            job = await fetch_job(client, job_name)
        except ExternalServiceError:
            consecutive_errors += 1
            if consecutive_errors >= settings.poll_max_errors:
                raise
            delay = _error_backoff_seconds(interval, consecutive_errors)
            logger.warning(
                "transcription job read failed, backing off",
                extra={"job_name": job_name, "consecutive_errors": consecutive_errors, "retry_in_seconds": delay},
            )
        else:
            consecutive_errors = 0
            polls += 1
            previous, state = state, _next_state(job)
            if state != previous:
                logger.info(
                    "transcription job %s -> %s",
                    previous,
                    state,
                    extra={"job_name": job_name, "job_status": job.status if job else None},
                )
            if state in (PollState.COMPLETED, PollState.FAILED):
                break
            delay = interval

        if polls >= max_polls or time.monotonic() + delay > deadline:
            state = PollState.TIMED_OUT
            logger.warning("transcription job poll timed out", extra={"job_name": job_name, "polls": polls})
            break

        await asyncio.sleep(delay)

    return PollOutcome(state=state, job=job, polls=polls, elapsed_seconds=time.monotonic() - started)
