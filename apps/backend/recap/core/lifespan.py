from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from recap.orchestration.runner import run_worker

logger = logging.getLogger(__name__)


_ENABLED_VALUES = {"1", "true", "yes", "on"}


def _should_run_embedded_worker() -> bool:
    raw = os.getenv("RUN_WORKER_IN_API", "").strip().lower()
    return raw in _ENABLED_VALUES


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Optionally run the transcription worker inside the API process.

    Opt-in via RUN_WORKER_IN_API for local development only; production runs
    ``recap-worker`` as its own process.
    """
    worker_task: asyncio.Task[None] | None = None

    if _should_run_embedded_worker():
        logger.warning("Starting embedded transcription worker in API process (dev-only).")
        worker_task = asyncio.create_task(run_worker(app.state.settings))

    try:
        yield
    finally:
        if worker_task is not None:
            logger.warning("Stopping embedded transcription worker")
            worker_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await worker_task
