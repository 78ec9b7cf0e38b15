from __future__ import annotations

import logging
import time

from postgrest import APIError

from recap.api import __version__
from recap.core.config import Settings
from recap.core.errors import NotReadyError
from recap.crud.supabase.transcriptions import TABLE as TRANSCRIPTIONS_TABLE
from recap.schemas.meta import HealthResponse, ReadyResponse, StatusResponse
from recap.services.supabase import create_supabase_admin_client

_START_TIME = time.monotonic()

logger = logging.getLogger(__name__)


async def health_status() -> HealthResponse:
    return HealthResponse(status="ok")


async def readiness_status(settings: Settings) -> ReadyResponse:
    missing = [
        name
        for name, value in (
            ("GROQ_API_KEY", settings.groq_api_key),
            ("OPENROUTER_API_KEY", settings.openrouter_api_key),
            ("SUPABASE_URL", settings.supabase_url),
            ("SUPABASE_SECRET_KEY", settings.supabase_secret_key),
        )
        if not value
    ]
    if missing:
        logger.warning("readiness check failed: missing configuration", extra={"missing": ",".join(missing)})
        raise NotReadyError(f"Missing configuration: {', '.join(missing)}.")

    client = await create_supabase_admin_client(settings)
    try:
        await client.table(TRANSCRIPTIONS_TABLE).select("file_hash").limit(1).execute()
    except APIError as exc:
        logger.warning(
            "readiness check failed: supabase not reachable",
            extra={"error_type": type(exc).__name__},
        )
        raise NotReadyError("Supabase is not reachable.") from exc

    return ReadyResponse(status="ok", checks={"config": "ok", "database": "ok"})


async def status_snapshot(settings: Settings) -> StatusResponse:
    return StatusResponse(
        status="ok",
        environment=settings.app_env,
        version=__version__,
        uptime_seconds=round(time.monotonic() - _START_TIME, 2),
    )
