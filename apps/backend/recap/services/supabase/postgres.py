"""Direct Postgres connection for LISTEN/NOTIFY support."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, cast
from urllib.parse import quote

import asyncpg

from recap.core.config import Settings
from recap.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

JOB_CREATED_CHANNEL = "transcription_job_created"


def _build_postgres_url(settings: Settings) -> str | None:
    if not settings.supabase_db_password or not settings.supabase_db_host:
        return None

    user = settings.supabase_db_user
    password = quote(settings.supabase_db_password, safe="")
    return (
        f"postgresql://{user}:{password}@{settings.supabase_db_host}:{settings.supabase_db_port}"
        f"/{settings.supabase_db_name}"
    )


def _parse_notification_payload(payload: str) -> dict[str, Any] | None:
    try:
        data = json.loads(payload)
    except ValueError:
        logger.warning("notification payload is not valid json")
        return None
    if not isinstance(data, dict):
        logger.warning("notification payload is not an object")
        return None
    return cast(dict[str, Any], data)


@asynccontextmanager
async def create_postgres_connection(settings: Settings) -> AsyncIterator[asyncpg.Connection]:
    """Create a direct Postgres connection for LISTEN/NOTIFY."""
    postgres_url = _build_postgres_url(settings)
    if not postgres_url:
        raise ConfigurationError("SUPABASE_DB connection details are not configured.")

    try:
        conn = await asyncpg.connect(postgres_url, timeout=10)
    except (OSError, asyncpg.PostgresError) as exc:
        raise ConfigurationError(f"Failed to connect to Postgres: {exc}") from exc

    try:
        yield conn
    finally:
        await conn.close()


async def wait_for_job_created(settings: Settings, *, timeout_seconds: float) -> dict[str, Any] | None:
    """
    Block until a transcription job is queued or the timeout expires.

    Returns the notification payload, or None on timeout.
    """
    async with create_postgres_connection(settings) as conn:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

        def _on_notify(_conn: asyncpg.Connection, _pid: int, _channel: str, payload: str) -> None:
            data = _parse_notification_payload(payload)
            if data is not None:
                queue.put_nowait(data)

        await conn.add_listener(JOB_CREATED_CHANNEL, _on_notify)
        try:
            return await asyncio.wait_for(queue.get(), timeout=timeout_seconds)
        except TimeoutError:
            return None
        finally:
            await conn.remove_listener(JOB_CREATED_CHANNEL, _on_notify)
