"""Supabase transcriptions CRUD (completed records)."""

from __future__ import annotations

from typing import Any

from postgrest import APIError

from recap.core.errors import StorageWriteFailedError
from recap.services.supabase.helpers import (
    first_row,
    is_unique_violation,
    optional_row,
    raise_for_postgrest_error,
)
from supabase import AsyncClient

TABLE = "transcriptions"
_COLUMNS = "user_id,file_hash,filename,context,transcription,summary,created_at"


async def fetch_record(client: AsyncClient, *, user_id: str, file_hash: str) -> dict[str, Any] | None:
    try:
        response = await (
            client.table(TABLE).select(_COLUMNS).eq("user_id", user_id).eq("file_hash", file_hash).limit(1).execute()
        )
    except APIError as exc:
        raise_for_postgrest_error(exc, "Failed to check for existing transcription.")

    return optional_row(response.data, error_message="Supabase returned an unexpected transcriptions shape.")


async def list_records(client: AsyncClient, *, user_id: str) -> list[dict[str, Any]]:
    """Return the owner's records, newest first."""
    try:
        response = await (
            client.table(TABLE).select(_COLUMNS).eq("user_id", user_id).order("created_at", desc=True).execute()
        )
    except APIError as exc:
        raise_for_postgrest_error(exc, "Failed to fetch history.")

    return [dict(row) for row in response.data or []]


async def create_record(
    client: AsyncClient,
    *,
    user_id: str,
    file_hash: str,
    filename: str,
    context: str,
    transcription: str,
    summary: str,
    created_at: str,
) -> dict[str, Any]:
    payload = {
        "user_id": user_id,
        "file_hash": file_hash,
        "filename": filename,
        "context": context,
        "transcription": transcription,
        "summary": summary,
        "created_at": created_at,
    }

    try:
        response = await client.table(TABLE).insert(payload).execute()
    except APIError as exc:
        # A concurrent submit of the same input won the insert.
        if is_unique_violation(exc):
            existing = await fetch_record(client, user_id=user_id, file_hash=file_hash)
            if existing:
                return existing
        raise_for_postgrest_error(exc, "Failed to save transcription.", fallback_error=StorageWriteFailedError)

    return first_row(response.data, error_message="Failed to save transcription.")


async def delete_record(client: AsyncClient, *, user_id: str, file_hash: str) -> dict[str, Any] | None:
    """Delete one record; returns the removed row, or None if nothing matched."""
    try:
        response = await client.table(TABLE).delete().eq("user_id", user_id).eq("file_hash", file_hash).execute()
    except APIError as exc:
        raise_for_postgrest_error(exc, "Failed to delete transcription.", fallback_error=StorageWriteFailedError)

    return optional_row(response.data, error_message="Supabase returned an unexpected transcriptions shape.")
