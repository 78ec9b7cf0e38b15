"""Supabase storage object helpers."""

from __future__ import annotations

from storage3.exceptions import StorageApiError

from recap.core.errors import ConfigurationError, ExternalServiceError, StorageWriteFailedError
from recap.services.supabase.helpers import raise_for_storage_error
from supabase import AsyncClient


def _check_target(bucket: str, object_key: str) -> None:
    if not bucket:
        raise ConfigurationError("Supabase bucket is not configured.")
    if not object_key:
        raise ExternalServiceError("Storage object key is missing.")


async def create_signed_url(
    client: AsyncClient,
    *,
    bucket: str,
    object_key: str,
    ttl_seconds: int,
) -> str:
    _check_target(bucket, object_key)

    try:
        response = await client.storage.from_(bucket).create_signed_url(object_key, ttl_seconds)
    except StorageApiError as exc:
        raise_for_storage_error(exc, "Failed to sign storage URL.")

    signed_url = response.get("signedURL") or response.get("signed_url")
    if not isinstance(signed_url, str) or not signed_url:
        raise ExternalServiceError("Signed URL was not returned.")

    return signed_url


async def upload_object(
    client: AsyncClient,
    *,
    bucket: str,
    object_key: str,
    data: bytes,
    content_type: str,
) -> None:
    _check_target(bucket, object_key)

    try:
        await client.storage.from_(bucket).upload(
            object_key,
            data,
            {"content-type": content_type, "upsert": "true"},
        )
    except StorageApiError as exc:
        raise_for_storage_error(exc, "Failed to upload storage object.", fallback_error=StorageWriteFailedError)


async def download_object(
    client: AsyncClient,
    *,
    bucket: str,
    object_key: str,
) -> bytes:
    _check_target(bucket, object_key)

    try:
        data = await client.storage.from_(bucket).download(object_key)
    except StorageApiError as exc:
        raise_for_storage_error(exc, "Failed to download storage object.")

    if not isinstance(data, (bytes, bytearray)):
        raise ExternalServiceError("Storage returned an unexpected download shape.")
    return bytes(data)


async def delete_object(
    client: AsyncClient,
    *,
    bucket: str,
    object_key: str,
) -> None:
    _check_target(bucket, object_key)

    try:
        await client.storage.from_(bucket).remove([object_key])
    except StorageApiError as exc:
        raise_for_storage_error(exc, "Failed to delete storage object.", fallback_error=StorageWriteFailedError)
