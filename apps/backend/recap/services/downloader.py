"""Fetch audio referenced by URL (browser-side direct uploads)."""

from __future__ import annotations

import pathlib
from dataclasses import dataclass
from urllib.parse import unquote, urlparse

import httpx

from recap.core.constants import DEFAULT_CONTENT_TYPE
from recap.core.errors import ExternalServiceError, MissingArtifactError, PayloadTooLargeError

DOWNLOAD_TIMEOUT_SECONDS = 60.0


@dataclass(frozen=True)
class BlobDownload:
    data: bytes
    filename: str
    content_type: str


def filename_from_url(url: str) -> str:
    name = pathlib.PurePosixPath(unquote(urlparse(url).path)).name
    return name or "audio"


async def download_blob(url: str, *, max_bytes: int) -> BlobDownload:
    """
    Stream ``url`` into memory, aborting once ``max_bytes`` is exceeded.

    The caller is responsible for host validation.
    """
    try:
        async with httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT_SECONDS, follow_redirects=False) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()

                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > max_bytes:
                    raise PayloadTooLargeError("Audio file is too large.")

                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > max_bytes:
                        raise PayloadTooLargeError("Audio file is too large.")
                content_type = response.headers.get("content-type") or DEFAULT_CONTENT_TYPE
    except httpx.HTTPStatusError as exc:
        raise ExternalServiceError(f"Blob download failed with status {exc.response.status_code}.") from exc
    except httpx.HTTPError as exc:
        raise ExternalServiceError("Failed to download blob reference.") from exc

    if not body:
        raise MissingArtifactError("Blob reference returned an empty file.")

    return BlobDownload(data=bytes(body), filename=filename_from_url(url), content_type=content_type)
