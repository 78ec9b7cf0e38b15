from __future__ import annotations

from urllib.parse import urlparse

from recap.core.config import Settings
from recap.core.errors import InvalidRequestError, MissingArtifactError, PayloadTooLargeError


def validate_artifact(data: bytes | None, settings: Settings) -> bytes:
    if not data:
        raise MissingArtifactError("No file provided.")
    if len(data) > settings.max_upload_bytes:
        max_mb = settings.max_upload_bytes / (1024 * 1024)
        raise PayloadTooLargeError(f"File too large. Maximum file size is {max_mb:g}MB.")
    return data


def validate_blob_url(url: str, settings: Settings) -> str:
    allowed_hosts = {host.lower() for host in settings.blob_allow_hosts}
    if not allowed_hosts:
        raise InvalidRequestError("Blob references are not enabled.")

    parsed = urlparse(url.strip())
    host = (parsed.hostname or "").lower()
    if parsed.scheme != "https" or not host:
        raise InvalidRequestError("Blob reference must be an https URL.")
    if host not in allowed_hosts and not any(host.endswith("." + allowed) for allowed in allowed_hosts):
        raise InvalidRequestError("Blob reference host is not allowed.")
    return parsed.geturl()
