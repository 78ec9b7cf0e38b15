"""Content fingerprints and every name derived from them."""

from __future__ import annotations

import hashlib
import pathlib
import re

from recap.core.constants import AUDIO_PREFIX, JOB_NAME_PREFIX, TRANSCRIPT_PREFIX
from recap.core.errors import InvalidRequestError

FILE_HASH_RE = re.compile(r"^[0-9a-f]{64}$")
_SUFFIX_RE = re.compile(r"^\.[a-z0-9]{1,10}$")


def compute_content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def build_job_name(user_id: str, file_hash: str) -> str:
    return f"{JOB_NAME_PREFIX}-{user_id}-{file_hash}"


def build_record_key(user_id: str, file_hash: str) -> str:
    return f"{user_id}/{file_hash}"


def parse_record_key(key: str, *, default_user_id: str) -> tuple[str, str]:
    """
    Split a record key into (user_id, file_hash).

    A bare fingerprint is scoped to ``default_user_id``.
    """
    key = key.strip().strip("/")
    owner, sep, file_hash = key.rpartition("/")
    if not sep:
        owner = default_user_id
    file_hash = file_hash.lower()
    if not owner or not FILE_HASH_RE.match(file_hash):
        raise InvalidRequestError("Invalid transcription key.")
    return owner, file_hash


def audio_object_key(user_id: str, file_hash: str, filename: str | None) -> str:
    suffix = pathlib.PurePosixPath(filename or "").suffix.lower()
    if not _SUFFIX_RE.match(suffix):
        suffix = ""
    return f"{AUDIO_PREFIX}/{user_id}/{file_hash}{suffix}"


def transcript_object_key(user_id: str, file_hash: str) -> str:
    return f"{TRANSCRIPT_PREFIX}/{user_id}/{file_hash}.json"
