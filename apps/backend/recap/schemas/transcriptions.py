from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


@dataclass(frozen=True)
class ArtifactUpload:
    data: bytes
    filename: str
    content_type: str
    context: str = ""


class TranscriptionResponse(_CamelModel):
    transcription: str
    summary: str
    is_existing: bool


class TranscriptionRecord(_CamelModel):
    key: str
    file_hash: str
    file_name: str
    context: str
    transcription: str
    summary: str
    created_at: datetime


class DeleteResponse(_CamelModel):
    success: bool
