from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from recap.api.deps.auth import AuthContext, get_auth_context
from recap.application.guards import validate_blob_url
from recap.application.transcriptions import delete_transcription, list_transcriptions, submit_transcription
from recap.core.config import Settings, get_settings
from recap.core.constants import DEFAULT_CONTENT_TYPE
from recap.core.errors import InvalidRequestError, MissingArtifactError
from recap.schemas.errors import ErrorResponse
from recap.schemas.transcriptions import ArtifactUpload, DeleteResponse, TranscriptionRecord, TranscriptionResponse
from recap.services.downloader import download_blob

router = APIRouter(prefix="/transcribe", tags=["transcribe"])


async def _resolve_upload(
    file: UploadFile | None,
    blob_url: str | None,
    context: str,
    settings: Settings,
) -> ArtifactUpload:
    if file is not None and blob_url:
        raise InvalidRequestError("Provide either a file or a blob reference, not both.")

    if file is not None:
        data = await file.read()
        return ArtifactUpload(
            data=data,
            filename=file.filename or "audio",
            content_type=file.content_type or DEFAULT_CONTENT_TYPE,
            context=context,
        )

    if blob_url:
        url = validate_blob_url(blob_url, settings)
        blob = await download_blob(url, max_bytes=settings.max_upload_bytes)
        return ArtifactUpload(
            data=blob.data,
            filename=blob.filename,
            content_type=blob.content_type,
            context=context,
        )

    raise MissingArtifactError("No file provided.")


@router.post(
    "",
    response_model=TranscriptionResponse,
    responses={
        400: {"model": ErrorResponse, "description": "No file provided or invalid blob reference."},
        401: {"model": ErrorResponse, "description": "Missing or invalid auth token."},
        413: {"model": ErrorResponse, "description": "Audio exceeds the upload limit."},
        500: {"model": ErrorResponse, "description": "Unexpected server error."},
        502: {"model": ErrorResponse, "description": "Transcription or storage failed."},
        504: {"model": ErrorResponse, "description": "Transcription still running; retry the same upload."},
    },
)
async def transcribe(
    auth: Annotated[AuthContext, Depends(get_auth_context)],
    settings: Annotated[Settings, Depends(get_settings)],
    file: Annotated[UploadFile | None, File()] = None,
    blob_url: Annotated[str | None, Form()] = None,
    context: Annotated[str, Form()] = "",
) -> TranscriptionResponse:
    upload = await _resolve_upload(file, blob_url, context.strip(), settings)
    return await submit_transcription(upload, auth, settings)


@router.get(
    "",
    response_model=list[TranscriptionRecord],
    responses={
        401: {"model": ErrorResponse, "description": "Missing or invalid auth token."},
        500: {"model": ErrorResponse, "description": "Unexpected server error."},
        502: {"model": ErrorResponse, "description": "Storage read failed."},
    },
)
async def history(
    auth: Annotated[AuthContext, Depends(get_auth_context)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> list[TranscriptionRecord]:
    return await list_transcriptions(auth, settings)


@router.delete(
    "",
    response_model=DeleteResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Malformed key."},
        401: {"model": ErrorResponse, "description": "Missing auth token or key owned by another user."},
        404: {"model": ErrorResponse, "description": "Transcription not found."},
        500: {"model": ErrorResponse, "description": "Unexpected server error."},
    },
)
async def delete(
    key: Annotated[str, Query(min_length=1)],
    auth: Annotated[AuthContext, Depends(get_auth_context)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> DeleteResponse:
    return await delete_transcription(key, auth, settings)
