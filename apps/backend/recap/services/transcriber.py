from __future__ import annotations

import json
from typing import Any

from groq import Groq, GroqError

from recap.core.errors import ExternalServiceError


class TranscriptionError(ExternalServiceError):
    code = "transcription_failed"


def _extract_groq_text(response: Any) -> str:
    text = getattr(response, "text", None)
    if not isinstance(text, str):
        raise TranscriptionError("Groq response missing text.")
    if not text.strip():
        raise TranscriptionError("Empty transcript.")
    return text.strip()


def transcribe_url(media_url: str, api_key: str, model: str, language: str | None = None) -> str:
    """Transcribe audio reachable at ``media_url``. Blocking; run it in a thread."""
    if not api_key:
        raise TranscriptionError("Missing GROQ_API_KEY.")

    options: dict[str, Any] = {
        "url": media_url,
        "model": model,
        "response_format": "json",
        "temperature": 0.0,
    }
    if language:
        options["language"] = language

    client = Groq(api_key=api_key)
    try:
        response = client.audio.transcriptions.create(**options)
    except GroqError as exc:
        raise TranscriptionError("Groq transcription request failed.") from exc
    return _extract_groq_text(response)


def encode_transcript_payload(job_name: str, transcript: str) -> bytes:
    """Serialize a transcript the way it is stored at the job's result location."""
    payload = {"jobName": job_name, "results": {"transcripts": [{"transcript": transcript}]}}
    return json.dumps(payload, ensure_ascii=False).encode("utf-8")


def decode_transcript_payload(data: bytes) -> str:
    try:
        payload = json.loads(data)
        transcript = payload["results"]["transcripts"][0]["transcript"]
    except (ValueError, KeyError, IndexError, TypeError) as exc:
        raise TranscriptionError("Transcript payload is malformed.") from exc
    if not isinstance(transcript, str):
        raise TranscriptionError("Transcript payload is malformed.")
    return transcript
