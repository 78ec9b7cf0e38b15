from __future__ import annotations

import asyncio
import logging
from typing import Any

from openai import APIConnectionError, APIError, AsyncOpenAI, InternalServerError
from openai import RateLimitError as ProviderRateLimitError

from recap.core.config import Settings
from recap.core.constants import OPENROUTER_APP_NAME, OPENROUTER_BASE_URL, SUMMARY_SECTIONS, SYSTEM_PROMPT
from recap.core.errors import ExternalServiceError

logger = logging.getLogger(__name__)

# Errors worth another attempt; anything else from the provider is final.
_TRANSIENT_ERRORS = (APIConnectionError, ProviderRateLimitError, InternalServerError)
_MAX_BACKOFF_SECONDS = 30.0


class SummarizationError(ExternalServiceError):
    code = "summarization_unavailable"


def build_user_message(transcript: str, context: str | None) -> str:
    hint = (context or "").strip() or "none provided"
    return f"Context: {hint}\n\nPlease summarize this transcript: {transcript}"


def _backoff_seconds(base: float, attempt: int) -> float:
    return min(base * (2 ** max(attempt - 1, 0)), _MAX_BACKOFF_SECONDS)


async def summarize_transcript(transcript: str, *, context: str | None, settings: Settings) -> str:
    """Return the four-section summary text for a transcript."""
    if not settings.openrouter_api_key:
        raise SummarizationError("Missing OPENROUTER_API_KEY.")

    client = AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=OPENROUTER_BASE_URL,
        default_headers={"X-Title": OPENROUTER_APP_NAME},
        max_retries=0,
    )
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_user_message(transcript, context)},
    ]

    attempts = settings.summary_max_attempts
    for attempt in range(1, attempts + 1):
        try:
            response = await client.chat.completions.create(
                model=settings.summary_model,
                messages=messages,  # type: ignore[arg-type]
                temperature=0.2,
            )
            break
        except _TRANSIENT_ERRORS as exc:
            if attempt >= attempts:
                raise SummarizationError("Summarization provider is unavailable.") from exc
            delay = _backoff_seconds(settings.summary_backoff_base_seconds, attempt)
            logger.warning(
                "summarization attempt failed, retrying",
                extra={"attempt": attempt, "retry_in_seconds": delay, "error_type": type(exc).__name__},
            )
            await asyncio.sleep(delay)
        except APIError as exc:
            raise SummarizationError("Failed to call OpenRouter.") from exc

    content: Any = response.choices[0].message.content if response.choices else None
    if not isinstance(content, str) or not content.strip():
        raise SummarizationError("Empty summary response.")

    missing = [section for section in SUMMARY_SECTIONS if section.lower() not in content.lower()]
    if missing:
        logger.warning("summary is missing sections", extra={"missing_sections": ",".join(missing)})

    return content.strip()
