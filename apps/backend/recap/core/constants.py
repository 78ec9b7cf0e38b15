"""Application-wide constants."""

# ---------------------------------------------------------------------------
# Summarization
# ---------------------------------------------------------------------------
SYSTEM_PROMPT = (
    "You are a helpful assistant that summarizes transcripts. "
    "Format your response in the following structure:\n\n"
    "Summary:\n[Provide a concise summary of the transcript]\n\n"
    "Participants:\n- [List the participants involved]\n\n"
    "Key Points:\n- [List 3-4 main points]\n\n"
    "Action Items:\n- [List any action items or next steps mentioned]"
)
SUMMARY_SECTIONS = ("Summary", "Participants", "Key Points", "Action Items")
SUMMARY_UNAVAILABLE = "Summary unavailable"

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
OPENROUTER_APP_NAME = "recap"

# ---------------------------------------------------------------------------
# Storage layout
# ---------------------------------------------------------------------------
AUDIO_PREFIX = "uploads"
TRANSCRIPT_PREFIX = "transcripts"
JOB_NAME_PREFIX = "transcription"
SIGNED_URL_TTL_SECONDS = 3600  # 1 hour
DEFAULT_CONTENT_TYPE = "application/octet-stream"
