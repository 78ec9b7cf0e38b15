"""Application settings loaded from environment variables."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """
    Configuration loaded from environment variables.

    Only secrets and deployment-specific values belong here.
    Application constants live in their respective modules.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ---------------------------------------------------------------------------
    # API Keys (required secrets)
    # ---------------------------------------------------------------------------
    openrouter_api_key: str = Field(..., validation_alias="OPENROUTER_API_KEY")
    groq_api_key: str = Field(..., validation_alias="GROQ_API_KEY")

    # ---------------------------------------------------------------------------
    # Supabase (required secrets)
    # ---------------------------------------------------------------------------
    supabase_url: str = Field(..., validation_alias="SUPABASE_URL")
    supabase_publishable_key: str = Field(..., validation_alias="SUPABASE_PUBLISHABLE_KEY")
    supabase_secret_key: str = Field(..., validation_alias="SUPABASE_SECRET_KEY")
    supabase_auth_mode: str = Field(default="remote", validation_alias="SUPABASE_AUTH_MODE")
    supabase_jwt_secret: str | None = Field(default=None, validation_alias="SUPABASE_JWT_SECRET")
    supabase_jwt_audience: str | None = Field(default=None, validation_alias="SUPABASE_JWT_AUDIENCE")
    supabase_audio_bucket: str = Field(default="audio", validation_alias="SUPABASE_AUDIO_BUCKET")
    supabase_db_password: str | None = Field(default=None, validation_alias="SUPABASE_DB_PASSWORD")
    supabase_db_user: str = Field(default="postgres", validation_alias="SUPABASE_DB_USER")
    supabase_db_name: str = Field(default="postgres", validation_alias="SUPABASE_DB_NAME")
    supabase_db_host: str | None = Field(default=None, validation_alias="SUPABASE_DB_HOST")
    supabase_db_port: int = Field(default=5432, validation_alias="SUPABASE_DB_PORT")

    # ---------------------------------------------------------------------------
    # Providers (optional)
    # ---------------------------------------------------------------------------
    transcription_model: str = Field(default="whisper-large-v3-turbo", validation_alias="TRANSCRIPTION_MODEL")
    transcription_language: str = Field(default="en", validation_alias="TRANSCRIPTION_LANGUAGE")
    summary_model: str = Field(default="openai/gpt-4o-mini", validation_alias="SUMMARY_MODEL")
    summary_max_attempts: int = Field(default=3, validation_alias="SUMMARY_MAX_ATTEMPTS")
    summary_backoff_base_seconds: float = Field(default=1.0, validation_alias="SUMMARY_BACKOFF_BASE_SECONDS")

    # ---------------------------------------------------------------------------
    # Upload + polling limits (optional)
    # ---------------------------------------------------------------------------
    max_upload_bytes: int = Field(default=25 * 1024 * 1024, validation_alias="MAX_UPLOAD_BYTES")
    blob_allow_hosts: Annotated[list[str], NoDecode] = Field(default_factory=list, validation_alias="BLOB_ALLOW_HOSTS")
    poll_interval_seconds: float = Field(default=5.0, validation_alias="TRANSCRIPTION_POLL_INTERVAL_SECONDS")
    poll_timeout_seconds: float = Field(default=900.0, validation_alias="TRANSCRIPTION_POLL_TIMEOUT_SECONDS")
    poll_max_errors: int = Field(default=3, validation_alias="TRANSCRIPTION_POLL_MAX_ERRORS")

    # ---------------------------------------------------------------------------
    # Environment config (optional)
    # ---------------------------------------------------------------------------
    app_env: str = Field(default="local", validation_alias="APP_ENV")

    # ---------------------------------------------------------------------------
    # Deployment config (optional)
    # ---------------------------------------------------------------------------
    cors_allow_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        validation_alias="CORS_ALLOW_ORIGINS",
    )
    rate_limit: int = Field(default=0, validation_alias="RATE_LIMIT")  # requests/min, 0 = disabled
    worker_max_concurrent_jobs: int = Field(default=4, validation_alias="WORKER_MAX_CONCURRENT_JOBS")
    worker_job_notify_timeout_seconds: float = Field(
        default=10.0,
        validation_alias="WORKER_JOB_NOTIFY_TIMEOUT_SECONDS",
    )

    @field_validator(
        "openrouter_api_key",
        "groq_api_key",
        "supabase_url",
        "supabase_publishable_key",
        "supabase_secret_key",
        "supabase_auth_mode",
        "supabase_jwt_secret",
        "supabase_jwt_audience",
        "supabase_audio_bucket",
        "supabase_db_password",
        "supabase_db_user",
        "supabase_db_name",
        "supabase_db_host",
        "transcription_model",
        "transcription_language",
        "summary_model",
        "app_env",
        mode="before",
    )
    @classmethod
    def _strip_strings(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("cors_allow_origins", "blob_allow_hosts", mode="before")
    @classmethod
    def _parse_list(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, str):
            items = [item.strip() for item in value.split(",")]
            return [item for item in items if item]
        return value

    @field_validator("worker_max_concurrent_jobs", "summary_max_attempts", "poll_max_errors", mode="after")
    @classmethod
    def _clamp_counts(cls, value: int) -> int:
        return max(1, value)

    @field_validator("max_upload_bytes", mode="after")
    @classmethod
    def _clamp_upload_bytes(cls, value: int) -> int:
        return max(1, value)

    @field_validator(
        "worker_job_notify_timeout_seconds",
        "poll_interval_seconds",
        "poll_timeout_seconds",
        mode="after",
    )
    @classmethod
    def _clamp_seconds(cls, value: float) -> float:
        return max(0.1, value)

    @field_validator("summary_backoff_base_seconds", mode="after")
    @classmethod
    def _clamp_backoff(cls, value: float) -> float:
        return max(0.0, value)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
