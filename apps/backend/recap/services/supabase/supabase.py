"""Supabase client factories."""

from __future__ import annotations

from recap.core.config import Settings
from recap.core.errors import ConfigurationError
from supabase import AsyncClient, AsyncClientOptions, create_async_client


def _normalize_supabase_url(url: str) -> str:
    """Ensure the Supabase URL has a trailing slash (required by storage client)."""
    return url.rstrip("/") + "/"


def _require(settings: Settings, *fields: tuple[str, str]) -> None:
    missing = [env_name for attr, env_name in fields if not getattr(settings, attr)]
    if missing:
        raise ConfigurationError(f"Supabase client is not configured. Missing {', '.join(missing)}.")


async def create_supabase_admin_client(settings: Settings) -> AsyncClient:
    """Create a Supabase client with service-role credentials (bypasses RLS)."""
    _require(settings, ("supabase_url", "SUPABASE_URL"), ("supabase_secret_key", "SUPABASE_SECRET_KEY"))
    return await create_async_client(_normalize_supabase_url(settings.supabase_url), settings.supabase_secret_key)


async def create_supabase_user_client(settings: Settings, access_token: str) -> AsyncClient:
    """Create a Supabase client scoped to a user's JWT for RLS."""
    _require(
        settings,
        ("supabase_url", "SUPABASE_URL"),
        ("supabase_publishable_key", "SUPABASE_PUBLISHABLE_KEY"),
    )
    options = AsyncClientOptions(
        headers={
            "Authorization": f"Bearer {access_token}",
        },
        persist_session=False,
    )
    return await create_async_client(
        _normalize_supabase_url(settings.supabase_url),
        settings.supabase_publishable_key,
        options,
    )
