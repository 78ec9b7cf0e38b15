"""Supabase service utilities."""

from recap.services.supabase.helpers import (
    first_row,
    is_unique_violation,
    optional_row,
    raise_for_auth_error,
    raise_for_postgrest_error,
    raise_for_storage_error,
)
from recap.services.supabase.postgres import create_postgres_connection, wait_for_job_created
from recap.services.supabase.supabase import create_supabase_admin_client, create_supabase_user_client

__all__ = [
    "create_supabase_admin_client",
    "create_supabase_user_client",
    "create_postgres_connection",
    "wait_for_job_created",
    "first_row",
    "optional_row",
    "is_unique_violation",
    "raise_for_auth_error",
    "raise_for_postgrest_error",
    "raise_for_storage_error",
]
