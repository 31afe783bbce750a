"""
Supabase client initialization.

This module contains *only* the database connection setup. Repositories receive
the client through their constructor, so tests can run against in-memory fakes.

Environment variables required:
- SUPABASE_URL: Your Supabase project URL
- SUPABASE_KEY: Your Supabase API key (use a server-side key only on the backend)
"""

from __future__ import annotations

# The dependency is `supabase` (supabase-py). If your editor can't resolve it,
# install it in your environment: `pip install supabase`.
from supabase import Client, create_client  # type: ignore[import-not-found]

from core.config import Settings


def create_supabase_client(settings: Settings) -> Client:
    if not settings.supabase_url:
        raise RuntimeError(
            "Missing environment variable: SUPABASE_URL. "
            "Set SUPABASE_URL to your Supabase project URL."
        )

    if not settings.supabase_key:
        raise RuntimeError(
            "Missing environment variable: SUPABASE_KEY. "
            "Set SUPABASE_KEY to your Supabase API key."
        )

    return create_client(settings.supabase_url, settings.supabase_key)


def is_unique_violation(error: Exception) -> bool:
    """Postgres unique_violation surfaces through PostgREST as code 23505."""

    return str(getattr(error, "code", "")) == "23505"


__all__ = ["Client", "create_supabase_client", "is_unique_violation"]
