"""
Bearer-token to actor-id resolution for the fallback channel.

Lookups go to Supabase auth; results are kept in an injected TTLCache so a
client polling right after checkout does not hit the auth server every time.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from supabase import AuthError  # type: ignore[import-not-found]

from repositories.client import Client
from services.session_cache import TTLCache

logger = logging.getLogger(__name__)

SessionLookup = Callable[[str], Optional[str]]


def supabase_session_lookup(client: Client) -> SessionLookup:
    def lookup(token: str) -> Optional[str]:
        try:
            response = client.auth.get_user(token)
        except AuthError as e:
            logger.info("Rejected session token: %s", e)
            return None
        user = getattr(response, "user", None)
        if user is None:
            return None
        return str(user.id)

    return lookup


class SessionResolver:
    def __init__(self, lookup: SessionLookup, cache: TTLCache[str]):
        self._lookup = lookup
        self._cache = cache

    def resolve(self, token: str) -> Optional[str]:
        if not token:
            return None
        return self._cache.get_or_load(token, lambda: self._lookup(token))

    def forget(self, token: str) -> None:
        self._cache.invalidate(token)


__all__ = ["SessionLookup", "SessionResolver", "supabase_session_lookup"]
