"""
Tests for `services/session_cache.py` and `services/identity.py`.
"""

from __future__ import annotations

import pytest

from services.identity import SessionResolver
from services.session_cache import TTLCache


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_entries_expire_after_ttl() -> None:
    clock = _Clock()
    cache: TTLCache[str] = TTLCache(60, clock=clock)
    cache.set("token", "student-1")

    clock.now += 59
    assert cache.get("token") == "student-1"
    clock.now += 1
    assert cache.get("token") is None
    assert len(cache) == 0


def test_least_recently_used_entry_is_evicted() -> None:
    cache: TTLCache[int] = TTLCache(60, max_entries=2, clock=_Clock())
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")
    cache.set("c", 3)

    assert cache.get("a") == 1
    assert cache.get("b") is None
    assert cache.get("c") == 3


def test_get_or_load_does_not_cache_misses() -> None:
    cache: TTLCache[str] = TTLCache(60, clock=_Clock())
    calls = []

    def loader():
        calls.append(1)
        return None

    assert cache.get_or_load("k", loader) is None
    assert cache.get_or_load("k", loader) is None
    assert len(calls) == 2


def test_invalidate_and_clear() -> None:
    cache: TTLCache[str] = TTLCache(60, clock=_Clock())
    cache.set("a", "1")
    cache.set("b", "2")

    cache.invalidate("a")
    assert cache.get("a") is None
    cache.clear()
    assert len(cache) == 0


def test_invalid_configuration() -> None:
    with pytest.raises(ValueError):
        TTLCache(0)
    with pytest.raises(ValueError):
        TTLCache(10, max_entries=0)


def test_session_resolver_caches_lookups() -> None:
    clock = _Clock()
    lookups = []

    def lookup(token: str):
        lookups.append(token)
        return {"good-token": "student-1"}.get(token)

    resolver = SessionResolver(lookup, TTLCache(300, clock=clock))

    assert resolver.resolve("good-token") == "student-1"
    assert resolver.resolve("good-token") == "student-1"
    assert resolver.resolve("bad-token") is None
    assert resolver.resolve("") is None
    assert lookups == ["good-token", "bad-token"]

    resolver.forget("good-token")
    resolver.resolve("good-token")
    clock.now += 301
    resolver.resolve("good-token")
    assert lookups.count("good-token") == 3
