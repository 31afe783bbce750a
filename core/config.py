"""
Runtime configuration.

Values come from environment variables; a `.env` file at the project root is
loaded first when present. Nothing is read at import time: call
`Settings.from_env()` where the application is wired.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from domain.plan import PlanCatalog

_ENV_PATH = Path(__file__).parent.parent / ".env"


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"Environment variable {name} must be an integer, got {raw!r}") from e


@dataclass(frozen=True)
class Settings:
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_timeout_seconds: int = 8
    booking_min_notice: timedelta = timedelta(hours=24)
    pending_booking_ttl: timedelta = timedelta(minutes=30)
    session_cache_ttl_seconds: int = 300
    log_level: str = "INFO"
    plan_catalog: PlanCatalog = field(default_factory=PlanCatalog)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, *, load_dotenv_file: bool = True) -> "Settings":
        if env is None:
            if load_dotenv_file:
                load_dotenv(dotenv_path=_ENV_PATH)
            env = os.environ

        catalog_json = env.get("PLAN_CATALOG")
        return cls(
            supabase_url=env.get("SUPABASE_URL") or None,
            supabase_key=env.get("SUPABASE_KEY") or None,
            stripe_secret_key=env.get("STRIPE_SECRET_KEY") or None,
            stripe_webhook_secret=env.get("STRIPE_WEBHOOK_SECRET") or None,
            stripe_timeout_seconds=_int(env, "STRIPE_TIMEOUT_SECONDS", 8),
            booking_min_notice=timedelta(hours=_int(env, "BOOKING_MIN_NOTICE_HOURS", 24)),
            pending_booking_ttl=timedelta(minutes=_int(env, "PENDING_BOOKING_TTL_MINUTES", 30)),
            session_cache_ttl_seconds=_int(env, "SESSION_CACHE_TTL_SECONDS", 300),
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
            plan_catalog=PlanCatalog.from_json(catalog_json) if catalog_json else PlanCatalog(),
        )


__all__ = ["Settings"]
