"""Runtime configuration read from environment variables.

Values are read once per call to ``get_settings`` (cached); tests call
``get_settings.cache_clear()`` after patching the environment.
"""
from __future__ import annotations
import os
from dataclasses import dataclass
from functools import lru_cache

_TRUTHY = {"1", "true", "TRUE", "yes", "on"}


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw in _TRUTHY


# --- Optional .env loading (opt-in via APP_LOAD_DOTENV) ---
if _flag("APP_LOAD_DOTENV"):  # pragma: no cover
    from dotenv import load_dotenv

    # Respect existing env (override=False). Default search walks up from CWD.
    load_dotenv(override=False)


@dataclass(frozen=True)
class Settings:
    database_url: str
    token_refresh_margin_seconds: int
    sync_max_concurrency: int
    sync_run_timeout_seconds: float
    sync_max_attempts: int
    sync_retry_base_seconds: float
    sync_interval_seconds: float
    full_resync_interval_hours: float
    sync_scheduler_enabled: bool
    cron_secret: str | None
    default_slot_granularity_minutes: int
    log_level: str

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite+pysqlite:///./local.db"),
            token_refresh_margin_seconds=_int("TOKEN_REFRESH_MARGIN_SECONDS", 300),
            sync_max_concurrency=_int("SYNC_MAX_CONCURRENCY", 4),
            sync_run_timeout_seconds=_float("SYNC_RUN_TIMEOUT_SECONDS", 120.0),
            sync_max_attempts=_int("SYNC_MAX_ATTEMPTS", 3),
            sync_retry_base_seconds=_float("SYNC_RETRY_BASE_SECONDS", 1.0),
            sync_interval_seconds=_float("SYNC_INTERVAL_SECONDS", 300.0),
            full_resync_interval_hours=_float("FULL_RESYNC_INTERVAL_HOURS", 24.0),
            sync_scheduler_enabled=_flag("SYNC_SCHEDULER_ENABLED"),
            cron_secret=os.getenv("CRON_SECRET") or None,
            default_slot_granularity_minutes=_int("DEFAULT_SLOT_GRANULARITY_MINUTES", 30),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
