"""Process settings for the throttling layer.

Values come from ``THROTTLED_*`` environment variables or a ``.env`` file.
Components take explicit arguments first and fall back to these settings,
so tests never need to touch the environment.

Examples:
    >>> from throttled.core.settings import ThrottleSettings
    >>> ThrottleSettings(queue_cooldown=0.5).queue_cooldown
    0.5
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ThrottleSettings(BaseSettings):
    """Settings shared by the fetch adapter, limiters and fetchers.

    Fields
    ──────
    redis_url        : Counter store / queue connection URL
    key_prefix       : Namespace for every counter key
    queue_cooldown   : Seconds a queue stays unpolled after a throttled job
    fetch_timeout    : Bounded wait for a blocking fetch (seconds)
    concurrency_ttl  : Lifetime of a held concurrency slot (seconds)
    heartbeat_ttl    : Lifetime of a reliable fetcher's liveness key
    log_level        : structlog level
    json_logs        : Force JSON (True) / console (False) / auto (None)
    """

    model_config = SettingsConfigDict(
        env_prefix="THROTTLED_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Store ────────────────────────────────────────────────────
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "throttled"

    # ── Fetch ────────────────────────────────────────────────────
    queue_cooldown: float = Field(default=2.0, ge=0)
    fetch_timeout: float = Field(default=2.0, gt=0)
    heartbeat_ttl: int = Field(default=60, gt=0)

    # ── Limiters ─────────────────────────────────────────────────
    concurrency_ttl: int = Field(default=900, gt=0)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None


@lru_cache
def get_settings() -> ThrottleSettings:
    """Get cached settings instance."""
    return ThrottleSettings()


__all__ = ["ThrottleSettings", "get_settings"]
