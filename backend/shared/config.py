"""
Central configuration for all matchfeed services.
Uses pydantic-settings for env-based config with validation.
"""
from __future__ import annotations

from enum import Enum
from functools import lru_cache
from typing import Optional
from urllib.parse import urlparse

from pydantic import Field, RedisDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.models.domain import WatchedQuery
from shared.models.enums import Capability


class Environment(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class ServiceRole(str, Enum):
    API = "api"
    SCHEDULER = "scheduler"


def _default_watched_queries() -> list[WatchedQuery]:
    return [
        WatchedQuery(data_type=Capability.LIVE, params={"sport": "soccer"}),
        WatchedQuery(data_type=Capability.FIXTURES, params={"league_id": "39"}),
        WatchedQuery(data_type=Capability.STANDINGS, params={"league_id": "39"}),
    ]


class Settings(BaseSettings):
    """Root settings shared across all services."""

    model_config = SettingsConfigDict(
        env_prefix="MF_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── General ──────────────────────────────────────────────
    environment: Environment = Environment.DEV
    service_role: ServiceRole = ServiceRole.API
    debug: bool = False
    log_level: str = "INFO"
    instance_id: str = Field(default="", description="Pod/container ID bound into every log line")

    # ── Redis (optional: health mirror + notification pub/sub) ──
    redis_url: Optional[RedisDsn] = None
    redis_max_connections: int = 20
    redis_op_timeout_s: float = Field(default=2.0, gt=0, description="Socket timeout and bound on each mirror write")

    # ── API ──────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: list[str] = ["*"]

    # ── Prefetch scheduler ───────────────────────────────────
    prefetch_enabled: bool = True
    prefetch_interval_s: float = 60.0
    prefetch_base_backoff_s: int = 60
    prefetch_max_backoff_s: int = 3600
    watched_queries: list[WatchedQuery] = Field(default_factory=_default_watched_queries)

    # ── Cache TTLs per capability ────────────────────────────
    cache_ttl_live_s: int = 30
    cache_ttl_fixtures_s: int = 300
    cache_ttl_odds_s: int = 300
    cache_ttl_standings_s: int = 600

    # ── Provider ─────────────────────────────────────────────
    provider_order: list[str] = Field(
        default=["api_football", "football_data", "espn", "thesportsdb"],
        description="Default fallback order; earlier providers get a lower priority number.",
    )
    disabled_providers: list[str] = Field(default_factory=list)
    provider_timeout_s: float = 8.0
    provider_max_retries: int = 1
    provider_health_stale_after_s: int = 3600
    provider_breaker_threshold: int = 5
    provider_breaker_recovery_s: float = 60.0
    provider_rate_limit_rpm: int = Field(default=30, ge=0, description="Requests/minute per provider; 0 disables")
    provider_rate_limit_burst: int = Field(default=10, ge=1)
    provider_rate_limits: dict[str, int] = Field(
        default_factory=lambda: {"football_data": 10},
        description="Per-provider rpm overrides (football-data's free tier allows 10/min).",
    )

    # ── Provider API keys ────────────────────────────────────
    api_football_api_key: str = ""
    football_data_api_key: str = ""
    thesportsdb_api_key: str = "3"

    # ── Notifications ────────────────────────────────────────
    notification_queue_size: int = 1000

    # ── Observability ────────────────────────────────────────
    metrics_enabled: bool = True
    metrics_port: int = 9090

    @field_validator("prefetch_base_backoff_s", "prefetch_max_backoff_s")
    @classmethod
    def _positive_backoff(cls, value: int) -> int:
        if value < 1:
            raise ValueError("backoff seconds must be >= 1")
        return value

    @field_validator(
        "cache_ttl_live_s", "cache_ttl_fixtures_s", "cache_ttl_odds_s", "cache_ttl_standings_s"
    )
    @classmethod
    def _positive_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("cache TTL must be positive")
        return value

    def cache_ttl_for(self, capability: Capability) -> int:
        return {
            Capability.LIVE: self.cache_ttl_live_s,
            Capability.FIXTURES: self.cache_ttl_fixtures_s,
            Capability.ODDS: self.cache_ttl_odds_s,
            Capability.STANDINGS: self.cache_ttl_standings_s,
        }[capability]

    @property
    def redis_url_str(self) -> str:
        return str(self.redis_url) if self.redis_url else ""

    @property
    def redis_url_safe_log(self) -> str:
        """URL with password redacted, for logging only."""
        if not self.redis_url:
            return ""
        try:
            u = urlparse(str(self.redis_url))
            netloc = f"{u.hostname or '?'}" + (f":{u.port}" if u.port else "")
            return f"{u.scheme}://{netloc}{u.path or ''}"
        except ValueError:
            return "redis://***"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton access to validated settings."""
    return Settings()
