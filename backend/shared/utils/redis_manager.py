"""
Redis connection manager for matchfeed.
Provides the async connection pool, pub/sub publishing and key namespace utilities.
Redis is optional infrastructure: it mirrors provider health and carries
prefetch notifications to out-of-process collectors.
"""
from __future__ import annotations

import json
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Key namespaces ──────────────────────────────────────────────────────
HEALTH_KEY = "mf:health:{provider}:{capability}"


def _fmt(template: str, **kwargs: Any) -> str:
    return template.format(**kwargs)


class RedisManager:
    """Manages the async Redis connection pool and provides typed helpers."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._pool: Optional[Redis] = None

    @property
    def configured(self) -> bool:
        return bool(self._settings.redis_url)

    async def connect(self) -> None:
        """Initialize the connection pool."""
        self._pool = aioredis.from_url(
            self._settings.redis_url_str,
            max_connections=self._settings.redis_max_connections,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=self._settings.redis_op_timeout_s,
            socket_keepalive=True,
            retry_on_timeout=True,
        )
        await self._pool.ping()
        logger.info("redis_connected", url=self._settings.redis_url_safe_log)

    async def disconnect(self) -> None:
        """Graceful shutdown."""
        if self._pool:
            await self._pool.aclose()
            self._pool = None
            logger.info("redis_disconnected")

    @property
    def client(self) -> Redis:
        if self._pool is None:
            raise RuntimeError("RedisManager not connected. Call connect() first.")
        return self._pool

    # ── Provider health mirror ──────────────────────────────────────────
    async def set_health_record(
        self, provider: str, capability: str, record: dict[str, Any], ttl_s: int
    ) -> None:
        """Overwrite the mirrored health record; Redis expires it with the staleness window."""
        key = _fmt(HEALTH_KEY, provider=provider, capability=capability)
        await self.client.set(key, json.dumps(record), ex=ttl_s)

    # ── Pub/Sub publish ─────────────────────────────────────────────────
    async def publish_notification(self, topic: str, payload: dict[str, Any]) -> int:
        """Publish a notification on the pub/sub channel named after its topic."""
        return await self.client.publish(topic, json.dumps(payload, default=str))
