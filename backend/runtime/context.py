"""
Application context: every long-lived component, wired once.

The API app and the scheduler entrypoint both receive one ``AppContext``
instead of reaching for module-level singletons, so tests can build isolated
contexts with fake adapters and clocks.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger
from shared.utils.notifications import NotificationChannel, log_sink
from shared.utils.redis_manager import RedisManager

from aggregator.cache import RawDataCache
from aggregator.health import ProviderHealthTracker
from aggregator.providers.base import BaseAdapter
from aggregator.registry import ProviderRegistry
from aggregator.service import Aggregator, build_provider_registry
from scheduler.service import PrefetchScheduler

logger = get_logger(__name__)

# Redis may still be starting when the service boots (docker compose).
CONNECT_RETRY_ATTEMPTS = 5
CONNECT_RETRY_BASE_DELAY_S = 1.0


async def _connect_with_retry(redis: RedisManager) -> bool:
    """Connect with exponential backoff; False if Redis stays unreachable."""
    for attempt in range(1, CONNECT_RETRY_ATTEMPTS + 1):
        try:
            await redis.connect()
            return True
        except Exception as exc:
            if attempt == CONNECT_RETRY_ATTEMPTS:
                logger.error("redis_unavailable_continuing_without", error=str(exc))
                return False
            delay = CONNECT_RETRY_BASE_DELAY_S * (2 ** (attempt - 1))
            logger.warning("redis_connect_retry", attempt=attempt, delay_s=delay, error=str(exc))
            await asyncio.sleep(delay)
    return False


@dataclass
class AppContext:
    settings: Settings
    cache: RawDataCache
    health: ProviderHealthTracker
    registry: ProviderRegistry
    aggregator: Aggregator
    channel: NotificationChannel
    scheduler: PrefetchScheduler
    redis: Optional[RedisManager] = None
    started_at: float = field(default_factory=time.time)
    ready: bool = False
    _scheduler_task: Optional[asyncio.Task[None]] = None

    async def start(self, run_scheduler: bool | None = None) -> None:
        """Start adapter clients, the notification dispatcher and (optionally) the prefetch timer."""
        if self.redis is not None and self.redis.configured:
            if await _connect_with_retry(self.redis):
                self.channel.subscribe(self.redis.publish_notification, name="redis")
            else:
                self.health.detach_redis()
                self.redis = None

        await self.registry.start_all()
        await self.channel.start()

        if run_scheduler is None:
            run_scheduler = self.settings.prefetch_enabled
        if run_scheduler:
            self._scheduler_task = asyncio.create_task(self.scheduler.run(), name="prefetch-scheduler")

        self.ready = True
        logger.info(
            "app_context_started",
            providers=sorted(self.registry.providers),
            prefetch=bool(run_scheduler),
            redis=self.redis is not None,
        )

    async def stop(self) -> None:
        self.ready = False
        if self._scheduler_task is not None:
            self.scheduler.request_shutdown()
            try:
                await asyncio.wait_for(self._scheduler_task, timeout=self.settings.provider_timeout_s + 5)
            except asyncio.TimeoutError:
                self._scheduler_task.cancel()
                logger.warning("prefetch_scheduler_stop_timeout")
            self._scheduler_task = None

        await self.channel.stop()
        await self.registry.close_all()
        await self.health.drain()
        if self.redis is not None:
            await self.redis.disconnect()
        logger.info("app_context_stopped")

    def describe(self) -> dict[str, Any]:
        return {
            "environment": self.settings.environment.value,
            "uptime_s": round(time.time() - self.started_at, 1),
            "ready": self.ready,
            "providers": sorted(self.registry.providers),
            "redis": self.redis is not None,
        }


def build_context(
    settings: Settings | None = None,
    adapters: Iterable[BaseAdapter] | None = None,
    redis: RedisManager | None = None,
) -> AppContext:
    """
    Wire the component graph.

    Args:
        settings: Explicit settings; defaults to the process-wide settings.
        adapters: Adapters to register instead of the configured providers.
        redis: Redis manager; built from settings when ``MF_REDIS_URL`` is set.
    """
    settings = settings or get_settings()
    if redis is None and settings.redis_url:
        redis = RedisManager(settings)

    if adapters is None:
        registry = build_provider_registry(settings)
    else:
        registry = ProviderRegistry(settings)
        for adapter in adapters:
            registry.register(adapter)

    cache = RawDataCache()
    health = ProviderHealthTracker(
        stale_after_s=settings.provider_health_stale_after_s,
        redis=redis,
        mirror_timeout_s=settings.redis_op_timeout_s,
    )
    aggregator = Aggregator(registry, cache, health, settings)
    channel = NotificationChannel(max_pending=settings.notification_queue_size)
    channel.subscribe(log_sink, name="log")
    scheduler = PrefetchScheduler(aggregator, cache, channel, settings.watched_queries, settings)

    return AppContext(
        settings=settings,
        cache=cache,
        health=health,
        registry=registry,
        aggregator=aggregator,
        channel=channel,
        scheduler=scheduler,
        redis=redis,
    )
