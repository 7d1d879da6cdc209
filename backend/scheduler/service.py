"""
Prefetch scheduler for matchfeed.
Refreshes a fixed set of watched queries through the aggregator on a timer,
keeping independent exponential-backoff state per query and publishing a
success or error notification for every query it runs.
"""
from __future__ import annotations

import asyncio
import signal
import time
from typing import Any, Callable, Iterable, Optional

from shared.config import ServiceRole, Settings, get_settings
from shared.models.domain import BackoffState, FetchResult, WatchedQuery
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import (
    PREFETCH_BACKOFF_SECONDS,
    PREFETCH_RUNS,
    PREFETCH_TICKS_SKIPPED,
    start_metrics_server,
)
from shared.utils.notifications import PREFETCH_ERROR, PREFETCH_UPDATES, NotificationChannel

from aggregator.cache import RawDataCache
from aggregator.service import Aggregator
from scheduler.backoff import is_allowed, register_failure

logger = get_logger(__name__)


class PrefetchScheduler:
    """
    Periodic driver for the watched queries.

    Per query the state is either Healthy (no backoff entry) or Backoff (an
    entry with ``next_allowed_at``). Only one tick runs at a time: a timer fire
    that lands while a tick is still in flight is counted and ignored. Within a
    tick every query runs concurrently and a failure in one never affects the
    others.
    """

    def __init__(
        self,
        aggregator: Aggregator,
        cache: RawDataCache,
        channel: NotificationChannel,
        watched_queries: Iterable[WatchedQuery] | None = None,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._aggregator = aggregator
        self._cache = cache
        self._channel = channel
        self._settings = settings or get_settings()
        self._queries: list[WatchedQuery] = list(
            watched_queries if watched_queries is not None else self._settings.watched_queries
        )
        self._clock = clock

        self._backoff: dict[str, BackoffState] = {}
        self._last_outcome: dict[str, dict[str, Any]] = {}
        self._tick_lock = asyncio.Lock()
        self._shutdown = asyncio.Event()
        self._inflight: set[asyncio.Task[None]] = set()
        self._running = False
        self._tick_count = 0
        self._skipped_ticks = 0
        self._last_tick_at: Optional[float] = None

    @property
    def watched_queries(self) -> list[WatchedQuery]:
        return list(self._queries)

    @property
    def tick_in_progress(self) -> bool:
        return self._tick_lock.locked()

    def backoff_state(self, key: str) -> Optional[BackoffState]:
        return self._backoff.get(key)

    # ── Tick ────────────────────────────────────────────────────────────
    async def tick(self) -> bool:
        """
        Run every watched query once, then sweep the cache.

        Returns:
            False if another tick was already in flight (nothing was run).
        """
        if self._tick_lock.locked():
            self._skipped_ticks += 1
            PREFETCH_TICKS_SKIPPED.inc()
            logger.info("prefetch_tick_skipped_overlap", skipped_total=self._skipped_ticks)
            return False

        async with self._tick_lock:
            self._tick_count += 1
            started = self._clock()
            await asyncio.gather(*(self._run_query(q) for q in self._queries))

            try:
                removed = self._cache.cleanup()
            except Exception as exc:
                removed = 0
                logger.error("prefetch_cache_cleanup_failed", error=str(exc))

            self._last_tick_at = started
            logger.info(
                "prefetch_tick_completed",
                tick=self._tick_count,
                queries=len(self._queries),
                in_backoff=len(self._backoff),
                cache_removed=removed,
            )
        return True

    async def _run_query(self, query: WatchedQuery) -> None:
        try:
            await self._execute(query)
        except Exception as exc:
            logger.error("prefetch_query_error", query=query.key, error=str(exc), exc_info=True)
            self._on_failure(query, str(exc) or exc.__class__.__name__)

    async def _execute(self, query: WatchedQuery) -> None:
        key = query.key
        if not is_allowed(self._backoff.get(key), self._clock()):
            PREFETCH_RUNS.labels(data_type=query.data_type.value, outcome="skipped").inc()
            logger.debug(
                "prefetch_query_in_backoff",
                query=key,
                next_allowed_at=self._backoff[key].next_allowed_at,
            )
            return

        result = await self._aggregator.fetch(query.data_type, query.params)
        if result.ok:
            self._on_success(query, result)
        else:
            self._on_failure(query, result.message or "no data")

    def _on_success(self, query: WatchedQuery, result: FetchResult) -> None:
        key = query.key
        now = self._clock()
        if self._backoff.pop(key, None) is not None:
            logger.info("prefetch_query_recovered", query=key)
        PREFETCH_BACKOFF_SECONDS.labels(query=key).set(0)
        PREFETCH_RUNS.labels(data_type=query.data_type.value, outcome="ok").inc()

        self._last_outcome[key] = {
            "ok": True,
            "at": now,
            "item_count": len(result.items),
            "provider": result.provider_id,
            "message": "",
        }
        self._channel.publish(PREFETCH_UPDATES, {
            "data_type": query.data_type.value,
            "query": key,
            "timestamp": now,
            "item_count": len(result.items),
            "provider": result.provider_id,
        })

    def _on_failure(self, query: WatchedQuery, message: str) -> None:
        key = query.key
        now = self._clock()
        state = register_failure(
            self._backoff.get(key),
            query.data_type.value,
            now,
            base_s=self._settings.prefetch_base_backoff_s,
            max_s=self._settings.prefetch_max_backoff_s,
        )
        self._backoff[key] = state
        delay = (state.next_allowed_at or now) - now
        PREFETCH_BACKOFF_SECONDS.labels(query=key).set(delay)
        PREFETCH_RUNS.labels(data_type=query.data_type.value, outcome="error").inc()
        logger.warning(
            "prefetch_query_failed",
            query=key,
            error=message,
            consecutive_failures=state.consecutive_failures,
            backoff_s=delay,
        )

        self._last_outcome[key] = {
            "ok": False,
            "at": now,
            "item_count": 0,
            "provider": None,
            "message": message,
        }
        self._channel.publish(PREFETCH_ERROR, {
            "data_type": query.data_type.value,
            "query": key,
            "message": message,
            "timestamp": now,
            "consecutive_failures": state.consecutive_failures,
            "next_allowed_at": state.next_allowed_at,
        })

    # ── Timer ───────────────────────────────────────────────────────────
    async def run(self) -> None:
        """
        Fire a tick every ``prefetch_interval_s`` until shutdown, starting immediately.

        Ticks run as independent tasks so the timer keeps its cadence; a fire
        that overlaps a running tick is a no-op.
        """
        interval = self._settings.prefetch_interval_s
        self._running = True
        logger.info("prefetch_scheduler_started", interval_s=interval, queries=len(self._queries))
        try:
            while not self._shutdown.is_set():
                task = asyncio.create_task(self._guarded_tick(), name="prefetch-tick")
                self._inflight.add(task)
                task.add_done_callback(self._inflight.discard)
                try:
                    await asyncio.wait_for(self._shutdown.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    continue
        finally:
            self._running = False
            await self.wait_idle()
            logger.info("prefetch_scheduler_stopped", ticks=self._tick_count)

    async def _guarded_tick(self) -> None:
        try:
            await self.tick()
        except Exception as exc:
            logger.error("prefetch_tick_error", error=str(exc), exc_info=True)

    async def wait_idle(self) -> None:
        """Wait for in-flight ticks to finish."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def request_shutdown(self) -> None:
        self._shutdown.set()

    # ── Diagnostics ─────────────────────────────────────────────────────
    def status(self) -> dict[str, Any]:
        queries: list[dict[str, Any]] = []
        for query in self._queries:
            state = self._backoff.get(query.key)
            last = self._last_outcome.get(query.key, {})
            queries.append({
                "key": query.key,
                "data_type": query.data_type.value,
                "params": query.params,
                "state": "backoff" if state else "healthy",
                "consecutive_failures": state.consecutive_failures if state else 0,
                "next_allowed_at": state.next_allowed_at if state else None,
                "last_run_at": last.get("at"),
                "last_ok": last.get("ok"),
                "last_item_count": last.get("item_count"),
                "last_provider": last.get("provider"),
                "last_message": last.get("message"),
            })
        return {
            "enabled": self._settings.prefetch_enabled,
            "running": self._running,
            "interval_s": self._settings.prefetch_interval_s,
            "tick_in_progress": self.tick_in_progress,
            "tick_count": self._tick_count,
            "skipped_ticks": self._skipped_ticks,
            "last_tick_at": self._last_tick_at,
            "queries": queries,
        }


async def main() -> None:
    """Scheduler service entrypoint."""
    # runtime.context imports this module; import lazily.
    from runtime.context import build_context

    settings = get_settings()
    setup_logging(ServiceRole.SCHEDULER.value, settings=settings)
    start_metrics_server(settings=settings)

    context = build_context(settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, context.scheduler.request_shutdown)

    await context.start(run_scheduler=False)
    logger.info("scheduler_service_started", instance_id=settings.instance_id)
    try:
        await context.scheduler.run()
    finally:
        await context.stop()
        logger.info("scheduler_service_stopped")


if __name__ == "__main__":
    asyncio.run(main())
