"""
In-process notification channel.

Publishers hand a message to a bounded queue and return immediately; a
dispatcher task fans messages out to subscribed sinks. A failing or slow sink
never reaches back into the publisher.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

from shared.utils.logging import get_logger
from shared.utils.metrics import NOTIFICATIONS_DROPPED

logger = get_logger(__name__)

PREFETCH_UPDATES = "prefetch.updates"
PREFETCH_ERROR = "prefetch.error"

Sink = Callable[[str, dict[str, Any]], Awaitable[None]]


class NotificationChannel:
    """Bounded fire-and-forget message channel with async sinks."""

    def __init__(self, max_pending: int = 1000) -> None:
        self._queue: asyncio.Queue[tuple[str, dict[str, Any]]] = asyncio.Queue(maxsize=max_pending)
        self._sinks: list[tuple[str, Sink]] = []
        self._task: Optional[asyncio.Task[None]] = None
        self._delivered = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def delivered(self) -> int:
        return self._delivered

    def subscribe(self, sink: Sink, name: str | None = None) -> None:
        self._sinks.append((name or getattr(sink, "__name__", "sink"), sink))

    def publish(self, topic: str, payload: dict[str, Any]) -> bool:
        """Enqueue a message. Never blocks and never raises; returns False if dropped."""
        try:
            self._queue.put_nowait((topic, dict(payload)))
            return True
        except asyncio.QueueFull:
            NOTIFICATIONS_DROPPED.labels(topic=topic).inc()
            logger.warning("notification_dropped_queue_full", topic=topic)
        except Exception as exc:
            NOTIFICATIONS_DROPPED.labels(topic=topic).inc()
            logger.error("notification_publish_failed", topic=topic, error=str(exc))
        return False

    async def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._dispatch_loop(), name="notification-dispatch")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.flush()

    async def flush(self) -> int:
        """Deliver everything currently queued from the caller's task. Returns the count."""
        count = 0
        while True:
            try:
                topic, payload = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return count
            await self._deliver(topic, payload)
            self._queue.task_done()
            count += 1

    async def _dispatch_loop(self) -> None:
        while True:
            topic, payload = await self._queue.get()
            try:
                await self._deliver(topic, payload)
            finally:
                self._queue.task_done()

    async def _deliver(self, topic: str, payload: dict[str, Any]) -> None:
        for name, sink in self._sinks:
            try:
                await sink(topic, payload)
            except Exception as exc:
                logger.warning("notification_sink_failed", sink=name, topic=topic, error=str(exc))
        self._delivered += 1


async def log_sink(topic: str, payload: dict[str, Any]) -> None:
    """Sink that turns every notification into a structured log line."""
    if topic == PREFETCH_ERROR:
        logger.warning("prefetch_notification", topic=topic, **payload)
    else:
        logger.info("prefetch_notification", topic=topic, **payload)
