"""Unit tests for the prefetch scheduler: backoff, isolation, overlap and notifications."""
from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest

from shared.models.domain import FetchResult, WatchedQuery, cache_key
from shared.models.enums import Capability
from shared.utils.notifications import PREFETCH_ERROR, PREFETCH_UPDATES, NotificationChannel

from aggregator.cache import RawDataCache
from scheduler.service import PrefetchScheduler

LIVE = WatchedQuery(data_type=Capability.LIVE, params={"sport": "soccer"})
FIXTURES = WatchedQuery(data_type=Capability.FIXTURES, params={"league_id": "39"})


class ScriptedAggregator:
    """Aggregator stand-in whose per-query outcome the test controls."""

    def __init__(self) -> None:
        self.outcomes: dict[str, Any] = {}
        self.calls: list[str] = []
        self.gate: Optional[asyncio.Event] = None

    async def fetch(self, capability: Capability, params: dict[str, Any]) -> FetchResult:
        key = cache_key(capability, params)
        self.calls.append(key)
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.get(key, "ok")
        if isinstance(outcome, BaseException):
            raise outcome
        items = [{"id": "1"}] if outcome == "ok" else []
        return FetchResult(
            capability=capability,
            params=params,
            key=key,
            items=items,
            provider_id="a" if items else None,
            message="" if items else "no provider returned data",
        )


class CountingCache(RawDataCache):
    def __init__(self, clock) -> None:
        super().__init__(clock=clock)
        self.cleanups = 0

    def cleanup(self) -> int:
        self.cleanups += 1
        return super().cleanup()


class RecordingSink:
    def __init__(self) -> None:
        self.messages: list[tuple[str, dict[str, Any]]] = []

    async def __call__(self, topic: str, payload: dict[str, Any]) -> None:
        self.messages.append((topic, payload))

    def topics(self) -> list[str]:
        return [topic for topic, _ in self.messages]


@pytest.fixture
def aggregator() -> ScriptedAggregator:
    return ScriptedAggregator()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def channel(sink: RecordingSink) -> NotificationChannel:
    channel = NotificationChannel()
    channel.subscribe(sink)
    return channel


@pytest.fixture
def build(aggregator, channel, settings, clock):
    def _build(*queries: WatchedQuery) -> tuple[PrefetchScheduler, CountingCache]:
        cache = CountingCache(clock)
        scheduler = PrefetchScheduler(
            aggregator,
            cache,
            channel,
            watched_queries=list(queries) or [LIVE],
            settings=settings,
            clock=clock,
        )
        return scheduler, cache

    return _build


@pytest.mark.asyncio
async def test_success_publishes_update(build, aggregator, channel, sink, clock) -> None:
    scheduler, _ = build(LIVE)

    assert await scheduler.tick() is True
    await channel.flush()

    assert sink.topics() == [PREFETCH_UPDATES]
    payload = sink.messages[0][1]
    assert payload["data_type"] == "live"
    assert payload["query"] == LIVE.key
    assert payload["timestamp"] == clock.now
    assert payload["item_count"] == 1
    assert payload["provider"] == "a"
    assert scheduler.backoff_state(LIVE.key) is None


@pytest.mark.asyncio
async def test_failure_enters_backoff_and_skips(build, aggregator, channel, sink, clock) -> None:
    aggregator.outcomes[LIVE.key] = "empty"
    scheduler, _ = build(LIVE)

    await scheduler.tick()
    state = scheduler.backoff_state(LIVE.key)
    assert state.consecutive_failures == 1
    assert state.next_allowed_at == clock.now + 60

    await channel.flush()
    topic, payload = sink.messages[-1]
    assert topic == PREFETCH_ERROR
    assert payload["message"] == "no provider returned data"
    assert payload["consecutive_failures"] == 1
    assert payload["next_allowed_at"] == clock.now + 60

    # Still inside the window: the query is not fetched again.
    clock.advance(30)
    await scheduler.tick()
    assert aggregator.calls == [LIVE.key]

    clock.advance(30)
    await scheduler.tick()
    assert aggregator.calls == [LIVE.key, LIVE.key]
    state = scheduler.backoff_state(LIVE.key)
    assert state.consecutive_failures == 2
    assert state.next_allowed_at == clock.now + 120


@pytest.mark.asyncio
async def test_success_resets_backoff(build, aggregator, clock) -> None:
    aggregator.outcomes[LIVE.key] = "empty"
    scheduler, _ = build(LIVE)
    await scheduler.tick()
    assert scheduler.backoff_state(LIVE.key) is not None

    aggregator.outcomes[LIVE.key] = "ok"
    clock.advance(60)
    await scheduler.tick()
    assert scheduler.backoff_state(LIVE.key) is None
    assert scheduler.status()["queries"][0]["state"] == "healthy"


@pytest.mark.asyncio
async def test_raising_query_does_not_affect_others(build, aggregator, channel, sink) -> None:
    aggregator.outcomes[LIVE.key] = RuntimeError("boom")
    scheduler, _ = build(LIVE, FIXTURES)

    assert await scheduler.tick() is True
    await channel.flush()

    assert scheduler.backoff_state(LIVE.key).consecutive_failures == 1
    assert scheduler.backoff_state(FIXTURES.key) is None
    by_query = {payload["query"]: topic for topic, payload in sink.messages}
    assert by_query == {LIVE.key: PREFETCH_ERROR, FIXTURES.key: PREFETCH_UPDATES}


@pytest.mark.asyncio
async def test_overlapping_tick_is_ignored(build, aggregator) -> None:
    aggregator.gate = asyncio.Event()
    scheduler, _ = build(LIVE)

    first = asyncio.create_task(scheduler.tick())
    await asyncio.sleep(0)
    assert scheduler.tick_in_progress

    assert await scheduler.tick() is False
    aggregator.gate.set()
    assert await first is True

    assert aggregator.calls == [LIVE.key]
    status = scheduler.status()
    assert status["tick_count"] == 1
    assert status["skipped_ticks"] == 1


@pytest.mark.asyncio
async def test_every_tick_sweeps_cache(build, aggregator, clock) -> None:
    aggregator.outcomes[LIVE.key] = "empty"
    scheduler, cache = build(LIVE)
    cache.set("stale", {"x": 1}, ttl_s=5)

    await scheduler.tick()
    clock.advance(10)
    await scheduler.tick()

    assert cache.cleanups == 2
    assert "stale" not in cache.keys()


@pytest.mark.asyncio
async def test_status_reports_queries(build, aggregator, clock) -> None:
    aggregator.outcomes[FIXTURES.key] = "empty"
    scheduler, _ = build(LIVE, FIXTURES)
    await scheduler.tick()

    status = scheduler.status()
    assert status["tick_count"] == 1
    assert status["last_tick_at"] == clock.now
    rows = {row["key"]: row for row in status["queries"]}
    assert rows[LIVE.key]["state"] == "healthy"
    assert rows[LIVE.key]["last_provider"] == "a"
    assert rows[FIXTURES.key]["state"] == "backoff"
    assert rows[FIXTURES.key]["consecutive_failures"] == 1
    assert rows[FIXTURES.key]["last_message"] == "no provider returned data"


@pytest.mark.asyncio
async def test_run_stops_on_shutdown(build, aggregator, make_settings, channel, clock) -> None:
    scheduler = PrefetchScheduler(
        aggregator,
        CountingCache(clock),
        channel,
        watched_queries=[LIVE],
        settings=make_settings(prefetch_interval_s=0.01),
        clock=clock,
    )
    runner = asyncio.create_task(scheduler.run())
    for _ in range(50):
        if aggregator.calls:
            break
        await asyncio.sleep(0.01)
    scheduler.request_shutdown()
    await asyncio.wait_for(runner, timeout=1)

    assert aggregator.calls
    assert scheduler.status()["running"] is False
