"""Shared fixtures: deterministic clock, in-memory adapters and isolated settings."""
from __future__ import annotations

import asyncio
import copy
from typing import Any, Callable, Iterable, Optional

import pytest

from shared.config import Settings
from shared.models.enums import Capability, Sport

from aggregator.providers.base import BaseAdapter


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAdapter(BaseAdapter):
    """Adapter returning canned items (or raising) for every capability it declares."""

    def __init__(
        self,
        name: str,
        result: Any = None,
        error: Optional[BaseException] = None,
        capabilities: Iterable[Capability] = (Capability.LIVE,),
        sports: Iterable[Sport] = (Sport.SOCCER,),
        delay_s: float = 0.0,
        timeout_s: Optional[float] = None,
    ) -> None:
        super().__init__(name, None, timeout_s)
        self.capabilities = frozenset(capabilities)
        self.supported_sports = frozenset(sports)
        self.result = result if result is not None else []
        self.error = error
        self.delay_s = delay_s
        self.calls: list[tuple[Capability, str]] = []
        self.started = False
        self.closed = False

    async def start(self) -> None:
        self.started = True

    async def close(self) -> None:
        self.closed = True

    async def _respond(self, capability: Capability, arg: str) -> Any:
        self.calls.append((capability, arg))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        if callable(self.result):
            return self.result(capability, arg)
        return copy.deepcopy(self.result)

    async def fetch_live(self, sport: Sport) -> list[Any]:
        return await self._respond(Capability.LIVE, sport.value)

    async def fetch_fixtures(self, league_id: str) -> list[Any]:
        return await self._respond(Capability.FIXTURES, league_id)

    async def fetch_odds(self, match_id: str) -> list[Any]:
        return await self._respond(Capability.ODDS, match_id)

    async def fetch_standings(self, league_id: str) -> list[Any]:
        return await self._respond(Capability.STANDINGS, league_id)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    def _make(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "provider_order": [],
            "disabled_providers": [],
            "redis_url": None,
            "metrics_enabled": False,
            "provider_timeout_s": 1.0,
            "provider_max_retries": 1,
            "provider_rate_limit_rpm": 0,
            "provider_rate_limits": {},
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def settings(make_settings: Callable[..., Settings]) -> Settings:
    return make_settings()


@pytest.fixture
def fake_adapter() -> type[FakeAdapter]:
    return FakeAdapter
