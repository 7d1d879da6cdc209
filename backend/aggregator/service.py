"""
Aggregator: the provider fallback chain.

For one (capability, params) query it walks the enabled adapters in priority
order, stops at the first one that yields usable items, and writes the
normalized payload to the raw data cache. Every adapter invocation is reported
to the health tracker. Callers see either items or an explicit empty result;
the only exception that escapes is ``InvalidQueryError`` for malformed input.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Mapping, Optional

import httpx

from shared.config import Settings, get_settings
from shared.errors import InvalidQueryError, ProviderHTTPError, UnsupportedQueryError
from shared.models.domain import (
    AttemptOutcome,
    FetchResult,
    cache_key,
    normalize_params,
    source_key,
)
from shared.models.enums import Capability, ProviderName, Sport
from shared.utils.circuit_breaker import CircuitBreaker, CircuitBreakerOpen, cooldown_for_status
from shared.utils.logging import get_logger
from shared.utils.metrics import (
    AGGREGATOR_FETCHES,
    PROVIDER_ATTEMPTS,
    PROVIDER_LATENCY,
    atrack_latency,
)
from shared.utils.rate_limiter import ProviderRateLimiter

from aggregator.cache import RawDataCache
from aggregator.health import ProviderHealthTracker
from aggregator.normalizer import normalize_items
from aggregator.providers.api_football import APIFootballAdapter
from aggregator.providers.base import BaseAdapter
from aggregator.providers.espn import ESPNAdapter
from aggregator.providers.football_data import FootballDataAdapter
from aggregator.providers.thesportsdb import TheSportsDBAdapter
from aggregator.registry import ProviderRegistry

logger = get_logger(__name__)

EXHAUSTED_MESSAGE = "no provider returned data"

_REQUIRED_PARAMS: dict[Capability, str] = {
    Capability.LIVE: "sport",
    Capability.FIXTURES: "league_id",
    Capability.ODDS: "match_id",
    Capability.STANDINGS: "league_id",
}


def required_param(capability: Capability) -> str:
    """Name of the parameter a query for ``capability`` must carry."""
    return _REQUIRED_PARAMS[Capability(capability)]


def validate_query(
    capability: Capability | str, params: Mapping[str, Any] | None
) -> tuple[Capability, dict[str, str]]:
    """
    Coerce and validate caller input.

    Raises:
        InvalidQueryError: Unknown capability, missing/blank required parameter
            or an unknown sport code.
    """
    try:
        cap = Capability(capability)
    except ValueError:
        raise InvalidQueryError(f"unknown capability {capability!r}") from None
    if params is not None and not isinstance(params, Mapping):
        raise InvalidQueryError("params must be a mapping")

    flat = {k: v.strip() for k, v in normalize_params(params).items()}
    name = required_param(cap)
    if not flat.get(name):
        raise InvalidQueryError(f"{cap.value} requires parameter '{name}'")

    if cap == Capability.LIVE:
        sport = flat["sport"].lower()
        try:
            Sport(sport)
        except ValueError:
            raise InvalidQueryError(f"unknown sport {flat['sport']!r}") from None
        flat["sport"] = sport
    return cap, flat


class Aggregator:
    """
    Orchestrates adapters per capability.

    Only this class writes the cache and the health tracker, and only after an
    adapter call has returned within its timeout; a call abandoned by
    ``asyncio.wait_for`` is cancelled, so a late response is never recorded.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        cache: RawDataCache,
        health: ProviderHealthTracker,
        settings: Settings | None = None,
        breakers: dict[str, CircuitBreaker] | None = None,
        clock: Callable[[], float] = time.time,
        rate_limiter: ProviderRateLimiter | None = None,
    ) -> None:
        self._registry = registry
        self._cache = cache
        self._health = health
        self._settings = settings or get_settings()
        self._breakers: dict[str, CircuitBreaker] = breakers if breakers is not None else {}
        self._clock = clock
        self._rate_limiter = rate_limiter or ProviderRateLimiter(self._settings)

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def cache(self) -> RawDataCache:
        return self._cache

    @property
    def health(self) -> ProviderHealthTracker:
        return self._health

    def ttl_for(self, capability: Capability) -> int:
        return self._settings.cache_ttl_for(Capability(capability))

    def breaker_for(self, provider_id: str) -> CircuitBreaker:
        breaker = self._breakers.get(provider_id)
        if breaker is None:
            breaker = CircuitBreaker(
                name=provider_id,
                failure_threshold=self._settings.provider_breaker_threshold,
                recovery_timeout_s=self._settings.provider_breaker_recovery_s,
            )
            self._breakers[provider_id] = breaker
        return breaker

    def breaker_stats(self) -> list[dict[str, Any]]:
        return [b.stats for _, b in sorted(self._breakers.items())]

    @property
    def rate_limiter(self) -> ProviderRateLimiter:
        return self._rate_limiter

    # ── Fallback chain ──────────────────────────────────────────────────
    async def fetch(
        self, capability: Capability | str, params: Mapping[str, Any] | None = None
    ) -> FetchResult:
        """Run the fallback chain for one query. Never raises except on invalid input."""
        cap, flat = validate_query(capability, params)
        key = cache_key(cap, flat)
        sport = Sport(flat["sport"]) if cap == Capability.LIVE else None
        attempts: list[AttemptOutcome] = []

        for adapter in self._registry.resolve(cap):
            if sport is not None and not adapter.supports_sport(sport):
                continue

            # Checked before the breaker so a limited provider never holds a half-open slot.
            if not await self._rate_limiter.allow(adapter.name):
                PROVIDER_ATTEMPTS.labels(
                    provider=adapter.name, capability=cap.value, outcome="rate_limited"
                ).inc()
                logger.info(
                    "provider_skipped_rate_limited",
                    provider=adapter.name,
                    capability=cap.value,
                    retry_after_s=round(self._rate_limiter.retry_after(adapter.name), 1),
                )
                continue

            breaker = self.breaker_for(adapter.name)
            try:
                await breaker.before_call()
            except CircuitBreakerOpen as exc:
                PROVIDER_ATTEMPTS.labels(provider=adapter.name, capability=cap.value, outcome="skipped").inc()
                logger.info(
                    "provider_skipped_circuit_open",
                    provider=adapter.name,
                    capability=cap.value,
                    retry_after_s=round(exc.retry_after, 1),
                )
                continue

            try:
                outcome, items = await self._attempt(adapter, cap, flat, breaker)
            except asyncio.CancelledError:
                # Caller went away mid-call; hand back the half-open slot.
                await breaker.release()
                raise
            attempts.append(outcome)
            if items:
                fetched_at = self._clock()
                self._write_cache(key, cap, flat, adapter.name, items, fetched_at)
                AGGREGATOR_FETCHES.labels(capability=cap.value, outcome="ok").inc()
                logger.info(
                    "aggregator_fetch_ok",
                    capability=cap.value,
                    key=key,
                    provider=adapter.name,
                    items=len(items),
                    attempts=len(attempts),
                )
                return FetchResult(
                    capability=cap,
                    params=flat,
                    key=key,
                    items=items,
                    provider_id=adapter.name,
                    fetched_at=fetched_at,
                    attempts=attempts,
                )

        AGGREGATOR_FETCHES.labels(capability=cap.value, outcome="exhausted").inc()
        logger.warning(
            "aggregator_providers_exhausted",
            capability=cap.value,
            key=key,
            attempts=[a.provider_id for a in attempts],
        )
        return FetchResult(
            capability=cap,
            params=flat,
            key=key,
            items=[],
            fetched_at=self._clock(),
            attempts=attempts,
            message=EXHAUSTED_MESSAGE,
        )

    async def _attempt(
        self,
        adapter: BaseAdapter,
        capability: Capability,
        params: dict[str, str],
        breaker: CircuitBreaker,
    ) -> tuple[AttemptOutcome, list[dict[str, Any]]]:
        timeout = adapter.timeout_s or self._settings.provider_timeout_s
        started = time.perf_counter()
        items: list[dict[str, Any]] = []
        status_code: Optional[int] = None
        retry_after: Optional[float] = None
        unsupported = False

        try:
            async with atrack_latency(PROVIDER_LATENCY, provider=adapter.name):
                raw = await asyncio.wait_for(_invoke(adapter, capability, params), timeout=timeout)
            items = normalize_items(adapter, capability, raw)
            message = f"{len(items)} items" if items else "empty result"
        except asyncio.TimeoutError:
            message = f"timed out after {timeout:g}s"
        except UnsupportedQueryError as exc:
            unsupported = True
            message = str(exc)
        except ProviderHTTPError as exc:
            status_code, retry_after = exc.status_code, exc.retry_after
            message = str(exc)
        except Exception as exc:
            status_code = getattr(exc, "status_code", None)
            message = str(exc) or exc.__class__.__name__

        latency_ms = round((time.perf_counter() - started) * 1000, 2)
        ok = bool(items)
        await self._health.record_attempt(adapter.name, capability, ok, message)

        if unsupported:
            await breaker.release()
        elif ok or message == "empty result":
            # The provider answered; an empty answer is a data gap, not an outage.
            await breaker.record_success()
        else:
            await breaker.record_failure(message, cooldown_for_status(status_code, retry_after))

        outcome_label = "ok" if ok else ("empty" if message == "empty result" else "error")
        PROVIDER_ATTEMPTS.labels(provider=adapter.name, capability=capability.value, outcome=outcome_label).inc()
        if not ok:
            logger.warning(
                "provider_attempt_failed",
                provider=adapter.name,
                capability=capability.value,
                error=message,
                latency_ms=latency_ms,
            )

        return (
            AttemptOutcome(
                provider_id=adapter.name,
                ok=ok,
                message=message,
                latency_ms=latency_ms,
                item_count=len(items),
            ),
            items,
        )

    def _write_cache(
        self,
        key: str,
        capability: Capability,
        params: dict[str, str],
        provider_id: str,
        items: list[dict[str, Any]],
        fetched_at: float,
    ) -> None:
        payload = {
            "capability": capability.value,
            "params": params,
            "provider": provider_id,
            "fetched_at": fetched_at,
            "items": items,
        }
        ttl = self.ttl_for(capability)
        try:
            self._cache.set(key, payload, ttl)
            self._cache.set(source_key(provider_id, capability, params), payload, ttl)
        except Exception as exc:
            logger.error("cache_write_failed", key=key, provider=provider_id, error=str(exc))

    # ── Convenience ─────────────────────────────────────────────────────
    async def get_or_fetch(
        self, capability: Capability | str, params: Mapping[str, Any] | None = None
    ) -> FetchResult:
        """Serve a fresh cache hit without touching providers, otherwise fetch."""
        cap, flat = validate_query(capability, params)
        key = cache_key(cap, flat)
        cached = self._cache.get(key)
        if cached and cached.get("items"):
            return FetchResult(
                capability=cap,
                params=flat,
                key=key,
                items=cached["items"],
                provider_id=cached.get("provider"),
                fetched_at=cached.get("fetched_at") or 0.0,
                from_cache=True,
            )
        return await self.fetch(cap, flat)

    async def get_live_matches(self, sport: str = "soccer") -> FetchResult:
        return await self.get_or_fetch(Capability.LIVE, {"sport": sport})

    async def get_fixtures(self, league_id: str) -> FetchResult:
        return await self.get_or_fetch(Capability.FIXTURES, {"league_id": league_id})

    async def get_odds(self, match_id: str) -> FetchResult:
        return await self.get_or_fetch(Capability.ODDS, {"match_id": match_id})

    async def get_standings(self, league_id: str) -> FetchResult:
        return await self.get_or_fetch(Capability.STANDINGS, {"league_id": league_id})


def _invoke(adapter: BaseAdapter, capability: Capability, params: dict[str, str]) -> Awaitable[Any]:
    if capability == Capability.LIVE:
        return adapter.fetch_live(Sport(params["sport"]))
    if capability == Capability.FIXTURES:
        return adapter.fetch_fixtures(params["league_id"])
    if capability == Capability.ODDS:
        return adapter.fetch_odds(params["match_id"])
    return adapter.fetch_standings(params["league_id"])


def build_provider_registry(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProviderRegistry:
    """Build the registry with every provider the configuration allows."""
    settings = settings or get_settings()
    registry = ProviderRegistry(settings)

    adapters: dict[str, BaseAdapter] = {}
    if settings.api_football_api_key:
        adapters[ProviderName.API_FOOTBALL.value] = APIFootballAdapter(settings, transport=transport)
    else:
        logger.info("provider_not_configured", provider=ProviderName.API_FOOTBALL.value)

    if settings.football_data_api_key:
        adapters[ProviderName.FOOTBALL_DATA.value] = FootballDataAdapter(settings, transport=transport)
    else:
        logger.info("provider_not_configured", provider=ProviderName.FOOTBALL_DATA.value)

    adapters[ProviderName.ESPN.value] = ESPNAdapter(settings, transport=transport)
    adapters[ProviderName.THESPORTSDB.value] = TheSportsDBAdapter(settings, transport=transport)

    # Register in configured order so registration sequence matches priority.
    ordered = [p for p in settings.provider_order if p in adapters]
    ordered += [p for p in adapters if p not in ordered]
    for name in ordered:
        registry.register(adapters[name])
    return registry
