"""
Per-provider request rate limiting with token buckets.

A bucket refills at ``rpm / 60`` tokens per second up to ``burst``. A provider
whose bucket is empty is skipped by the fallback chain rather than waited on,
so a burst of uncached consumer requests cannot hammer an upstream API.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Optional

from shared.config import Settings, get_settings


class TokenBucket:
    """
    In-process token bucket for one provider.

    Args:
        rpm: Sustained requests per minute; 0 means unlimited.
        burst: Bucket capacity (tokens available after an idle period).
        clock: Monotonic time source.
    """

    def __init__(self, rpm: int, burst: int, clock: Callable[[], float] = time.monotonic) -> None:
        self.rpm = max(0, rpm)
        self.burst = max(1, burst)
        self._clock = clock
        self._tokens = float(self.burst)
        self._last_refill = clock()
        self._lock = asyncio.Lock()
        self.rejected = 0

    @property
    def unlimited(self) -> bool:
        return self.rpm == 0

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(float(self.burst), self._tokens + elapsed * (self.rpm / 60.0))
        self._last_refill = now

    async def acquire(self) -> bool:
        """Consume one token if available. False means the caller is rate limited."""
        if self.unlimited:
            return True
        async with self._lock:
            self._refill()
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            self.rejected += 1
            return False

    def seconds_until_token(self) -> float:
        if self.unlimited:
            return 0.0
        self._refill()
        missing = 1.0 - self._tokens
        return 0.0 if missing <= 0 else missing * 60.0 / self.rpm

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "rpm": self.rpm,
            "burst": self.burst,
            "tokens": None if self.unlimited else round(self._tokens, 2),
            "rejected": self.rejected,
        }


class ProviderRateLimiter:
    """Token buckets keyed by provider id, sized from settings."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or get_settings()
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}

    def bucket_for(self, provider_id: str) -> TokenBucket:
        bucket = self._buckets.get(provider_id)
        if bucket is None:
            rpm = self._settings.provider_rate_limits.get(provider_id, self._settings.provider_rate_limit_rpm)
            bucket = TokenBucket(rpm=rpm, burst=self._settings.provider_rate_limit_burst, clock=self._clock)
            self._buckets[provider_id] = bucket
        return bucket

    async def allow(self, provider_id: str) -> bool:
        return await self.bucket_for(provider_id).acquire()

    def retry_after(self, provider_id: str) -> float:
        return self.bucket_for(provider_id).seconds_until_token()

    def stats(self) -> dict[str, dict[str, Any]]:
        return {name: bucket.stats for name, bucket in sorted(self._buckets.items())}
