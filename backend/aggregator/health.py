"""
Provider health tracker.

Keeps one record per (provider, capability), overwritten on every adapter
invocation. This is observability only: nothing here may raise into the
aggregator, so every write swallows and logs its own failures.

The Redis mirror runs in tracked background tasks with a bounded write, so a
slow or wedged Redis never holds up the fallback chain.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Optional

from shared.models.domain import ProviderHealthRecord
from shared.models.enums import Capability
from shared.utils.logging import get_logger
from shared.utils.redis_manager import RedisManager

logger = get_logger(__name__)

HealthKey = tuple[str, Capability]


class ProviderHealthTracker:
    """In-memory health store with an optional best-effort Redis mirror."""

    def __init__(
        self,
        stale_after_s: int = 3600,
        redis: Optional[RedisManager] = None,
        clock: Callable[[], float] = time.time,
        mirror_timeout_s: float = 2.0,
    ) -> None:
        self._stale_after_s = stale_after_s
        self._redis = redis
        self._clock = clock
        self._mirror_timeout_s = mirror_timeout_s
        self._records: dict[HealthKey, ProviderHealthRecord] = {}
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def stale_after_s(self) -> int:
        return self._stale_after_s

    @property
    def pending_mirrors(self) -> int:
        return len(self._pending)

    def detach_redis(self) -> None:
        self._redis = None

    async def record_attempt(
        self, provider_id: str, capability: Capability, ok: bool, message: str = ""
    ) -> None:
        """Overwrite the record for (provider_id, capability) with the current time."""
        try:
            record = ProviderHealthRecord(
                provider_id=provider_id,
                capability=Capability(capability),
                ok=ok,
                message=message,
                observed_at=self._clock(),
            )
            self._records[(provider_id, record.capability)] = record
        except Exception as exc:
            logger.warning("health_record_failed", provider=provider_id, error=str(exc))
            return

        if self._redis is not None:
            task = asyncio.create_task(self._mirror(self._redis, record), name=f"health-mirror-{provider_id}")
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _mirror(self, redis: RedisManager, record: ProviderHealthRecord) -> None:
        try:
            await asyncio.wait_for(
                redis.set_health_record(
                    record.provider_id,
                    record.capability.value,
                    record.model_dump(mode="json"),
                    ttl_s=self._stale_after_s,
                ),
                timeout=self._mirror_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "health_mirror_timeout",
                provider=record.provider_id,
                timeout_s=self._mirror_timeout_s,
            )
        except Exception as exc:
            logger.warning("health_mirror_failed", provider=record.provider_id, error=str(exc))

    async def drain(self) -> None:
        """Wait for in-flight mirror writes; each one is bounded by the mirror timeout."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def get_all(self) -> dict[HealthKey, ProviderHealthRecord]:
        """Every record, stale ones included; callers decide what to show."""
        return dict(self._records)

    def is_stale(self, record: ProviderHealthRecord, now: float | None = None) -> bool:
        now = self._clock() if now is None else now
        return now - record.observed_at > self._stale_after_s

    def get_fresh(self) -> dict[HealthKey, ProviderHealthRecord]:
        now = self._clock()
        return {k: r for k, r in self._records.items() if not self.is_stale(r, now)}

    def get(self, provider_id: str, capability: Capability) -> Optional[ProviderHealthRecord]:
        record = self._records.get((provider_id, Capability(capability)))
        if record is None or self.is_stale(record):
            return None
        return record

    def is_capability_healthy(self, capability: Capability) -> bool:
        """True if any provider recently served this capability successfully."""
        capability = Capability(capability)
        return any(r.ok and r.capability == capability for r in self.get_fresh().values())

    def snapshot(self, include_stale: bool = False) -> list[dict[str, Any]]:
        now = self._clock()
        rows: list[dict[str, Any]] = []
        for (_, _), record in sorted(self._records.items(), key=lambda kv: (kv[0][0], kv[0][1].value)):
            stale = self.is_stale(record, now)
            if stale and not include_stale:
                continue
            row = record.model_dump(mode="json")
            row["age_s"] = round(now - record.observed_at, 3)
            row["stale"] = stale
            rows.append(row)
        return rows
