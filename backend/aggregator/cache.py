"""
Raw data cache: an in-process TTL key-value store.

Reads expire lazily (an entry past its deadline is a miss even if no sweep has
run); ``cleanup()`` removes expired entries eagerly. Values are stored as JSON
text, so every ``get`` hands back an independent copy.
"""
from __future__ import annotations

import json
import time
from collections import Counter
from typing import Any, Callable, Optional

from shared.models.domain import CacheEntry, cache_key, source_key
from shared.models.enums import Capability
from shared.utils.logging import get_logger
from shared.utils.metrics import CACHE_ENTRIES, CACHE_SWEPT

logger = get_logger(__name__)


class RawDataCache:
    """TTL cache shared by the aggregator (writer) and every reader."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    # ── Core operations ─────────────────────────────────────────────────
    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None or entry.is_expired(self._clock()):
            return default
        return json.loads(entry.value)

    def set(self, key: str, value: Any, ttl_s: float) -> CacheEntry:
        """Store ``value`` under ``key`` for ``ttl_s`` seconds, replacing any previous entry."""
        if ttl_s <= 0:
            raise ValueError(f"ttl must be positive, got {ttl_s}")
        try:
            encoded = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"cache value for {key!r} is not JSON-serializable") from exc
        now = self._clock()
        entry = CacheEntry(key=key, value=encoded, created_at=now, expires_at=now + ttl_s)
        self._entries[key] = entry
        CACHE_ENTRIES.set(len(self._entries))
        return entry

    def delete(self, key: str) -> bool:
        removed = self._entries.pop(key, None) is not None
        CACHE_ENTRIES.set(len(self._entries))
        return removed

    def clear(self) -> None:
        self._entries.clear()
        CACHE_ENTRIES.set(0)

    def cleanup(self) -> int:
        """Remove every entry whose deadline has passed. Returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in list(self._entries.items()) if entry.expires_at <= now]
        for key in expired:
            self._entries.pop(key, None)
        if expired:
            CACHE_SWEPT.inc(len(expired))
            logger.debug("cache_cleanup", removed=len(expired), remaining=len(self._entries))
        CACHE_ENTRIES.set(len(self._entries))
        return len(expired)

    def keys(self) -> list[str]:
        now = self._clock()
        return [key for key, entry in list(self._entries.items()) if not entry.is_expired(now)]

    def __len__(self) -> int:
        return len(self.keys())

    def export_all(self) -> dict[str, Any]:
        """Diagnostics view of every live entry. Never raises."""
        entries: list[dict[str, Any]] = []
        total = 0
        try:
            now = self._clock()
            for key, entry in sorted(list(self._entries.items())):
                if entry.is_expired(now):
                    continue
                size = len(entry.value.encode("utf-8"))
                total += size
                entries.append({
                    "key": key,
                    "approx_size_bytes": size,
                    "age_s": round(now - entry.created_at, 3),
                    "ttl_remaining_s": round(entry.expires_at - now, 3),
                })
        except Exception as exc:
            logger.error("cache_export_failed", error=str(exc))
        return {"entries": entries, "total_size": total}

    # ── Read surface ────────────────────────────────────────────────────
    def _payload(self, capability: Capability, params: dict[str, Any], source: Optional[str]) -> Optional[dict[str, Any]]:
        key = source_key(source, capability, params) if source else cache_key(capability, params)
        return self.get(key)

    def _items(self, capability: Capability, params: dict[str, Any], source: Optional[str]) -> list[dict[str, Any]]:
        payload = self._payload(capability, params, source)
        if not payload:
            return []
        return list(payload.get("items") or [])

    def get_live_matches(self, source: Optional[str] = None, sport: str = "soccer") -> list[dict[str, Any]]:
        return self._items(Capability.LIVE, {"sport": sport}, source)

    def get_fixtures(self, source: Optional[str] = None, league: str = "39") -> list[dict[str, Any]]:
        return self._items(Capability.FIXTURES, {"league_id": league}, source)

    def get_standings(self, league_id: str, source: Optional[str] = None) -> list[dict[str, Any]]:
        return self._items(Capability.STANDINGS, {"league_id": league_id}, source)

    def get_odds(self, match_id: str, source: Optional[str] = None) -> list[dict[str, Any]]:
        return self._items(Capability.ODDS, {"match_id": match_id}, source)

    def get_match_detail(self, match_id: str, source: Optional[str] = None) -> Optional[dict[str, Any]]:
        """Find a match by id across cached live and fixture payloads."""
        wanted = str(match_id)
        prefixes = (Capability.LIVE.value, Capability.FIXTURES.value)
        for key in self.keys():
            if source:
                if not key.startswith(f"src:{source}:"):
                    continue
                bare = key[len(f"src:{source}:"):]
            elif key.startswith("src:"):
                continue
            else:
                bare = key
            if not bare.startswith(tuple(f"{p}:" for p in prefixes)):
                continue
            payload = self.get(key) or {}
            for item in payload.get("items") or []:
                if str(item.get("id")) == wanted:
                    return item
        return None

    def get_data_summary(self) -> dict[str, Any]:
        """Counts of cached payloads per capability and per source."""
        by_capability: Counter[str] = Counter()
        by_source: Counter[str] = Counter()
        items = 0
        for key in self.keys():
            if key.startswith("src:"):
                _, provider, rest = key.split(":", 2)
                by_source[provider] += 1
                continue
            by_capability[key.split(":", 1)[0]] += 1
            payload = self.get(key) or {}
            items += len(payload.get("items") or [])
        exported = self.export_all()
        return {
            "entries": len(exported["entries"]),
            "items": items,
            "by_capability": dict(by_capability),
            "by_source": dict(by_source),
            "total_size": exported["total_size"],
            "generated_at": self._clock(),
        }
