"""
Pydantic v2 domain models shared across all matchfeed services.
These are the canonical wire/internal representations.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shared.models.enums import Capability, MatchStatus, Sport


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


def normalize_params(params: Mapping[str, Any] | None) -> dict[str, str]:
    """Stringify parameter values and drop unset ones."""
    if not params:
        return {}
    return {str(k): str(v) for k, v in params.items() if v is not None and str(v) != ""}


def cache_key(capability: Capability | str, params: Mapping[str, Any] | None) -> str:
    """
    Deterministic cache key for a (capability, params) pair.

    Parameter order does not matter: {"a": 1, "b": 2} and {"b": 2, "a": 1}
    produce the same key.
    """
    cap = Capability(capability).value
    flat = normalize_params(params)
    query = "&".join(f"{k}={flat[k]}" for k in sorted(flat))
    return f"{cap}:{query}"


def source_key(provider_id: str, capability: Capability | str, params: Mapping[str, Any] | None) -> str:
    """Cache key of the per-provider mirror of a payload."""
    return f"src:{provider_id}:{cache_key(capability, params)}"


# ── Normalized result schemas ───────────────────────────────────────────
class NormalizedMatch(DomainModel):
    """Common shape for live and fixture items, whichever provider answered."""
    id: str
    sport: Optional[Sport] = None
    league_id: Optional[str] = None
    league_name: Optional[str] = None
    home: Optional[str] = None
    away: Optional[str] = None
    score_home: Optional[int] = None
    score_away: Optional[int] = None
    status: MatchStatus = MatchStatus.UNKNOWN
    minute: Optional[int] = None
    start_time: Optional[datetime] = None
    venue: Optional[str] = None
    provider_id: Optional[str] = None


class NormalizedOdds(DomainModel):
    match_id: str
    home: Optional[str] = None
    away: Optional[str] = None
    bookmaker: Optional[str] = None
    market: Optional[str] = None
    price_home: Optional[float] = None
    price_draw: Optional[float] = None
    price_away: Optional[float] = None
    updated_at: Optional[datetime] = None
    provider_id: Optional[str] = None


class NormalizedStanding(DomainModel):
    team: str
    league_id: Optional[str] = None
    position: Optional[int] = None
    played: Optional[int] = None
    won: Optional[int] = None
    drawn: Optional[int] = None
    lost: Optional[int] = None
    goal_difference: Optional[int] = None
    points: Optional[int] = None
    form: Optional[str] = None
    provider_id: Optional[str] = None


# ── Cache ───────────────────────────────────────────────────────────────
class CacheEntry(DomainModel):
    """A stored payload; readers treat it as absent once now >= expires_at."""
    key: str
    value: str  # JSON text
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


# ── Provider health / priority ──────────────────────────────────────────
class ProviderHealthRecord(DomainModel):
    provider_id: str
    capability: Capability
    ok: bool
    message: str = ""
    observed_at: float


class ProviderPriorityEntry(DomainModel):
    provider_id: str
    capability: Capability
    priority: int
    enabled: bool = True
    registration_seq: int = 0


# ── Prefetch ────────────────────────────────────────────────────────────
class BackoffState(DomainModel):
    data_type: str
    consecutive_failures: int = Field(default=0, ge=0)
    next_allowed_at: Optional[float] = None


class WatchedQuery(DomainModel):
    """A (capability, params) pair refreshed by the prefetch scheduler every tick."""
    data_type: Capability
    params: dict[str, str] = Field(default_factory=dict)

    @field_validator("params", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> dict[str, str]:
        return normalize_params(value)

    @property
    def key(self) -> str:
        return cache_key(self.data_type, self.params)


# ── Aggregator results ──────────────────────────────────────────────────
class AttemptOutcome(DomainModel):
    provider_id: str
    ok: bool
    message: str = ""
    latency_ms: float = 0.0
    item_count: int = 0


class FetchResult(DomainModel):
    """
    Outcome of one aggregator fetch.

    An empty ``items`` list is the explicit "no data right now" result; it is a
    normal return value, not an error.
    """
    capability: Capability
    params: dict[str, str] = Field(default_factory=dict)
    key: str
    items: list[dict[str, Any]] = Field(default_factory=list)
    provider_id: Optional[str] = None
    fetched_at: float = 0.0
    from_cache: bool = False
    attempts: list[AttemptOutcome] = Field(default_factory=list)
    message: str = ""

    @property
    def ok(self) -> bool:
        return bool(self.items)

    @property
    def empty(self) -> bool:
        return not self.items
