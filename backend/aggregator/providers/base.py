"""
Abstract base class for all sports data provider adapters.
Defines the capability interface every data source implements.
"""
from __future__ import annotations

import abc
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from shared.errors import UnsupportedQueryError
from shared.models.domain import NormalizedMatch, NormalizedOdds, NormalizedStanding
from shared.models.enums import Capability, Sport
from shared.utils.http_client import ProviderHTTPClient


class BaseAdapter(abc.ABC):
    """
    Base class for provider adapters.

    An adapter fetches raw items for the capabilities it declares and knows how
    to map its own payload onto the normalized schemas. It must raise on
    failure rather than return a partial result, and it never touches the
    cache or health records; the aggregator owns both.
    """

    capabilities: frozenset[Capability] = frozenset()
    supported_sports: frozenset[Sport] = frozenset({Sport.SOCCER})

    def __init__(
        self,
        name: str,
        http_client: Optional[ProviderHTTPClient] = None,
        timeout_s: Optional[float] = None,
    ) -> None:
        self._name = name
        self._http = http_client
        self.timeout_s = timeout_s

    @property
    def name(self) -> str:
        return self._name

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def supports_sport(self, sport: Sport) -> bool:
        return sport in self.supported_sports

    async def start(self) -> None:
        """Initialize the adapter's HTTP client."""
        if self._http is not None:
            await self._http.start()

    async def close(self) -> None:
        """Shutdown the adapter's HTTP client."""
        if self._http is not None:
            await self._http.close()

    def _unsupported(self, capability: Capability) -> UnsupportedQueryError:
        return UnsupportedQueryError(f"{self._name} does not serve {capability.value}")

    # ── Capability interface ────────────────────────────────────────────
    async def fetch_live(self, sport: Sport) -> list[Any]:
        raise self._unsupported(Capability.LIVE)

    async def fetch_fixtures(self, league_id: str) -> list[Any]:
        raise self._unsupported(Capability.FIXTURES)

    async def fetch_odds(self, match_id: str) -> list[Any]:
        raise self._unsupported(Capability.ODDS)

    async def fetch_standings(self, league_id: str) -> list[Any]:
        raise self._unsupported(Capability.STANDINGS)

    # ── Normalization hooks ─────────────────────────────────────────────
    # The defaults accept items already keyed by the canonical field names.
    def normalize_match(self, raw: dict[str, Any]) -> NormalizedMatch:
        return NormalizedMatch.model_validate(self._canonical(raw, "id"))

    def normalize_odds(self, raw: dict[str, Any]) -> NormalizedOdds:
        return NormalizedOdds.model_validate(self._canonical(raw, "match_id"))

    def normalize_standing(self, raw: dict[str, Any]) -> NormalizedStanding:
        return NormalizedStanding.model_validate(self._canonical(raw, "team"))

    def _canonical(self, raw: dict[str, Any], id_field: str) -> dict[str, Any]:
        data = dict(raw)
        if data.get(id_field) is not None:
            data[id_field] = str(data[id_field])
        data.setdefault("provider_id", self._name)
        return data


# ── Parsing helpers shared by adapters ──────────────────────────────────
def safe_int(val: Any) -> Optional[int]:
    if val is None or val == "":
        return None
    try:
        return int(val)
    except (ValueError, TypeError):
        try:
            return int(float(val))
        except (ValueError, TypeError):
            return None


def safe_float(val: Any) -> Optional[float]:
    if val is None or val == "":
        return None
    try:
        return float(val)
    except (ValueError, TypeError):
        return None


def safe_str(val: Any) -> Optional[str]:
    if val is None:
        return None
    text = str(val).strip()
    return text or None


def parse_datetime(val: Any) -> Optional[datetime]:
    """Parse ISO-8601 strings (with or without 'Z') or epoch seconds into an aware datetime."""
    if val is None or val == "":
        return None
    if isinstance(val, (int, float)):
        return datetime.fromtimestamp(val, tz=timezone.utc)
    text = str(val).strip().replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def first(items: Iterable[Any], default: Any = None) -> Any:
    for item in items:
        return item
    return default
