"""
ESPN provider connector.
Uses ESPN's public site API (no key). Covers five sports for live scores and
soccer leagues for fixtures and standings.
"""
from __future__ import annotations

import re
from typing import Any, Optional

import httpx

from shared.config import Settings, get_settings
from shared.errors import UnsupportedQueryError
from shared.models.domain import NormalizedMatch, NormalizedStanding
from shared.models.enums import Capability, MatchStatus, ProviderName, Sport
from shared.models.leagues import LEAGUES, canonical_league_id, provider_league_code
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger

from aggregator.providers.base import BaseAdapter, first, parse_datetime, safe_int, safe_str

logger = get_logger(__name__)

# sport -> (ESPN sport slug, league slug used for the live scoreboard)
_LIVE_SCOREBOARDS: dict[Sport, tuple[str, str]] = {
    Sport.SOCCER: ("soccer", "all"),
    Sport.BASKETBALL: ("basketball", "nba"),
    Sport.HOCKEY: ("hockey", "nhl"),
    Sport.BASEBALL: ("baseball", "mlb"),
    Sport.FOOTBALL: ("football", "nfl"),
}

_SPORT_BY_SLUG: dict[str, Sport] = {slug: sport for sport, (slug, _) in _LIVE_SCOREBOARDS.items()}

_TERMINAL_TYPES: dict[str, MatchStatus] = {
    "STATUS_POSTPONED": MatchStatus.POSTPONED,
    "STATUS_CANCELED": MatchStatus.CANCELLED,
    "STATUS_SUSPENDED": MatchStatus.SUSPENDED,
    "STATUS_ABANDONED": MatchStatus.CANCELLED,
}


def _parse_clock_minute(clock: str) -> Optional[int]:
    """Parse minute from a soccer clock (e.g. \"67'\", \"45'+3'\")."""
    if not clock:
        return None
    plus = re.match(r"^(\d+)'?\s*\+\s*(\d+)", clock.strip())
    if plus:
        return int(plus.group(1)) + int(plus.group(2))
    simple = re.search(r"(\d+)", clock)
    return int(simple.group(1)) if simple else None


def _parse_status(status: dict[str, Any]) -> MatchStatus:
    """Map an ESPN competition status block to MatchStatus."""
    status_type = status.get("type") or {}
    name = str(status_type.get("name") or "").upper()
    if name in _TERMINAL_TYPES:
        return _TERMINAL_TYPES[name]

    state = str(status_type.get("state") or "").lower()
    if state == "pre":
        return MatchStatus.SCHEDULED
    if state == "post":
        return MatchStatus.FINISHED
    if state == "in":
        if name == "STATUS_HALFTIME" or "halftime" in str(status_type.get("detail") or "").lower():
            return MatchStatus.HALFTIME
        return MatchStatus.LIVE
    return MatchStatus.UNKNOWN


def _event_state(event: dict[str, Any]) -> str:
    comp = first(event.get("competitions") or [], {})
    status = comp.get("status") or event.get("status") or {}
    return str((status.get("type") or {}).get("state") or "").lower()


class ESPNAdapter(BaseAdapter):
    """ESPN data provider connector."""

    BASE_URL = "https://site.api.espn.com/apis"
    capabilities = frozenset({Capability.LIVE, Capability.FIXTURES, Capability.STANDINGS})
    supported_sports = frozenset(_LIVE_SCOREBOARDS)

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        http_client = ProviderHTTPClient(
            provider_name=ProviderName.ESPN.value,
            base_url=self.BASE_URL,
            timeout_s=settings.provider_timeout_s,
            max_retries=settings.provider_max_retries,
            transport=transport,
        )
        super().__init__(ProviderName.ESPN.value, http_client, settings.provider_timeout_s)

    def _league_slug(self, league_id: str) -> str:
        slug = provider_league_code(league_id, ProviderName.ESPN)
        if not slug:
            raise UnsupportedQueryError(f"espn has no league slug for {league_id}")
        return slug

    async def _scoreboard(self, sport_slug: str, league_slug: str) -> list[dict[str, Any]]:
        data = await self._http.get_json(f"/site/v2/sports/{sport_slug}/{league_slug}/scoreboard")
        events = list((data or {}).get("events") or [])
        for event in events:
            event["_sport"] = sport_slug
            event.setdefault("_league_slug", league_slug)
        logger.debug("espn_scoreboard_fetched", sport=sport_slug, league=league_slug, events=len(events))
        return events

    async def fetch_live(self, sport: Sport) -> list[Any]:
        if sport not in _LIVE_SCOREBOARDS:
            raise UnsupportedQueryError(f"espn does not serve {sport.value}")
        sport_slug, league_slug = _LIVE_SCOREBOARDS[sport]
        events = await self._scoreboard(sport_slug, league_slug)
        return [e for e in events if _event_state(e) == "in"]

    async def fetch_fixtures(self, league_id: str) -> list[Any]:
        events = await self._scoreboard("soccer", self._league_slug(league_id))
        return [e for e in events if _event_state(e) == "pre"]

    async def fetch_standings(self, league_id: str) -> list[Any]:
        slug = self._league_slug(league_id)
        data = await self._http.get_json(f"/v2/sports/soccer/{slug}/standings")
        rows: list[dict[str, Any]] = []
        for child in (data or {}).get("children") or []:
            for entry in (child.get("standings") or {}).get("entries") or []:
                rows.append({**entry, "_league_id": league_id})
        return rows

    # ── Normalization ───────────────────────────────────────────────────
    def normalize_match(self, raw: dict[str, Any]) -> NormalizedMatch:
        comp = first(raw.get("competitions") or [], {})
        competitors = comp.get("competitors") or []
        home = next((c for c in competitors if c.get("homeAway") == "home"), {})
        away = next((c for c in competitors if c.get("homeAway") == "away"), {})
        status = comp.get("status") or raw.get("status") or {}
        sport_slug = raw.get("_sport", "soccer")
        league_slug = raw.get("_league_slug")
        league_id = canonical_league_id(ProviderName.ESPN, league_slug)
        if league_id is None and league_slug != "all":
            league_id = safe_str(league_slug)

        minute = None
        if sport_slug == "soccer":
            minute = _parse_clock_minute(str(status.get("displayClock") or ""))

        return NormalizedMatch(
            id=str(raw.get("id")) if raw.get("id") is not None else None,
            sport=_SPORT_BY_SLUG.get(sport_slug),
            league_id=league_id,
            league_name=LEAGUES[league_id].name if league_id in LEAGUES else None,
            home=safe_str((home.get("team") or {}).get("displayName")),
            away=safe_str((away.get("team") or {}).get("displayName")),
            score_home=safe_int(home.get("score")),
            score_away=safe_int(away.get("score")),
            status=_parse_status(status),
            minute=minute,
            start_time=parse_datetime(raw.get("date")),
            venue=safe_str((comp.get("venue") or {}).get("fullName")),
            provider_id=self.name,
        )

    def normalize_standing(self, raw: dict[str, Any]) -> NormalizedStanding:
        stats = {s.get("name"): s.get("value") for s in raw.get("stats") or []}
        return NormalizedStanding(
            team=safe_str((raw.get("team") or {}).get("displayName")),
            league_id=safe_str(raw.get("_league_id")),
            position=safe_int(stats.get("rank")),
            played=safe_int(stats.get("gamesPlayed")),
            won=safe_int(stats.get("wins")),
            drawn=safe_int(stats.get("ties")),
            lost=safe_int(stats.get("losses")),
            goal_difference=safe_int(stats.get("pointDifferential")),
            points=safe_int(stats.get("points")),
            provider_id=self.name,
        )
