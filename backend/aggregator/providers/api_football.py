"""
API-Football (api-sports v3) provider connector.
The only source that serves all four capabilities, odds included; requires a key.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from shared.config import Settings, get_settings
from shared.errors import AdapterError, UnsupportedQueryError
from shared.models.domain import NormalizedMatch, NormalizedOdds, NormalizedStanding
from shared.models.enums import Capability, MatchStatus, ProviderName, Sport
from shared.models.leagues import LEAGUES
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger

from aggregator.providers.base import BaseAdapter, first, parse_datetime, safe_float, safe_int, safe_str

logger = get_logger(__name__)

_STATUS_MAP: dict[str, MatchStatus] = {
    "TBD": MatchStatus.SCHEDULED,
    "NS": MatchStatus.SCHEDULED,
    "1H": MatchStatus.LIVE,
    "2H": MatchStatus.LIVE,
    "ET": MatchStatus.LIVE,
    "BT": MatchStatus.LIVE,
    "P": MatchStatus.LIVE,
    "LIVE": MatchStatus.LIVE,
    "HT": MatchStatus.HALFTIME,
    "FT": MatchStatus.FINISHED,
    "AET": MatchStatus.FINISHED,
    "PEN": MatchStatus.FINISHED,
    "PST": MatchStatus.POSTPONED,
    "CANC": MatchStatus.CANCELLED,
    "ABD": MatchStatus.CANCELLED,
    "SUSP": MatchStatus.SUSPENDED,
    "INT": MatchStatus.SUSPENDED,
}

# Market names API-Football uses for the 1X2 market.
_MATCH_WINNER = ("Match Winner", "1X2")


def current_season(now: Optional[datetime] = None) -> int:
    """European seasons start in July; API-Football labels a season by its first year."""
    now = now or datetime.now(timezone.utc)
    return now.year if now.month >= 7 else now.year - 1


class APIFootballAdapter(BaseAdapter):
    """API-Football data provider connector."""

    BASE_URL = "https://v3.football.api-sports.io"
    capabilities = frozenset({Capability.LIVE, Capability.FIXTURES, Capability.ODDS, Capability.STANDINGS})
    supported_sports = frozenset({Sport.SOCCER})

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        http_client = ProviderHTTPClient(
            provider_name=ProviderName.API_FOOTBALL.value,
            base_url=self.BASE_URL,
            headers={"x-apisports-key": settings.api_football_api_key},
            timeout_s=settings.provider_timeout_s,
            max_retries=settings.provider_max_retries,
            transport=transport,
        )
        super().__init__(ProviderName.API_FOOTBALL.value, http_client, settings.provider_timeout_s)

    async def _response(self, path: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        data = await self._http.get_json(path, params=params)
        errors = data.get("errors") if isinstance(data, dict) else None
        # API-Football reports quota and auth problems in a 200 body.
        if errors:
            raise AdapterError(f"api_football error: {errors}")
        rows = list((data or {}).get("response") or [])
        logger.debug("api_football_response", path=path, results=len(rows))
        return rows

    async def fetch_live(self, sport: Sport) -> list[Any]:
        if sport != Sport.SOCCER:
            raise UnsupportedQueryError(f"api_football does not serve {sport.value}")
        return await self._response("/fixtures", {"live": "all"})

    async def fetch_fixtures(self, league_id: str) -> list[Any]:
        return await self._response("/fixtures", {"league": league_id, "next": 20})

    async def fetch_odds(self, match_id: str) -> list[Any]:
        return await self._response("/odds", {"fixture": match_id})

    async def fetch_standings(self, league_id: str) -> list[Any]:
        rows = await self._response(
            "/standings", {"league": league_id, "season": current_season()}
        )
        # response[0].league.standings is a list of groups; flatten them.
        table: list[dict[str, Any]] = []
        for block in rows:
            league = block.get("league") or {}
            for group in league.get("standings") or []:
                for row in group:
                    table.append({**row, "_league_id": league.get("id", league_id)})
        return table

    # ── Normalization ───────────────────────────────────────────────────
    def normalize_match(self, raw: dict[str, Any]) -> NormalizedMatch:
        fixture = raw.get("fixture") or {}
        league = raw.get("league") or {}
        teams = raw.get("teams") or {}
        goals = raw.get("goals") or {}
        status = fixture.get("status") or {}
        league_id = safe_str(league.get("id"))
        return NormalizedMatch(
            id=str(fixture.get("id")) if fixture.get("id") is not None else None,
            sport=Sport.SOCCER,
            league_id=league_id,
            league_name=safe_str(league.get("name")) or (LEAGUES[league_id].name if league_id in LEAGUES else None),
            home=safe_str((teams.get("home") or {}).get("name")),
            away=safe_str((teams.get("away") or {}).get("name")),
            score_home=safe_int(goals.get("home")),
            score_away=safe_int(goals.get("away")),
            status=_STATUS_MAP.get(str(status.get("short") or ""), MatchStatus.UNKNOWN),
            minute=safe_int(status.get("elapsed")),
            start_time=parse_datetime(fixture.get("date")),
            venue=safe_str((fixture.get("venue") or {}).get("name")),
            provider_id=self.name,
        )

    def normalize_odds(self, raw: dict[str, Any]) -> NormalizedOdds:
        fixture = raw.get("fixture") or {}
        bookmaker = first(raw.get("bookmakers") or [], {})
        bet = first(
            (b for b in bookmaker.get("bets") or [] if b.get("name") in _MATCH_WINNER), {}
        )
        prices = {str(v.get("value")): safe_float(v.get("odd")) for v in bet.get("values") or []}
        return NormalizedOdds(
            match_id=str(fixture.get("id")) if fixture.get("id") is not None else None,
            bookmaker=safe_str(bookmaker.get("name")),
            market=safe_str(bet.get("name")),
            price_home=prices.get("Home"),
            price_draw=prices.get("Draw"),
            price_away=prices.get("Away"),
            updated_at=parse_datetime(raw.get("update")),
            provider_id=self.name,
        )

    def normalize_standing(self, raw: dict[str, Any]) -> NormalizedStanding:
        overall = raw.get("all") or {}
        return NormalizedStanding(
            team=safe_str((raw.get("team") or {}).get("name")),
            league_id=safe_str(raw.get("_league_id")),
            position=safe_int(raw.get("rank")),
            played=safe_int(overall.get("played")),
            won=safe_int(overall.get("win")),
            drawn=safe_int(overall.get("draw")),
            lost=safe_int(overall.get("lose")),
            goal_difference=safe_int(raw.get("goalsDiff")),
            points=safe_int(raw.get("points")),
            form=safe_str(raw.get("form")),
            provider_id=self.name,
        )
