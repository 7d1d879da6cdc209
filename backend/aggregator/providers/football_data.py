"""
football-data.org (v4) provider connector.
Soccer only; competitions are addressed by their short codes (PL, PD, ...).
"""
from __future__ import annotations

from typing import Any

import httpx

from shared.config import Settings, get_settings
from shared.errors import UnsupportedQueryError
from shared.models.domain import NormalizedMatch, NormalizedStanding
from shared.models.enums import Capability, MatchStatus, ProviderName, Sport
from shared.models.leagues import canonical_league_id, provider_league_code
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger

from aggregator.providers.base import BaseAdapter, parse_datetime, safe_int, safe_str

logger = get_logger(__name__)

_STATUS_MAP: dict[str, MatchStatus] = {
    "SCHEDULED": MatchStatus.SCHEDULED,
    "TIMED": MatchStatus.SCHEDULED,
    "IN_PLAY": MatchStatus.LIVE,
    "LIVE": MatchStatus.LIVE,
    "PAUSED": MatchStatus.HALFTIME,
    "FINISHED": MatchStatus.FINISHED,
    "AWARDED": MatchStatus.FINISHED,
    "POSTPONED": MatchStatus.POSTPONED,
    "CANCELLED": MatchStatus.CANCELLED,
    "SUSPENDED": MatchStatus.SUSPENDED,
}


class FootballDataAdapter(BaseAdapter):
    """football-data.org data provider connector."""

    BASE_URL = "https://api.football-data.org/v4"
    capabilities = frozenset({Capability.LIVE, Capability.FIXTURES, Capability.STANDINGS})
    supported_sports = frozenset({Sport.SOCCER})

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        http_client = ProviderHTTPClient(
            provider_name=ProviderName.FOOTBALL_DATA.value,
            base_url=self.BASE_URL,
            headers={"X-Auth-Token": settings.football_data_api_key},
            timeout_s=settings.provider_timeout_s,
            max_retries=settings.provider_max_retries,
            transport=transport,
        )
        super().__init__(ProviderName.FOOTBALL_DATA.value, http_client, settings.provider_timeout_s)

    def _competition(self, league_id: str) -> str:
        code = provider_league_code(league_id, ProviderName.FOOTBALL_DATA)
        if not code:
            raise UnsupportedQueryError(f"football_data has no competition for league {league_id}")
        return code

    async def fetch_live(self, sport: Sport) -> list[Any]:
        if sport != Sport.SOCCER:
            raise UnsupportedQueryError(f"football_data does not serve {sport.value}")
        data = await self._http.get_json("/matches", params={"status": "LIVE"})
        return list((data or {}).get("matches") or [])

    async def fetch_fixtures(self, league_id: str) -> list[Any]:
        code = self._competition(league_id)
        data = await self._http.get_json(
            f"/competitions/{code}/matches", params={"status": "SCHEDULED"}
        )
        return list((data or {}).get("matches") or [])

    async def fetch_standings(self, league_id: str) -> list[Any]:
        code = self._competition(league_id)
        data = await self._http.get_json(f"/competitions/{code}/standings")
        table: list[dict[str, Any]] = []
        for standing in (data or {}).get("standings") or []:
            if standing.get("type", "TOTAL") != "TOTAL":
                logger.debug("football_data_table_skipped", competition=code, type=standing.get("type"))
                continue
            for row in standing.get("table") or []:
                table.append({**row, "_league_id": league_id})
        return table

    # ── Normalization ───────────────────────────────────────────────────
    def normalize_match(self, raw: dict[str, Any]) -> NormalizedMatch:
        competition = raw.get("competition") or {}
        full_time = (raw.get("score") or {}).get("fullTime") or {}
        return NormalizedMatch(
            id=str(raw.get("id")) if raw.get("id") is not None else None,
            sport=Sport.SOCCER,
            league_id=canonical_league_id(ProviderName.FOOTBALL_DATA, competition.get("code"))
            or safe_str(competition.get("id")),
            league_name=safe_str(competition.get("name")),
            home=safe_str((raw.get("homeTeam") or {}).get("name")),
            away=safe_str((raw.get("awayTeam") or {}).get("name")),
            score_home=safe_int(full_time.get("home")),
            score_away=safe_int(full_time.get("away")),
            status=_STATUS_MAP.get(str(raw.get("status") or ""), MatchStatus.UNKNOWN),
            minute=safe_int(raw.get("minute")),
            start_time=parse_datetime(raw.get("utcDate")),
            venue=safe_str(raw.get("venue")),
            provider_id=self.name,
        )

    def normalize_standing(self, raw: dict[str, Any]) -> NormalizedStanding:
        return NormalizedStanding(
            team=safe_str((raw.get("team") or {}).get("name")),
            league_id=safe_str(raw.get("_league_id")),
            position=safe_int(raw.get("position")),
            played=safe_int(raw.get("playedGames")),
            won=safe_int(raw.get("won")),
            drawn=safe_int(raw.get("draw")),
            lost=safe_int(raw.get("lost")),
            goal_difference=safe_int(raw.get("goalDifference")),
            points=safe_int(raw.get("points")),
            form=safe_str(raw.get("form")),
            provider_id=self.name,
        )
