"""
TheSportsDB provider connector.
Works with the public test key "3"; league ids are TheSportsDB's numeric ids.
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

_SPORT_NAMES: dict[Sport, str] = {
    Sport.SOCCER: "Soccer",
    Sport.BASKETBALL: "Basketball",
    Sport.HOCKEY: "Ice_Hockey",
}

_STATUS_MAP: dict[str, MatchStatus] = {
    "NS": MatchStatus.SCHEDULED,
    "NOT STARTED": MatchStatus.SCHEDULED,
    "1H": MatchStatus.LIVE,
    "2H": MatchStatus.LIVE,
    "ET": MatchStatus.LIVE,
    "LIVE": MatchStatus.LIVE,
    "HT": MatchStatus.HALFTIME,
    "FT": MatchStatus.FINISHED,
    "AET": MatchStatus.FINISHED,
    "PEN": MatchStatus.FINISHED,
    "MATCH FINISHED": MatchStatus.FINISHED,
    "PST": MatchStatus.POSTPONED,
    "POSTPONED": MatchStatus.POSTPONED,
    "CANC": MatchStatus.CANCELLED,
    "ABD": MatchStatus.CANCELLED,
    "SUSP": MatchStatus.SUSPENDED,
}


class TheSportsDBAdapter(BaseAdapter):
    """TheSportsDB data provider connector."""

    BASE_URL = "https://www.thesportsdb.com/api/v1/json"
    capabilities = frozenset({Capability.LIVE, Capability.FIXTURES, Capability.STANDINGS})
    supported_sports = frozenset(_SPORT_NAMES)

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        http_client = ProviderHTTPClient(
            provider_name=ProviderName.THESPORTSDB.value,
            base_url=f"{self.BASE_URL}/{settings.thesportsdb_api_key}",
            timeout_s=settings.provider_timeout_s,
            max_retries=settings.provider_max_retries,
            transport=transport,
        )
        super().__init__(ProviderName.THESPORTSDB.value, http_client, settings.provider_timeout_s)

    def _league(self, league_id: str) -> str:
        code = provider_league_code(league_id, ProviderName.THESPORTSDB)
        if not code:
            raise UnsupportedQueryError(f"thesportsdb has no league id for {league_id}")
        return code

    async def fetch_live(self, sport: Sport) -> list[Any]:
        if sport not in _SPORT_NAMES:
            raise UnsupportedQueryError(f"thesportsdb does not serve {sport.value}")
        data = await self._http.get_json("/livescore.php", params={"s": _SPORT_NAMES[sport]})
        events = (data or {}).get("events") or (data or {}).get("livescore") or []
        logger.debug("thesportsdb_livescore_fetched", sport=sport.value, events=len(events))
        return [{**e, "_sport": sport.value} for e in events]

    async def fetch_fixtures(self, league_id: str) -> list[Any]:
        data = await self._http.get_json("/eventsnextleague.php", params={"id": self._league(league_id)})
        return [{**e, "_sport": Sport.SOCCER.value} for e in (data or {}).get("events") or []]

    async def fetch_standings(self, league_id: str) -> list[Any]:
        data = await self._http.get_json("/lookuptable.php", params={"l": self._league(league_id)})
        return [{**row, "_league_id": league_id} for row in (data or {}).get("table") or []]

    # ── Normalization ───────────────────────────────────────────────────
    def normalize_match(self, raw: dict[str, Any]) -> NormalizedMatch:
        status_text = str(raw.get("strStatus") or "").strip().upper()
        league_id = canonical_league_id(ProviderName.THESPORTSDB, raw.get("idLeague")) or safe_str(
            raw.get("idLeague")
        )
        start = raw.get("strTimestamp")
        if not start and raw.get("dateEvent"):
            start = f"{raw['dateEvent']}T{raw.get('strTime') or '00:00:00'}"
        return NormalizedMatch(
            id=str(raw.get("idEvent")) if raw.get("idEvent") is not None else None,
            sport=raw.get("_sport"),
            league_id=league_id,
            league_name=safe_str(raw.get("strLeague")),
            home=safe_str(raw.get("strHomeTeam")),
            away=safe_str(raw.get("strAwayTeam")),
            score_home=safe_int(raw.get("intHomeScore")),
            score_away=safe_int(raw.get("intAwayScore")),
            status=_STATUS_MAP.get(status_text, MatchStatus.UNKNOWN),
            minute=safe_int(raw.get("strProgress")),
            start_time=parse_datetime(start),
            venue=safe_str(raw.get("strVenue")),
            provider_id=self.name,
        )

    def normalize_standing(self, raw: dict[str, Any]) -> NormalizedStanding:
        return NormalizedStanding(
            team=safe_str(raw.get("strTeam")),
            league_id=safe_str(raw.get("_league_id")),
            position=safe_int(raw.get("intRank")),
            played=safe_int(raw.get("intPlayed")),
            won=safe_int(raw.get("intWin")),
            drawn=safe_int(raw.get("intDraw")),
            lost=safe_int(raw.get("intLoss")),
            goal_difference=safe_int(raw.get("intGoalDifference")),
            points=safe_int(raw.get("intPoints")),
            form=safe_str(raw.get("strForm")),
            provider_id=self.name,
        )
