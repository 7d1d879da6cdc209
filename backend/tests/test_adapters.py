"""
Tests for the provider connectors against canned HTTP payloads.
Every adapter is driven through httpx.MockTransport; nothing leaves the process.
"""
from __future__ import annotations

from typing import Any, Callable

import httpx
import pytest

from shared.errors import AdapterError, ProviderHTTPError, UnsupportedQueryError
from shared.models.enums import Capability, MatchStatus, Sport

from aggregator.normalizer import normalize_items
from aggregator.providers.api_football import APIFootballAdapter, current_season
from aggregator.providers.espn import ESPNAdapter
from aggregator.providers.football_data import FootballDataAdapter
from aggregator.providers.thesportsdb import TheSportsDBAdapter


def _transport(routes: dict[str, Any], seen: list[httpx.Request] | None = None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        body = routes.get(request.url.path)
        if body is None:
            return httpx.Response(404, json={"message": "not found"})
        if isinstance(body, httpx.Response):
            return body
        return httpx.Response(200, json=body)

    return httpx.MockTransport(handler)


@pytest.fixture
def build(settings) -> Callable[..., Any]:
    def _build(cls, routes: dict[str, Any], seen: list[httpx.Request] | None = None):
        return cls(settings, transport=_transport(routes, seen))

    return _build


# ── API-Football ────────────────────────────────────────────────────────
API_FOOTBALL_FIXTURE = {
    "fixture": {
        "id": 1035000,
        "date": "2024-03-02T15:00:00+00:00",
        "venue": {"name": "Anfield"},
        "status": {"short": "2H", "elapsed": 67},
    },
    "league": {"id": 39, "name": "Premier League"},
    "teams": {"home": {"name": "Liverpool"}, "away": {"name": "Arsenal"}},
    "goals": {"home": 2, "away": 1},
}


@pytest.mark.asyncio
async def test_api_football_live(build) -> None:
    seen: list[httpx.Request] = []
    adapter = build(APIFootballAdapter, {"/fixtures": {"errors": [], "response": [API_FOOTBALL_FIXTURE]}}, seen)
    try:
        raw = await adapter.fetch_live(Sport.SOCCER)
        items = normalize_items(adapter, Capability.LIVE, raw)
    finally:
        await adapter.close()

    assert seen[0].url.params["live"] == "all"
    assert "x-apisports-key" in seen[0].headers
    assert len(items) == 1
    match = items[0]
    assert match["id"] == "1035000"
    assert match["league_id"] == "39"
    assert match["home"] == "Liverpool"
    assert match["score_home"] == 2
    assert match["status"] == MatchStatus.LIVE.value
    assert match["minute"] == 67
    assert match["venue"] == "Anfield"
    assert match["provider_id"] == "api_football"


@pytest.mark.asyncio
async def test_api_football_body_errors_raise(build) -> None:
    adapter = build(
        APIFootballAdapter,
        {"/fixtures": {"errors": {"requests": "limit reached"}, "response": []}},
    )
    try:
        with pytest.raises(AdapterError):
            await adapter.fetch_live(Sport.SOCCER)
    finally:
        await adapter.close()


@pytest.mark.asyncio
async def test_api_football_odds(build) -> None:
    odds = {
        "fixture": {"id": 1035000},
        "update": "2024-03-02T12:00:00+00:00",
        "bookmakers": [
            {
                "name": "Bet365",
                "bets": [
                    {"name": "Goals Over/Under", "values": [{"value": "Over 2.5", "odd": "1.80"}]},
                    {
                        "name": "Match Winner",
                        "values": [
                            {"value": "Home", "odd": "2.10"},
                            {"value": "Draw", "odd": "3.40"},
                            {"value": "Away", "odd": "3.25"},
                        ],
                    },
                ],
            }
        ],
    }
    adapter = build(APIFootballAdapter, {"/odds": {"errors": [], "response": [odds]}})
    try:
        items = normalize_items(adapter, Capability.ODDS, await adapter.fetch_odds("1035000"))
    finally:
        await adapter.close()

    assert items[0]["match_id"] == "1035000"
    assert items[0]["bookmaker"] == "Bet365"
    assert items[0]["market"] == "Match Winner"
    assert (items[0]["price_home"], items[0]["price_draw"], items[0]["price_away"]) == (2.1, 3.4, 3.25)


@pytest.mark.asyncio
async def test_api_football_standings_flatten_groups(build) -> None:
    seen: list[httpx.Request] = []
    row = {
        "rank": 1,
        "team": {"name": "Liverpool"},
        "points": 60,
        "goalsDiff": 35,
        "form": "WWDWW",
        "all": {"played": 26, "win": 18, "draw": 6, "lose": 2},
    }
    body = {"errors": [], "response": [{"league": {"id": 39, "standings": [[row], [{**row, "rank": 2}]]}}]}
    adapter = build(APIFootballAdapter, {"/standings": body}, seen)
    try:
        items = normalize_items(adapter, Capability.STANDINGS, await adapter.fetch_standings("39"))
    finally:
        await adapter.close()

    assert seen[0].url.params["season"] == str(current_season())
    assert [i["position"] for i in items] == [1, 2]
    assert items[0]["team"] == "Liverpool"
    assert items[0]["league_id"] == "39"
    assert items[0]["played"] == 26
    assert items[0]["lost"] == 2


# ── football-data.org ───────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_football_data_fixtures(build) -> None:
    match = {
        "id": 442000,
        "utcDate": "2024-03-09T17:30:00Z",
        "status": "TIMED",
        "competition": {"id": 2021, "code": "PL", "name": "Premier League"},
        "homeTeam": {"name": "Manchester City FC"},
        "awayTeam": {"name": "Chelsea FC"},
        "score": {"fullTime": {"home": None, "away": None}},
    }
    adapter = build(FootballDataAdapter, {"/v4/competitions/PL/matches": {"matches": [match]}})
    try:
        items = normalize_items(adapter, Capability.FIXTURES, await adapter.fetch_fixtures("39"))
    finally:
        await adapter.close()

    assert items[0]["id"] == "442000"
    assert items[0]["league_id"] == "39"
    assert items[0]["status"] == MatchStatus.SCHEDULED.value
    assert items[0]["score_home"] is None


@pytest.mark.asyncio
async def test_football_data_unknown_league_is_unsupported(build) -> None:
    adapter = build(FootballDataAdapter, {})
    try:
        with pytest.raises(UnsupportedQueryError):
            await adapter.fetch_fixtures("999999")
        with pytest.raises(UnsupportedQueryError):
            await adapter.fetch_odds("1")
    finally:
        await adapter.close()


@pytest.mark.asyncio
async def test_football_data_standings_total_only(build) -> None:
    body = {
        "standings": [
            {"type": "TOTAL", "table": [{"position": 1, "team": {"name": "Arsenal FC"}, "points": 58}]},
            {"type": "HOME", "table": [{"position": 1, "team": {"name": "Liverpool FC"}, "points": 30}]},
        ]
    }
    adapter = build(FootballDataAdapter, {"/v4/competitions/PL/standings": body})
    try:
        items = normalize_items(adapter, Capability.STANDINGS, await adapter.fetch_standings("39"))
    finally:
        await adapter.close()

    assert [i["team"] for i in items] == ["Arsenal FC"]
    assert items[0]["points"] == 58


@pytest.mark.asyncio
async def test_rate_limit_surfaces_retry_after(build) -> None:
    limited = httpx.Response(429, headers={"Retry-After": "120"})
    adapter = build(FootballDataAdapter, {"/v4/matches": limited})
    try:
        with pytest.raises(ProviderHTTPError) as info:
            await adapter.fetch_live(Sport.SOCCER)
    finally:
        await adapter.close()

    assert info.value.status_code == 429
    assert info.value.retry_after == 120.0


@pytest.mark.asyncio
async def test_auth_failure_is_http_error(build) -> None:
    adapter = build(FootballDataAdapter, {"/v4/matches": httpx.Response(403, json={})})
    try:
        with pytest.raises(ProviderHTTPError) as info:
            await adapter.fetch_live(Sport.SOCCER)
    finally:
        await adapter.close()

    assert info.value.status_code == 403


# ── ESPN ────────────────────────────────────────────────────────────────
def _espn_event(event_id: str, state: str, clock: str = "") -> dict[str, Any]:
    return {
        "id": event_id,
        "date": "2024-03-02T15:00Z",
        "competitions": [
            {
                "status": {"displayClock": clock, "type": {"state": state, "name": "STATUS_IN_PROGRESS"}},
                "venue": {"fullName": "Emirates Stadium"},
                "competitors": [
                    {"homeAway": "home", "score": "1", "team": {"displayName": "Arsenal"}},
                    {"homeAway": "away", "score": "0", "team": {"displayName": "Spurs"}},
                ],
            }
        ],
    }


@pytest.mark.asyncio
async def test_espn_live_keeps_in_progress_events(build) -> None:
    body = {"events": [_espn_event("1", "in", "45'+2'"), _espn_event("2", "pre"), _espn_event("3", "post")]}
    adapter = build(ESPNAdapter, {"/apis/site/v2/sports/soccer/all/scoreboard": body})
    try:
        items = normalize_items(adapter, Capability.LIVE, await adapter.fetch_live(Sport.SOCCER))
    finally:
        await adapter.close()

    assert [i["id"] for i in items] == ["1"]
    assert items[0]["minute"] == 47
    assert items[0]["status"] == MatchStatus.LIVE.value
    assert items[0]["sport"] == Sport.SOCCER.value
    assert items[0]["league_id"] is None
    assert items[0]["home"] == "Arsenal"
    assert items[0]["score_home"] == 1


@pytest.mark.asyncio
async def test_espn_fixtures_use_league_slug(build) -> None:
    body = {"events": [_espn_event("7", "pre"), _espn_event("8", "in")]}
    adapter = build(ESPNAdapter, {"/apis/site/v2/sports/soccer/eng.1/scoreboard": body})
    try:
        items = normalize_items(adapter, Capability.FIXTURES, await adapter.fetch_fixtures("39"))
    finally:
        await adapter.close()

    assert [i["id"] for i in items] == ["7"]
    assert items[0]["league_id"] == "39"
    assert items[0]["league_name"] == "Premier League"
    assert items[0]["status"] == MatchStatus.SCHEDULED.value


@pytest.mark.asyncio
async def test_espn_standings(build) -> None:
    entry = {
        "team": {"displayName": "Liverpool"},
        "stats": [
            {"name": "rank", "value": 1},
            {"name": "gamesPlayed", "value": 26},
            {"name": "points", "value": 60},
        ],
    }
    body = {"children": [{"standings": {"entries": [entry]}}]}
    adapter = build(ESPNAdapter, {"/apis/v2/sports/soccer/eng.1/standings": body})
    try:
        items = normalize_items(adapter, Capability.STANDINGS, await adapter.fetch_standings("39"))
    finally:
        await adapter.close()

    assert items[0]["team"] == "Liverpool"
    assert items[0]["position"] == 1
    assert items[0]["played"] == 26
    assert items[0]["points"] == 60
    assert items[0]["league_id"] == "39"


# ── TheSportsDB ─────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_thesportsdb_live_and_standings(build) -> None:
    seen: list[httpx.Request] = []
    live = {
        "events": [
            {
                "idEvent": "2001",
                "idLeague": "4328",
                "strLeague": "English Premier League",
                "strHomeTeam": "Everton",
                "strAwayTeam": "Fulham",
                "intHomeScore": "0",
                "intAwayScore": "0",
                "strStatus": "HT",
                "strProgress": "45",
            }
        ]
    }
    table = {"table": [{"strTeam": "Liverpool", "intRank": "1", "intPoints": "60", "strForm": "WWDWW"}]}
    adapter = build(
        TheSportsDBAdapter,
        {
            "/api/v1/json/3/livescore.php": live,
            "/api/v1/json/3/lookuptable.php": table,
        },
        seen,
    )
    try:
        matches = normalize_items(adapter, Capability.LIVE, await adapter.fetch_live(Sport.SOCCER))
        standings = normalize_items(adapter, Capability.STANDINGS, await adapter.fetch_standings("39"))
    finally:
        await adapter.close()

    assert seen[0].url.params["s"] == "Soccer"
    assert seen[1].url.params["l"] == "4328"
    assert matches[0]["id"] == "2001"
    assert matches[0]["league_id"] == "39"
    assert matches[0]["status"] == MatchStatus.HALFTIME.value
    assert matches[0]["minute"] == 45
    assert standings[0]["team"] == "Liverpool"
    assert standings[0]["position"] == 1
    assert standings[0]["form"] == "WWDWW"


@pytest.mark.asyncio
async def test_thesportsdb_unsupported_sport(build) -> None:
    adapter = build(TheSportsDBAdapter, {})
    try:
        with pytest.raises(UnsupportedQueryError):
            await adapter.fetch_live(Sport.BASEBALL)
    finally:
        await adapter.close()
