"""
Canonical league catalogue.

Canonical league ids follow the API-Football numbering; every other provider
keeps its own code for the same competition.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from shared.models.enums import ProviderName


@dataclass(frozen=True)
class LeagueInfo:
    id: str
    name: str
    country: str
    codes: dict[str, str]

    def code_for(self, provider: ProviderName) -> Optional[str]:
        return self.codes.get(provider.value)


LEAGUES: dict[str, LeagueInfo] = {
    "39": LeagueInfo(
        id="39", name="Premier League", country="England",
        codes={"api_football": "39", "football_data": "PL", "espn": "eng.1", "thesportsdb": "4328"},
    ),
    "140": LeagueInfo(
        id="140", name="La Liga", country="Spain",
        codes={"api_football": "140", "football_data": "PD", "espn": "esp.1", "thesportsdb": "4335"},
    ),
    "135": LeagueInfo(
        id="135", name="Serie A", country="Italy",
        codes={"api_football": "135", "football_data": "SA", "espn": "ita.1", "thesportsdb": "4332"},
    ),
    "61": LeagueInfo(
        id="61", name="Ligue 1", country="France",
        codes={"api_football": "61", "football_data": "FL1", "espn": "fra.1", "thesportsdb": "4334"},
    ),
    "78": LeagueInfo(
        id="78", name="Bundesliga", country="Germany",
        codes={"api_football": "78", "football_data": "BL1", "espn": "ger.1", "thesportsdb": "4331"},
    ),
    "2": LeagueInfo(
        id="2", name="Champions League", country="Europe",
        codes={"api_football": "2", "football_data": "CL", "espn": "uefa.champions", "thesportsdb": "4480"},
    ),
}


def provider_league_code(league_id: str, provider: ProviderName) -> Optional[str]:
    """Resolve a canonical league id to the provider's own code, if known."""
    league = LEAGUES.get(str(league_id))
    return league.code_for(provider) if league else None


def canonical_league_id(provider: ProviderName, code: str | int | None) -> Optional[str]:
    """Reverse lookup: provider code back to the canonical league id."""
    if code is None:
        return None
    code = str(code)
    for league in LEAGUES.values():
        if league.codes.get(provider.value) == code:
            return league.id
    return None
