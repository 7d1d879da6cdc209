"""Domain enumerations for the matchfeed platform."""
from __future__ import annotations

from enum import Enum


class Capability(str, Enum):
    """Query kinds every provider adapter may serve."""
    LIVE = "live"
    FIXTURES = "fixtures"
    ODDS = "odds"
    STANDINGS = "standings"


class Sport(str, Enum):
    SOCCER = "soccer"
    BASKETBALL = "basketball"
    HOCKEY = "hockey"
    BASEBALL = "baseball"
    FOOTBALL = "football"


class MatchStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    HALFTIME = "halftime"
    FINISHED = "finished"
    POSTPONED = "postponed"
    CANCELLED = "cancelled"
    SUSPENDED = "suspended"
    UNKNOWN = "unknown"


class ProviderName(str, Enum):
    API_FOOTBALL = "api_football"
    FOOTBALL_DATA = "football_data"
    ESPN = "espn"
    THESPORTSDB = "thesportsdb"
