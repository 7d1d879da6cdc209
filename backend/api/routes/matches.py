"""
Consumer read endpoints.

GET /v1/live/{sport}
GET /v1/fixtures/{league_id}
GET /v1/odds/{match_id}
GET /v1/standings/{league_id}

Each serves a fresh cache hit or runs the aggregator fallback chain. When no
provider has data the answer is still a 200 with ``count: 0``.
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from shared.models.domain import FetchResult

from aggregator.service import Aggregator
from api.dependencies import get_aggregator

router = APIRouter(prefix="/v1", tags=["matches"])


def _envelope(result: FetchResult) -> dict[str, Any]:
    return {
        "items": result.items,
        "count": len(result.items),
        "provider": result.provider_id,
        "cached": result.from_cache,
        "message": result.message or None,
    }


@router.get("/live/{sport}")
async def live_matches(sport: str, aggregator: Aggregator = Depends(get_aggregator)) -> dict[str, Any]:
    return _envelope(await aggregator.get_live_matches(sport))


@router.get("/fixtures/{league_id}")
async def fixtures(league_id: str, aggregator: Aggregator = Depends(get_aggregator)) -> dict[str, Any]:
    return _envelope(await aggregator.get_fixtures(league_id))


@router.get("/odds/{match_id}")
async def odds(match_id: str, aggregator: Aggregator = Depends(get_aggregator)) -> dict[str, Any]:
    return _envelope(await aggregator.get_odds(match_id))


@router.get("/standings/{league_id}")
async def standings(league_id: str, aggregator: Aggregator = Depends(get_aggregator)) -> dict[str, Any]:
    return _envelope(await aggregator.get_standings(league_id))
