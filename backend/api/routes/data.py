"""
Cache diagnostics and read endpoints.

GET  /v1/data/summary                 Entry counts per capability and source.
GET  /v1/data/live                    Cached live matches (optionally per source).
GET  /v1/data/fixtures                Cached fixtures for a league.
GET  /v1/data/match/{match_id}        One cached match from live or fixture payloads.
GET  /v1/data/standings/{league_id}   Cached standings table.
GET  /v1/data/cache-info              Every live cache entry with size and TTL.
POST /v1/data/cache-cleanup           Sweep expired entries now.

These never call providers; they only read what the aggregator has cached.
"""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from shared.utils.logging import get_logger

from aggregator.cache import RawDataCache
from api.dependencies import get_cache

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/data", tags=["data"])


@router.get("/summary")
async def data_summary(cache: RawDataCache = Depends(get_cache)) -> dict[str, Any]:
    return cache.get_data_summary()


@router.get("/live")
async def cached_live(
    sport: str = Query("soccer"),
    source: Optional[str] = Query(None, description="Provider id; omit for the merged view"),
    cache: RawDataCache = Depends(get_cache),
) -> dict[str, Any]:
    items = cache.get_live_matches(source=source, sport=sport.lower())
    return {"items": items, "count": len(items), "source": source}


@router.get("/fixtures")
async def cached_fixtures(
    league: str = Query("39"),
    source: Optional[str] = Query(None),
    cache: RawDataCache = Depends(get_cache),
) -> dict[str, Any]:
    items = cache.get_fixtures(source=source, league=league)
    return {"items": items, "count": len(items), "source": source}


@router.get("/match/{match_id}")
async def cached_match(
    match_id: str,
    source: Optional[str] = Query(None),
    cache: RawDataCache = Depends(get_cache),
) -> dict[str, Any]:
    item = cache.get_match_detail(match_id, source=source)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Match {match_id} not in cache")
    return item


@router.get("/standings/{league_id}")
async def cached_standings(
    league_id: str,
    source: Optional[str] = Query(None),
    cache: RawDataCache = Depends(get_cache),
) -> dict[str, Any]:
    items = cache.get_standings(league_id, source=source)
    return {"items": items, "count": len(items), "source": source}


@router.get("/cache-info")
async def cache_info(cache: RawDataCache = Depends(get_cache)) -> dict[str, Any]:
    return cache.export_all()


@router.post("/cache-cleanup")
async def cache_cleanup(cache: RawDataCache = Depends(get_cache)) -> dict[str, int]:
    removed = cache.cleanup()
    logger.info("cache_cleanup_requested", removed=removed)
    return {"removed": removed, "remaining": len(cache)}
