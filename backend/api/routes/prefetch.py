"""
Prefetch scheduler endpoints.

GET  /v1/prefetch/status   Per-query backoff state and tick counters.
POST /v1/prefetch/run      Run one tick now (no-op if a tick is in flight).
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from api.dependencies import get_scheduler
from scheduler.service import PrefetchScheduler

router = APIRouter(prefix="/v1/prefetch", tags=["prefetch"])


@router.get("/status")
async def prefetch_status(scheduler: PrefetchScheduler = Depends(get_scheduler)) -> dict[str, Any]:
    return scheduler.status()


@router.post("/run")
async def prefetch_run(scheduler: PrefetchScheduler = Depends(get_scheduler)) -> dict[str, Any]:
    ran = await scheduler.tick()
    return {"ran": ran, "status": scheduler.status()}
