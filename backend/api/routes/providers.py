"""
Provider admin endpoints.

GET   /v1/providers                            Priority entries with fresh health, breaker and rate limit state.
GET   /v1/providers/health                     Every health record, flagged when stale.
PATCH /v1/providers/{provider}/{capability}    Enable/disable or re-prioritize one entry.
"""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from shared.errors import InvalidQueryError
from shared.models.domain import ProviderPriorityEntry
from shared.models.enums import Capability

from api.dependencies import get_context
from runtime.context import AppContext

router = APIRouter(prefix="/v1/providers", tags=["providers"])


class ProviderToggle(BaseModel):
    enabled: Optional[bool] = None
    priority: Optional[int] = None


def _capability(value: str) -> Capability:
    try:
        return Capability(value)
    except ValueError:
        raise InvalidQueryError(f"unknown capability {value!r}") from None


@router.get("")
async def list_providers(context: AppContext = Depends(get_context)) -> dict[str, Any]:
    health = context.health
    breakers = {b["name"]: b for b in context.aggregator.breaker_stats()}
    limits = context.aggregator.rate_limiter.stats()
    rows: list[dict[str, Any]] = []
    for entry in context.registry.entries():
        record = health.get(entry.provider_id, entry.capability)
        rows.append({
            **entry.model_dump(mode="json"),
            "health": record.model_dump(mode="json") if record else None,
            "circuit": breakers.get(entry.provider_id),
            "rate_limit": limits.get(entry.provider_id),
        })
    return {"providers": rows, "count": len(rows)}


@router.get("/health")
async def provider_health(context: AppContext = Depends(get_context)) -> dict[str, Any]:
    records = context.health.snapshot(include_stale=True)
    return {
        "records": records,
        "stale_after_s": context.health.stale_after_s,
        "capabilities": {
            cap.value: context.health.is_capability_healthy(cap) for cap in Capability
        },
    }


@router.patch("/{provider}/{capability}")
async def update_provider(
    provider: str,
    capability: str,
    body: ProviderToggle,
    context: AppContext = Depends(get_context),
) -> ProviderPriorityEntry:
    return context.registry.update(
        provider,
        _capability(capability),
        enabled=body.enabled,
        priority=body.priority,
    )
