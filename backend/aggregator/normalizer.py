"""
Normalization of raw adapter items into the fixed result schemas.
Items that do not meet the capability's minimal shape are dropped.
"""
from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from shared.errors import AdapterError
from shared.models.enums import Capability
from shared.utils.logging import get_logger

from aggregator.providers.base import BaseAdapter

logger = get_logger(__name__)

_HOOKS: dict[Capability, str] = {
    Capability.LIVE: "normalize_match",
    Capability.FIXTURES: "normalize_match",
    Capability.ODDS: "normalize_odds",
    Capability.STANDINGS: "normalize_standing",
}

# Field an item must carry (non-blank) to count as usable.
MINIMAL_SHAPE: dict[Capability, str] = {
    Capability.LIVE: "id",
    Capability.FIXTURES: "id",
    Capability.ODDS: "match_id",
    Capability.STANDINGS: "team",
}


def has_minimal_shape(capability: Capability, item: dict[str, Any]) -> bool:
    value = item.get(MINIMAL_SHAPE[capability])
    return value is not None and str(value).strip() != ""


def normalize_items(
    adapter: BaseAdapter, capability: Capability, raw_items: Any
) -> list[dict[str, Any]]:
    """
    Map raw provider items through the adapter's hook for ``capability``.

    Every field of the schema is present in the returned dicts, unsupplied ones
    as explicit ``None``.

    Raises:
        AdapterError: If the adapter returned something other than a list.
    """
    if raw_items is None:
        return []
    if not isinstance(raw_items, list):
        raise AdapterError(f"{adapter.name} returned {type(raw_items).__name__}, expected a list")

    hook = getattr(adapter, _HOOKS[capability])
    items: list[dict[str, Any]] = []
    dropped = 0
    for raw in raw_items:
        if not isinstance(raw, dict):
            dropped += 1
            continue
        try:
            model = hook(raw)
        except (ValidationError, ValueError, TypeError, KeyError, AttributeError) as exc:
            dropped += 1
            logger.debug("normalize_item_rejected", provider=adapter.name, error=str(exc)[:200])
            continue
        item = model.model_dump(mode="json")
        if not has_minimal_shape(capability, item):
            dropped += 1
            continue
        items.append(item)

    if dropped:
        logger.info(
            "normalize_items_dropped",
            provider=adapter.name,
            capability=capability.value,
            dropped=dropped,
            kept=len(items),
        )
    return items
