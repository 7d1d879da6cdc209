"""
Provider registry: the typed (provider, capability) priority table.

Entries are mutable at runtime from the admin surface and are consulted fresh
on every aggregator call, so a toggle takes effect on the very next fetch.
"""
from __future__ import annotations

from typing import Optional

from shared.config import Settings, get_settings
from shared.errors import UnknownProviderError
from shared.models.domain import ProviderPriorityEntry
from shared.models.enums import Capability
from shared.utils.logging import get_logger

from aggregator.providers.base import BaseAdapter

logger = get_logger(__name__)


class ProviderRegistry:
    """
    Holds adapter instances and one priority entry per supported capability.

    Resolution order:
    1. Entries for the capability whose ``enabled`` flag is set
    2. Ascending ``priority`` (lower goes first)
    3. Registration order breaks ties
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._adapters: dict[str, BaseAdapter] = {}
        self._entries: dict[tuple[str, Capability], ProviderPriorityEntry] = {}
        self._seq = 0

    @property
    def providers(self) -> dict[str, BaseAdapter]:
        return dict(self._adapters)

    def get(self, provider_id: str) -> Optional[BaseAdapter]:
        return self._adapters.get(provider_id)

    def _default_priority(self, provider_id: str) -> int:
        order = self._settings.provider_order
        if provider_id in order:
            return order.index(provider_id)
        return len(order) + self._seq

    def register(
        self,
        adapter: BaseAdapter,
        priorities: dict[Capability, int] | None = None,
    ) -> None:
        """Register an adapter for every capability it declares."""
        if adapter.name in self._adapters:
            raise ValueError(f"provider {adapter.name!r} is already registered")

        self._adapters[adapter.name] = adapter
        enabled = adapter.name not in self._settings.disabled_providers
        default = self._default_priority(adapter.name)
        for capability in sorted(adapter.capabilities, key=lambda c: c.value):
            priority = (priorities or {}).get(capability, default)
            self._entries[(adapter.name, capability)] = ProviderPriorityEntry(
                provider_id=adapter.name,
                capability=capability,
                priority=priority,
                enabled=enabled,
                registration_seq=self._seq,
            )
        self._seq += 1
        logger.info(
            "provider_registered",
            provider=adapter.name,
            capabilities=sorted(c.value for c in adapter.capabilities),
            enabled=enabled,
        )

    def resolve(self, capability: Capability) -> list[BaseAdapter]:
        """Enabled adapters for ``capability`` in fallback order."""
        capability = Capability(capability)
        candidates = [
            e for e in self._entries.values()
            if e.capability == capability and e.enabled
        ]
        candidates.sort(key=lambda e: (e.priority, e.registration_seq))
        return [self._adapters[e.provider_id] for e in candidates]

    def entry(self, provider_id: str, capability: Capability) -> ProviderPriorityEntry:
        try:
            return self._entries[(provider_id, Capability(capability))]
        except (KeyError, ValueError):
            raise UnknownProviderError(provider_id, str(getattr(capability, "value", capability))) from None

    def set_enabled(self, provider_id: str, capability: Capability, enabled: bool) -> ProviderPriorityEntry:
        return self.update(provider_id, capability, enabled=enabled)

    def set_priority(self, provider_id: str, capability: Capability, priority: int) -> ProviderPriorityEntry:
        return self.update(provider_id, capability, priority=priority)

    def update(
        self,
        provider_id: str,
        capability: Capability,
        enabled: Optional[bool] = None,
        priority: Optional[int] = None,
    ) -> ProviderPriorityEntry:
        """Apply an admin toggle. Raises ``UnknownProviderError`` for an unknown pair."""
        current = self.entry(provider_id, capability)
        changes: dict[str, object] = {}
        if enabled is not None:
            changes["enabled"] = enabled
        if priority is not None:
            changes["priority"] = priority
        if not changes:
            return current

        updated = current.model_copy(update=changes)
        self._entries[(provider_id, current.capability)] = updated
        logger.info(
            "provider_entry_updated",
            provider=provider_id,
            capability=current.capability.value,
            enabled=updated.enabled,
            priority=updated.priority,
        )
        return updated

    def entries(self, capability: Capability | None = None) -> list[ProviderPriorityEntry]:
        rows = [
            e for e in self._entries.values()
            if capability is None or e.capability == Capability(capability)
        ]
        rows.sort(key=lambda e: (e.capability.value, e.priority, e.registration_seq))
        return rows

    async def start_all(self) -> None:
        for adapter in self._adapters.values():
            await adapter.start()

    async def close_all(self) -> None:
        for adapter in self._adapters.values():
            try:
                await adapter.close()
            except Exception as exc:
                logger.warning("provider_close_failed", provider=adapter.name, error=str(exc))
