"""
Dependency injection for the API service.
Route handlers receive the application context (or one of its components)
from ``app.state`` instead of module-level singletons.
"""
from __future__ import annotations

from fastapi import Depends, Request

from aggregator.cache import RawDataCache
from aggregator.service import Aggregator
from runtime.context import AppContext
from scheduler.service import PrefetchScheduler


def get_context(request: Request) -> AppContext:
    """FastAPI dependency: returns the AppContext attached by ``create_app``."""
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise RuntimeError("AppContext not attached to app.state")
    return context


def get_aggregator(context: AppContext = Depends(get_context)) -> Aggregator:
    return context.aggregator


def get_cache(context: AppContext = Depends(get_context)) -> RawDataCache:
    return context.cache


def get_scheduler(context: AppContext = Depends(get_context)) -> PrefetchScheduler:
    return context.scheduler
