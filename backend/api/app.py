"""
FastAPI application factory for the matchfeed API service.

Creates the app with:
- Consumer read routes (live, fixtures, odds, standings)
- Admin/diagnostics routes (cache, providers, prefetch)
- Middleware stack
- Health check endpoints
- Lifespan management (context startup/shutdown)
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI

from shared.config import ServiceRole, get_settings
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server

from api.middleware import setup_middleware
from api.routes.data import router as data_router
from api.routes.matches import router as matches_router
from api.routes.prefetch import router as prefetch_router
from api.routes.providers import router as providers_router
from runtime.context import AppContext, build_context

logger = get_logger(__name__)


@asynccontextmanager
async def _noop_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """No-op lifespan for testing without network or Redis."""
    yield


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Starts adapter clients, the notification dispatcher and the prefetch
    timer on startup; stops them in reverse on shutdown.
    """
    context: AppContext = app.state.context
    setup_logging(ServiceRole.API.value, settings=context.settings)
    start_metrics_server(settings=context.settings)

    await context.start()
    logger.info("api_service_started", **context.describe())
    try:
        yield
    finally:
        await context.stop()
        logger.info("api_service_stopped")


def create_app(context: Optional[AppContext] = None, *, use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application. Set use_lifespan=False for tests."""
    if context is None:
        context = build_context(get_settings())

    app = FastAPI(
        title="matchfeed API",
        description="Multi-provider sports data aggregation",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else _noop_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.context = context

    setup_middleware(app, context.settings)

    app.include_router(matches_router)
    app.include_router(data_router)
    app.include_router(providers_router)
    app.include_router(prefetch_router)

    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "api"}

    @app.get("/ready", tags=["system"])
    async def readiness() -> dict[str, Any]:
        """Readiness probe: the context is started and at least one provider is registered."""
        providers = sorted(context.registry.providers)
        ready = context.ready or not use_lifespan
        return {
            "status": "ok" if ready and providers else "degraded",
            "providers": providers,
            "redis": context.redis is not None,
            "prefetch": context.scheduler.status()["running"],
        }

    return app


# For running with uvicorn directly
app = create_app()
