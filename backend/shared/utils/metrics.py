"""
Lightweight metrics collection for matchfeed.
Wraps prometheus_client with async-safe patterns.
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
PROVIDER_REQUESTS = Counter(
    "mf_provider_requests_total",
    "Total provider HTTP requests",
    ["provider", "status"],
)
PROVIDER_ATTEMPTS = Counter(
    "mf_provider_attempts_total",
    "Adapter invocations made by the aggregator, by outcome",
    ["provider", "capability", "outcome"],
)
AGGREGATOR_FETCHES = Counter(
    "mf_aggregator_fetches_total",
    "Aggregator fetches by terminal outcome",
    ["capability", "outcome"],
)
CACHE_SWEPT = Counter(
    "mf_cache_swept_entries_total",
    "Expired cache entries removed by cleanup sweeps",
)
PREFETCH_RUNS = Counter(
    "mf_prefetch_runs_total",
    "Prefetch query executions by outcome",
    ["data_type", "outcome"],
)
PREFETCH_TICKS_SKIPPED = Counter(
    "mf_prefetch_ticks_skipped_total",
    "Timer fires ignored because a tick was still running",
)
NOTIFICATIONS_DROPPED = Counter(
    "mf_notifications_dropped_total",
    "Notifications dropped because the channel was full or publish failed",
    ["topic"],
)

# ── Histograms ──────────────────────────────────────────────────────────
PROVIDER_LATENCY = Histogram(
    "mf_provider_latency_seconds",
    "Adapter call latency in seconds",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Gauges ──────────────────────────────────────────────────────────────
CACHE_ENTRIES = Gauge(
    "mf_cache_entries",
    "Entries currently held by the raw data cache (including not-yet-swept expired ones)",
)
PREFETCH_BACKOFF_SECONDS = Gauge(
    "mf_prefetch_backoff_seconds",
    "Current backoff delay per watched query (0 when healthy)",
    ["query"],
)


@asynccontextmanager
async def atrack_latency(histogram: Histogram, **labels: str) -> AsyncIterator[None]:
    """Async context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        histogram.labels(**labels).observe(elapsed)


def start_metrics_server(port: int | None = None, settings: Settings | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = settings or get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
