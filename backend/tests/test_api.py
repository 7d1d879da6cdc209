"""API route tests against an isolated context with in-memory adapters (no network, no Redis)."""
from __future__ import annotations

from typing import Any

import pytest
import structlog
from fastapi.testclient import TestClient

from shared.errors import AdapterError
from shared.models.domain import WatchedQuery
from shared.models.enums import Capability

from api.app import create_app
from runtime.context import build_context

MATCH = {"id": "m1", "home": "Arsenal", "away": "Spurs", "status": "live", "score_home": 1, "score_away": 0}
FIXTURE = {"id": "f1", "home": "Chelsea", "away": "Everton", "status": "scheduled", "league_id": "39"}
STANDING = {"team": "Liverpool", "position": 1, "points": 60}
ODDS = {"match_id": "m1", "bookmaker": "Bet365", "price_home": 2.1}


def _payload(capability: Capability, arg: str) -> list[dict[str, Any]]:
    return {
        Capability.LIVE: [MATCH],
        Capability.FIXTURES: [FIXTURE],
        Capability.STANDINGS: [STANDING],
        Capability.ODDS: [ODDS],
    }[capability]


@pytest.fixture
def primary(fake_adapter):
    return fake_adapter("primary", error=AdapterError("primary down"), capabilities=list(Capability))


@pytest.fixture
def backup(fake_adapter):
    return fake_adapter("backup", result=_payload, capabilities=list(Capability))


@pytest.fixture
def context(make_settings, primary, backup):
    settings = make_settings(
        provider_order=["primary", "backup"],
        prefetch_enabled=False,
        watched_queries=[WatchedQuery(data_type=Capability.LIVE, params={"sport": "soccer"})],
    )
    return build_context(settings, adapters=[primary, backup])


@pytest.fixture
def client(context) -> TestClient:
    app = create_app(context, use_lifespan=False)
    with TestClient(app) as c:
        yield c


# ── System ──────────────────────────────────────────────────────────────
def test_health_returns_ok(client: TestClient) -> None:
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "service": "api"}
    assert r.headers.get("content-type", "").startswith("application/json")


def test_ready_lists_providers(client: TestClient) -> None:
    data = client.get("/ready").json()
    assert data["status"] == "ok"
    assert data["providers"] == ["backup", "primary"]
    assert data["redis"] is False


def test_request_id_is_echoed(client: TestClient) -> None:
    r = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert r.headers["X-Request-ID"] == "abc123"
    assert client.get("/health").headers.get("X-Request-ID")


def test_request_id_reaches_provider_call_logs(make_settings, fake_adapter) -> None:
    seen: dict[str, Any] = {}

    def _capture(capability: Capability, arg: str) -> list[dict[str, Any]]:
        seen.update(structlog.contextvars.get_contextvars())
        return [MATCH]

    adapter = fake_adapter("only", result=_capture)
    context = build_context(make_settings(prefetch_enabled=False), adapters=[adapter])
    with TestClient(create_app(context, use_lifespan=False)) as c:
        r = c.get("/v1/live/soccer", headers={"X-Request-ID": "req-42"})

    assert r.status_code == 200
    assert seen["request_id"] == "req-42"


# ── Consumer reads ──────────────────────────────────────────────────────
def test_live_falls_back_to_backup(client: TestClient, primary, backup) -> None:
    r = client.get("/v1/live/soccer")
    assert r.status_code == 200
    data = r.json()
    assert data["provider"] == "backup"
    assert data["count"] == 1
    assert data["cached"] is False
    assert data["items"][0]["id"] == "m1"
    assert data["items"][0]["provider_id"] == "backup"
    assert len(primary.calls) == 1
    assert len(backup.calls) == 1


def test_second_read_served_from_cache(client: TestClient, backup) -> None:
    client.get("/v1/live/soccer")
    data = client.get("/v1/live/soccer").json()
    assert data["cached"] is True
    assert data["provider"] == "backup"
    assert len(backup.calls) == 1


def test_other_capabilities(client: TestClient) -> None:
    assert client.get("/v1/fixtures/39").json()["items"][0]["id"] == "f1"
    assert client.get("/v1/standings/39").json()["items"][0]["team"] == "Liverpool"
    assert client.get("/v1/odds/m1").json()["items"][0]["match_id"] == "m1"


def test_unknown_sport_is_422(client: TestClient) -> None:
    r = client.get("/v1/live/curling")
    assert r.status_code == 422
    body = r.json()
    assert body["error"] == "invalid_query"
    assert "request_id" in body


def test_no_data_is_empty_200(make_settings, fake_adapter) -> None:
    settings = make_settings(prefetch_enabled=False)
    context = build_context(settings, adapters=[fake_adapter("quiet", result=[])])
    with TestClient(create_app(context, use_lifespan=False)) as client:
        r = client.get("/v1/live/soccer")
    assert r.status_code == 200
    data = r.json()
    assert data["count"] == 0
    assert data["items"] == []
    assert data["provider"] is None
    assert data["message"] == "no provider returned data"


# ── Cache diagnostics ───────────────────────────────────────────────────
def test_data_endpoints_read_cache_only(client: TestClient, backup) -> None:
    assert client.get("/v1/data/live").json()["count"] == 0

    client.get("/v1/live/soccer")
    client.get("/v1/fixtures/39")
    calls = len(backup.calls)

    live = client.get("/v1/data/live").json()
    assert live["count"] == 1
    assert client.get("/v1/data/live", params={"source": "backup"}).json()["count"] == 1
    assert client.get("/v1/data/live", params={"source": "primary"}).json()["count"] == 0
    assert client.get("/v1/data/fixtures", params={"league": "39"}).json()["count"] == 1
    assert client.get("/v1/data/match/f1").json()["home"] == "Chelsea"
    assert client.get("/v1/data/match/nope").status_code == 404
    assert len(backup.calls) == calls


def test_cache_info_and_cleanup(client: TestClient) -> None:
    client.get("/v1/standings/39")
    info = client.get("/v1/data/cache-info").json()
    assert info

    r = client.post("/v1/data/cache-cleanup")
    assert r.status_code == 200
    assert r.json()["removed"] == 0
    assert r.json()["remaining"] >= 1


# ── Provider admin ──────────────────────────────────────────────────────
def test_list_providers_includes_health(client: TestClient) -> None:
    client.get("/v1/live/soccer")
    data = client.get("/v1/providers").json()
    rows = {(r["provider_id"], r["capability"]): r for r in data["providers"]}
    assert data["count"] == 8
    assert rows[("primary", "live")]["health"]["ok"] is False
    assert rows[("backup", "live")]["health"]["ok"] is True
    assert rows[("backup", "odds")]["health"] is None
    assert rows[("backup", "live")]["rate_limit"]["rpm"] == 0


def test_provider_health_records(client: TestClient) -> None:
    client.get("/v1/live/soccer")
    data = client.get("/v1/providers/health").json()
    assert len(data["records"]) == 2
    assert data["capabilities"]["live"] is True


def test_disable_provider_takes_effect(client: TestClient, backup) -> None:
    r = client.patch("/v1/providers/backup/live", json={"enabled": False})
    assert r.status_code == 200
    assert r.json()["enabled"] is False

    data = client.get("/v1/live/soccer").json()
    assert data["count"] == 0
    assert backup.calls == []


def test_reprioritize_provider(client: TestClient, primary) -> None:
    r = client.patch("/v1/providers/backup/live", json={"priority": -1})
    assert r.json()["priority"] == -1

    client.get("/v1/live/soccer")
    assert primary.calls == []


def test_patch_unknown_provider_is_404(client: TestClient) -> None:
    r = client.patch("/v1/providers/nobody/live", json={"enabled": False})
    assert r.status_code == 404
    assert r.json()["error"] == "unknown_provider"


def test_patch_unknown_capability_is_422(client: TestClient) -> None:
    r = client.patch("/v1/providers/backup/scores", json={"enabled": False})
    assert r.status_code == 422


# ── Prefetch ────────────────────────────────────────────────────────────
def test_prefetch_run_and_status(client: TestClient, backup) -> None:
    status = client.get("/v1/prefetch/status").json()
    assert status["tick_count"] == 0
    assert status["enabled"] is False

    r = client.post("/v1/prefetch/run")
    assert r.status_code == 200
    body = r.json()
    assert body["ran"] is True
    assert body["status"]["tick_count"] == 1
    assert body["status"]["queries"][0]["state"] == "healthy"
    assert body["status"]["queries"][0]["last_provider"] == "backup"

    # The prefetched entry now serves consumers straight from the cache.
    assert client.get("/v1/live/soccer").json()["cached"] is True
