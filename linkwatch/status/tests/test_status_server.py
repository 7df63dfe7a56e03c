"""Tests for the status server endpoints."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from linkwatch.audit import SqliteAuditLog
from linkwatch.breakers import CircuitBreakerRegistry
from linkwatch.config import StatusConfig
from linkwatch.degradation import LoadAssessor, RequestStats, ServiceLevel, ServiceLevelController
from linkwatch.monitoring import AlertEngine
from linkwatch.status import create_status_app

CONFIG = StatusConfig(enabled=True, token="status-token")
AUTH = {"Authorization": "Bearer status-token"}


class FakeHost:
    def cpu_percent(self) -> float:
        return 5.0

    def memory_percent(self) -> float:
        return 20.0


@pytest.fixture
def breakers(clock):
    return CircuitBreakerRegistry(clock=clock)


@pytest.fixture
def coordinator():
    fo = MagicMock()
    fo.fallback_active = False
    fo.status.return_value = {"policy": "any_signal", "active": False}
    fo.store.read_latest = AsyncMock(return_value={"exported_at": "2026-10-12T07:00:00+00:00", "snapshot": {"x": 1}})
    return fo


@pytest.fixture
def audit_log(tmp_path):
    log = SqliteAuditLog(str(tmp_path / "audit.db"))
    yield log
    log.close()


@pytest.fixture
def components(clock, sink, breakers, audit_log):
    assessor = LoadAssessor(request_stats=RequestStats(), host=FakeHost(), clock=clock)
    controller = ServiceLevelController(assessor=assessor, breakers=breakers, sink=sink, audit=audit_log, clock=clock)
    engine = AlertEngine(assessor=assessor, levels=controller, sink=sink, clock=clock)
    return controller, engine


@pytest_asyncio.fixture
async def client(components, breakers, coordinator, audit_log):
    controller, engine = components
    app = create_status_app(
        CONFIG, controller=controller, engine=engine, breakers=breakers, coordinator=coordinator, audit=audit_log,
    )
    async with TestClient(TestServer(app)) as c:
        yield c


# --- Read-only routes ---

@pytest.mark.asyncio
async def test_status(client):
    resp = await client.get("/status")
    assert resp.status == 200
    data = await resp.json()
    assert data["service_level"]["current_level"] == "full"
    assert "detailed_reports" in data["capabilities"]
    assert data["breakers"]["database"] == "closed"
    assert data["monitoring"]["active_rules"] == 7
    assert data["fallback_active"] is False


@pytest.mark.asyncio
async def test_breakers_listing(client):
    resp = await client.get("/breakers")
    data = await resp.json()
    assert set(data) == {"database", "platform_api", "link_validation", "email_service"}
    assert data["email_service"]["timeout_s"] == 300


@pytest.mark.asyncio
async def test_single_breaker(client):
    resp = await client.get("/breakers/database")
    assert (await resp.json())["threshold"] == 3
    resp = await client.get("/breakers/nope")
    assert resp.status == 404


@pytest.mark.asyncio
async def test_alert_rules_listing(client):
    resp = await client.get("/alerts/rules")
    ids = {r["id"] for r in await resp.json()}
    assert "quota_usage_critical" in ids


@pytest.mark.asyncio
async def test_fallback_routes(client, coordinator):
    resp = await client.get("/fallback")
    assert (await resp.json())["policy"] == "any_signal"
    resp = await client.get("/fallback/snapshot")
    assert (await resp.json())["snapshot"] == {"x": 1}
    coordinator.store.read_latest.return_value = None
    resp = await client.get("/fallback/snapshot")
    assert resp.status == 404


@pytest.mark.asyncio
async def test_audit_route(client, audit_log):
    audit_log.append({"event": "fallback_sync", "size_bytes": 10})
    audit_log.append({"event": "level_change", "to_level": "minimal"})
    resp = await client.get("/audit", params={"type": "level_change"})
    events = await resp.json()
    assert [e["event"] for e in events] == ["level_change"]
    resp = await client.get("/audit", params={"limit": "abc"})
    assert resp.status == 400


# --- Authenticated routes ---

@pytest.mark.asyncio
async def test_mutating_routes_require_token(client):
    for path in ("/breakers/database/reset", "/service-level", "/alerts/rules/high_error_rate/disable"):
        resp = await client.post(path, json={"level": "minimal"})
        assert resp.status == 401
        resp = await client.post(path, json={"level": "minimal"}, headers={"Authorization": "Bearer wrong"})
        assert resp.status == 401


@pytest.mark.asyncio
async def test_breaker_reset(client, breakers):
    async def boom():
        raise RuntimeError("db down")

    for _ in range(3):
        with pytest.raises(RuntimeError):
            await breakers.execute("database", boom)
    assert breakers.get_state("database").state.value == "open"

    resp = await client.post("/breakers/database/reset", headers=AUTH)
    assert resp.status == 200
    assert (await resp.json())["breaker"]["state"] == "closed"
    resp = await client.post("/breakers/nope/reset", headers=AUTH)
    assert resp.status == 404


@pytest.mark.asyncio
async def test_force_service_level(client, components, audit_log):
    controller, _ = components
    resp = await client.post("/service-level", json={"level": "minimal", "reason": "maintenance"}, headers=AUTH)
    assert resp.status == 200
    data = await resp.json()
    assert data["changed"] is True
    assert data["status"]["current_level"] == "minimal"
    assert controller.current_level.value == "minimal"
    assert audit_log.recent("level_change")[0]["reason"] == "maintenance"


@pytest.mark.asyncio
async def test_force_service_level_rejects_unknown_level(client):
    resp = await client.post("/service-level", json={"level": "turbo"}, headers=AUTH)
    assert resp.status == 400


@pytest.mark.asyncio
async def test_force_service_level_rejects_non_object_body(client, components):
    controller, _ = components
    for payload in ([], ["minimal"], "minimal"):
        resp = await client.post("/service-level", json=payload, headers=AUTH)
        assert resp.status == 400
    resp = await client.post("/service-level", data="not json", headers=AUTH)
    assert resp.status == 400
    assert controller.current_level is ServiceLevel.FULL


@pytest.mark.asyncio
async def test_toggle_rule(client, components):
    _, engine = components
    resp = await client.post("/alerts/rules/high_error_rate/disable", headers=AUTH)
    assert (await resp.json())["rule"]["enabled"] is False
    assert engine.get_rule("high_error_rate").enabled is False
    resp = await client.post("/alerts/rules/high_error_rate/enable", headers=AUTH)
    assert (await resp.json())["rule"]["enabled"] is True
    resp = await client.post("/alerts/rules/missing/enable", headers=AUTH)
    assert resp.status == 404


@pytest.mark.asyncio
async def test_no_token_configured_rejects_everything(components, breakers):
    controller, engine = components
    app = create_status_app(StatusConfig(token=""), controller=controller, engine=engine, breakers=breakers)
    async with TestClient(TestServer(app)) as c:
        resp = await c.post("/breakers/database/reset", headers={"Authorization": "Bearer "})
        assert resp.status == 401
        resp = await c.get("/fallback")
        assert resp.status == 404
