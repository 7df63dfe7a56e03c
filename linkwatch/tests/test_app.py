"""Tests for control plane wiring and the serve loop."""
from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from linkwatch.app import build_control_plane, serve
from linkwatch.audit import SqliteAuditLog
from linkwatch.collaborators import NullMetricsProvider
from linkwatch.config import ControlPlaneConfig
from linkwatch.degradation import ServiceLevel
from linkwatch.monitoring import PlatformUsageProvider
from linkwatch.notify import AlertRouter


class FakeHost:
    def cpu_percent(self) -> float:
        return 12.0

    def memory_percent(self) -> float:
        return 30.0


@pytest.fixture
def config(tmp_path: Path) -> ControlPlaneConfig:
    return ControlPlaneConfig().with_overrides(
        sync={"local_path": str(tmp_path / "sync")},
        status={"enabled": False},
        audit_db_path=str(tmp_path / "audit.db"),
    )


def test_defaults_built_from_config(config):
    plane = build_control_plane(config, host=FakeHost())
    try:
        assert isinstance(plane.sink, AlertRouter)
        assert isinstance(plane.audit, SqliteAuditLog)
        assert isinstance(plane.assessor._metrics, NullMetricsProvider)
        assert plane.coordinator.store is not None
        assert plane.engine._levels is plane.controller
        assert plane.controller._failover is plane.coordinator
    finally:
        plane.audit.close()


def test_usage_provider_used_when_configured(config, sink, audit):
    cfg = config.with_overrides(providers={"usage_api_url": "https://platform.example/usage"})
    plane = build_control_plane(cfg, sink=sink, audit=audit, host=FakeHost())
    assert isinstance(plane.assessor._metrics, PlatformUsageProvider)


@pytest.mark.asyncio
async def test_forced_fallback_records_and_notifies(config, sink, audit, clock):
    plane = build_control_plane(config, sink=sink, audit=audit, host=FakeHost(), clock=clock)
    assert await plane.controller.force_level(ServiceLevel.FALLBACK, "drill") is True
    assert plane.controller.current_level is ServiceLevel.FALLBACK
    # remote CI is not configured, so activation is attempted and refused
    assert plane.coordinator.fallback_active is False
    assert audit.of_type("level_change")[0]["to_level"] == "fallback"
    assert sink.sent[0].title == "Service level changed: full -> fallback"


@pytest.mark.asyncio
async def test_serve_runs_until_stopped(config, sink, audit, clock):
    plane = build_control_plane(config, sink=sink, audit=audit, host=FakeHost(), clock=clock)
    stop = asyncio.Event()
    task = asyncio.create_task(serve(config, plane, stop_event=stop))
    await asyncio.sleep(0.1)
    assert plane.engine.status()["running"] is True
    stop.set()
    await asyncio.wait_for(task, timeout=5)
    assert plane.engine.status()["running"] is False
    assert plane.engine.status()["metrics_count"] >= 1
