"""Wiring and process entrypoint for the control plane."""
from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass
from typing import Any

from .audit import SqliteAuditLog
from .breakers import CircuitBreakerRegistry
from .collaborators import (
    AuditLog,
    Clock,
    HealthProvider,
    MetricsProvider,
    NotificationSink,
    NullHealthProvider,
    NullMetricsProvider,
    NullSnapshotSource,
    SnapshotSource,
    utcnow,
)
from .config import ControlPlaneConfig
from .degradation import HostMetrics, LoadAssessor, RequestStats, ServiceLevelController
from .errors import ConfigurationError
from .failover import FailoverCoordinator, RestHealthProvider
from .logging_setup import setup_logging
from .monitoring import AlertEngine, PlatformUsageProvider
from .notify import AlertRouter
from .remote import RemoteWorkflowExecutor
from .status import create_status_app, start_status_server
from .sync import SnapshotStore

logger = logging.getLogger("linkwatch.app")


@dataclass
class ControlPlane:
    config: ControlPlaneConfig
    breakers: CircuitBreakerRegistry
    request_stats: RequestStats
    assessor: LoadAssessor
    executor: RemoteWorkflowExecutor
    coordinator: FailoverCoordinator
    controller: ServiceLevelController
    engine: AlertEngine
    sink: NotificationSink
    audit: AuditLog


def build_control_plane(
    config: ControlPlaneConfig,
    *,
    metrics: MetricsProvider | None = None,
    health: HealthProvider | None = None,
    snapshots: SnapshotSource | None = None,
    sink: NotificationSink | None = None,
    audit: AuditLog | None = None,
    store: SnapshotStore | None = None,
    host: HostMetrics | None = None,
    clock: Clock = utcnow,
) -> ControlPlane:
    """Assemble every component. Collaborators not passed in are built from ``config``."""
    providers = config.providers
    if metrics is None:
        metrics = PlatformUsageProvider(providers, clock=clock) if providers.usage_api_url else NullMetricsProvider()
    rest = None
    if providers.platform_api_url or providers.datastore_url:
        rest = RestHealthProvider(providers)
    if health is None:
        health = rest or NullHealthProvider()
    if snapshots is None:
        snapshots = rest if rest is not None and providers.snapshot_url else NullSnapshotSource()
    if sink is None:
        sink = AlertRouter(config.notify)
    if audit is None:
        audit = SqliteAuditLog(config.audit_db_path)
    if store is None:
        store = SnapshotStore(config.sync, clock=clock)

    breakers = CircuitBreakerRegistry(config.breakers, clock=clock)
    request_stats = RequestStats(config.degradation.request_window_s)
    assessor = LoadAssessor(
        metrics, request_stats, host or HostMetrics(config.degradation.memory_limit_mb), clock=clock,
    )
    executor = RemoteWorkflowExecutor(config.remote)
    coordinator = FailoverCoordinator(
        config.failover,
        executor=executor,
        health=health,
        snapshots=snapshots,
        store=store,
        audit=audit,
        clock=clock,
    )
    controller = ServiceLevelController(
        config.degradation,
        assessor=assessor,
        breakers=breakers,
        failover=coordinator,
        sink=sink,
        audit=audit,
        clock=clock,
    )
    engine = AlertEngine(
        config.monitoring,
        assessor=assessor,
        failover=coordinator,
        executor=executor,
        levels=controller,
        sink=sink,
        clock=clock,
    )
    return ControlPlane(
        config=config,
        breakers=breakers,
        request_stats=request_stats,
        assessor=assessor,
        executor=executor,
        coordinator=coordinator,
        controller=controller,
        engine=engine,
        sink=sink,
        audit=audit,
    )


async def serve(
    config: ControlPlaneConfig,
    plane: ControlPlane | None = None,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Run the loops and the status server until SIGTERM/SIGINT (or ``stop_event``)."""
    plane = plane or build_control_plane(config)
    loop = asyncio.get_running_loop()
    stop_event = stop_event or asyncio.Event()

    def _shutdown(sig: int) -> None:
        logger.info("Received signal %d, shutting down", sig)
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _shutdown, sig)

    runner = None
    if config.status.enabled:
        if not config.status.token:
            logger.warning("Status token not set, operator actions on the status server are disabled")
        app = create_status_app(
            config.status,
            controller=plane.controller,
            engine=plane.engine,
            breakers=plane.breakers,
            coordinator=plane.coordinator,
            audit=plane.audit,
        )
        runner = await start_status_server(app, config.status.host, config.status.port)

    if not plane.executor.is_configured():
        logger.warning("Remote CI not configured, fallback activation will fail")

    tasks = [
        asyncio.create_task(plane.controller.run(stop_event), name="degradation"),
        asyncio.create_task(plane.engine.run(stop_event), name="monitoring"),
        asyncio.create_task(plane.coordinator.run_sync(stop_event), name="fallback-sync"),
    ]
    logger.info("Control plane running")
    await stop_event.wait()

    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.remove_signal_handler(sig)
    if runner is not None:
        await runner.cleanup()
    await _close(plane.sink)
    await _close(plane.audit)
    logger.info("Control plane stopped")


async def _close(component: Any) -> None:
    close = getattr(component, "close", None)
    if close is None:
        return
    result = close()
    if asyncio.iscoroutine(result):
        await result


def main(config_path: str | None = None) -> None:
    try:
        config = ControlPlaneConfig.load(config_path).validate()
    except ConfigurationError as exc:
        raise SystemExit(f"invalid configuration: {exc}") from exc
    setup_logging(config.logging)
    asyncio.run(serve(config))
