"""Failover coordinator: decides whether the primary platform is down and hands work to remote flows."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from ..collaborators import (
    AuditLog,
    Clock,
    HealthProvider,
    HealthState,
    NullAuditLog,
    NullHealthProvider,
    NullSnapshotSource,
    SnapshotSource,
    utcnow,
)
from ..config import FailoverConfig
from ..remote import RemoteWorkflowExecutor, WorkflowStatus, WorkflowTriggerResult
from ..sync import SnapshotStore
from .models import FailoverPolicy, FallbackKind, FallbackStatus, PlatformHealth

logger = logging.getLogger("linkwatch.failover")

# kind -> (flow file, default inputs)
FLOWS: dict[FallbackKind, tuple[str, dict[str, str]]] = {
    FallbackKind.URGENT: ("fallback-urgent-alerts.yml", {"force_check": "true"}),
    FallbackKind.MAINTENANCE: (
        "fallback-emergency-maintenance.yml",
        {"maintenance_type": "system_recovery", "severity": "high", "notify_admin": "true"},
    ),
    FallbackKind.HEALTH: ("fallback-health-monitoring.yml", {"detailed_check": "true"}),
}


class FailoverCoordinator:
    def __init__(
        self,
        config: FailoverConfig | None = None,
        *,
        executor: RemoteWorkflowExecutor,
        health: HealthProvider | None = None,
        snapshots: SnapshotSource | None = None,
        store: SnapshotStore | None = None,
        audit: AuditLog | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._config = config or FailoverConfig()
        self._policy = FailoverPolicy(self._config.policy)
        self._executor = executor
        self._health = health or NullHealthProvider()
        self._snapshots = snapshots or NullSnapshotSource()
        self._store = store
        self._audit = audit or NullAuditLog()
        self._clock = clock

        self._down = False
        self._active = False
        self._last_status: FallbackStatus | None = None
        self._last_activation: WorkflowTriggerResult | None = None
        self._activations: deque[tuple[datetime, FallbackKind]] = deque(maxlen=500)
        self._last_sync_at: datetime | None = None

    # --- Health ---

    async def _probe(self, name: str, call: Callable[[], Awaitable[Any]], default: Any = HealthState.UNKNOWN) -> Any:
        try:
            return await asyncio.wait_for(call(), timeout=self._config.health_check_timeout_s)
        except Exception as exc:
            logger.warning("%s health probe failed: %r", name, exc)
            return default

    def classify_scheduler(self, hours_since_last_run: float | None) -> HealthState:
        if hours_since_last_run is None:
            return HealthState.UNKNOWN
        if hours_since_last_run < self._config.healthy_audit_delay_h:
            return HealthState.HEALTHY
        if hours_since_last_run < self._config.max_audit_delay_h:
            return HealthState.WARNING
        return HealthState.UNHEALTHY

    async def check_health(self) -> PlatformHealth:
        """Gather every signal independently; a failed probe reads as unknown."""
        api, datastore, last_run = await asyncio.gather(
            self._probe("api", self._health.get_api_health),
            self._probe("datastore", self._health.get_datastore_health),
            self._probe("scheduler", self._health.get_last_scheduled_run_time, default=None),
        )
        now = self._clock()
        hours = (now - last_run).total_seconds() / 3600 if last_run is not None else None
        return PlatformHealth(
            api=HealthState.coerce(api),
            scheduler=self.classify_scheduler(hours),
            datastore=HealthState.coerce(datastore),
            last_scheduled_run_at=last_run,
            hours_since_last_run=hours,
            checked_at=now,
        )

    def evaluate(self, health: PlatformHealth) -> tuple[bool, str]:
        """Verdict and reason for a health reading under the configured policy.

        API unreachability alone is reported but never decisive under
        ``any_signal``.
        """
        if self._policy is FailoverPolicy.CORROBORATED:
            down = len(health.unhealthy_signals()) >= 2
        else:
            down = health.datastore is HealthState.UNHEALTHY or health.scheduler is HealthState.UNHEALTHY

        reasons: list[str] = []
        if health.api is HealthState.UNHEALTHY:
            reasons.append("API unreachable")
        if health.scheduler is HealthState.UNHEALTHY:
            reasons.append(f"scheduled jobs inactive for {health.hours_since_last_run:.1f}h")
        elif health.scheduler is HealthState.WARNING:
            reasons.append(f"scheduled jobs late ({health.hours_since_last_run:.1f}h)")
        if health.datastore is HealthState.UNHEALTHY:
            reasons.append("datastore unreachable")
        elif health.datastore is HealthState.SLOW:
            reasons.append("datastore slow")
        return down, ", ".join(reasons) or "system operational"

    async def should_failover(self, health: PlatformHealth | None = None) -> FallbackStatus:
        health = health or await self.check_health()
        down, reason = self.evaluate(health)
        now = self._clock()

        if down and not self._down:
            logger.warning("Primary platform judged down: %s", reason)
            self._record({"event": "fallback_detected", "reason": reason, "health": health.to_dict()})
        elif not down and self._down:
            logger.info("Primary platform recovered: %s", reason)
        if not down and self._active:
            self._active = False
        self._down = down

        status = FallbackStatus(
            is_primary_down=down,
            reason=reason,
            last_check=now,
            active=self._active,
            next_check=now + timedelta(seconds=self._config.check_interval_s),
            health=health,
        )
        self._last_status = status
        return status

    # --- Activation ---

    async def activate(self, kind: FallbackKind | str, **input_overrides: Any) -> bool:
        """Dispatch the remote flow for ``kind``. Never raises."""
        try:
            kind = FallbackKind(kind)
        except ValueError:
            logger.error("Unknown fallback kind: %s", kind)
            return False
        flow_file, defaults = FLOWS[kind]
        inputs = {**defaults, **{key: str(value) for key, value in input_overrides.items()}}

        try:
            result = await self._executor.trigger(flow_file, inputs)
        except Exception:
            logger.exception("Fallback %s trigger raised", kind.value)
            return False
        self._last_activation = result
        if not result.success:
            logger.error("Fallback %s activation failed: %s", kind.value, result.error)
            return False

        now = self._clock()
        self._active = True
        self._activations.append((now, kind))
        logger.warning("Fallback %s activated (run %s)", kind.value, result.run_id)
        self._record({
            "event": "fallback_activation",
            "kind": kind.value,
            "flow": flow_file,
            "run_id": result.run_id,
            "workflow_url": result.workflow_url,
            "reason": self._last_status.reason if self._last_status else None,
            "activated_at": now.isoformat(),
        })
        return True

    async def monitor_activation(self, run_id: int, cancel: asyncio.Event | None = None) -> WorkflowStatus | None:
        return await self._executor.monitor(run_id, cancel=cancel)

    def activations_since(self, since: datetime) -> int:
        return sum(1 for at, _ in self._activations if at >= since)

    # --- Synchronization ---

    async def synchronize(self) -> bool:
        """Export the latest primary-side snapshot for the remote runner."""
        if self._store is None:
            logger.warning("No snapshot store configured, skipping synchronization")
            return False
        try:
            snapshot = await self._snapshots.latest_snapshot()
            if snapshot is None:
                logger.warning("No snapshot available to synchronize")
                return False
            result = await self._store.export(snapshot)
        except Exception:
            logger.exception("Fallback synchronization failed")
            return False
        self._last_sync_at = self._clock()
        self._record({
            "event": "fallback_sync",
            "s3_key": result.s3_key,
            "local_path": result.local_path,
            "size_bytes": result.size_bytes,
            "synced_at": self._last_sync_at.isoformat(),
        })
        return True

    async def run_sync(self, stop_event: asyncio.Event) -> None:
        """Synchronize on ``sync_interval_s`` until stopped."""
        while not stop_event.is_set():
            await self.synchronize()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._config.sync_interval_s)
            except asyncio.TimeoutError:
                pass

    # --- Inspection ---

    def _record(self, event: dict[str, Any]) -> None:
        try:
            self._audit.append(event)
        except Exception:
            logger.exception("Failed to record %s", event.get("event"))

    @property
    def fallback_active(self) -> bool:
        return self._active

    @property
    def last_status(self) -> FallbackStatus | None:
        return self._last_status

    @property
    def last_activation(self) -> WorkflowTriggerResult | None:
        return self._last_activation

    @property
    def store(self) -> SnapshotStore | None:
        return self._store

    def status(self) -> dict[str, Any]:
        return {
            "policy": self._policy.value,
            "active": self._active,
            "last_status": self._last_status.to_dict() if self._last_status else None,
            "last_activation": (
                {
                    "success": self._last_activation.success,
                    "run_id": self._last_activation.run_id,
                    "workflow_url": self._last_activation.workflow_url,
                    "error": self._last_activation.error,
                }
                if self._last_activation
                else None
            ),
            "last_sync_at": self._last_sync_at.isoformat() if self._last_sync_at else None,
            "remote": self._executor.configuration(),
        }
