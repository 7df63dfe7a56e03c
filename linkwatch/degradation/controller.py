"""Service-level controller: picks the degradation level from load samples."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from ..breakers import CircuitBreakerRegistry
from ..collaborators import (
    AuditLog,
    Clock,
    Notification,
    NotificationSink,
    NullAuditLog,
    NullNotificationSink,
    Severity,
    utcnow,
)
from ..config import DegradationConfig, LevelThresholds
from ..errors import MonitoringCycleError
from ..failover.models import FallbackKind
from .load import LoadAssessor
from .models import LEVEL_CAPABILITIES, DegradationStatus, LevelChange, ServiceLevel, SystemLoadSample

if TYPE_CHECKING:
    from ..failover.coordinator import FailoverCoordinator

logger = logging.getLogger("linkwatch.degradation")

# (attribute on the sample, attribute on the thresholds, label, unit)
_METRICS = (
    ("cpu_usage", "cpu", "cpu", "%"),
    ("memory_usage", "memory", "memory", "%"),
    ("quota_usage", "quota", "quota", "%"),
    ("error_rate", "error_rate", "error rate", "%"),
    ("response_time_ms", "response_time_ms", "response time", "ms"),
)


def transition_severity(change: LevelChange) -> Severity:
    if change.is_worsening and change.to_level is ServiceLevel.FALLBACK:
        return Severity.CRITICAL
    if change.is_worsening and change.to_level is ServiceLevel.MINIMAL:
        return Severity.WARNING
    return Severity.INFO


class ServiceLevelController:
    def __init__(
        self,
        config: DegradationConfig | None = None,
        *,
        assessor: LoadAssessor,
        breakers: CircuitBreakerRegistry,
        failover: FailoverCoordinator | None = None,
        sink: NotificationSink | None = None,
        audit: AuditLog | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._config = config or DegradationConfig()
        self._assessor = assessor
        self._breakers = breakers
        self._failover = failover
        self._sink = sink or NullNotificationSink()
        self._audit = audit or NullAuditLog()
        self._clock = clock
        self._table: list[tuple[ServiceLevel, LevelThresholds]] = [
            (ServiceLevel.FULL, self._config.full),
            (ServiceLevel.ESSENTIAL, self._config.essential),
            (ServiceLevel.MINIMAL, self._config.minimal),
        ]

        self._level = ServiceLevel.FULL
        self._previous: ServiceLevel | None = None
        self._changed_at: datetime = clock()
        self._reason = "initial"
        self._pending: ServiceLevel | None = None
        self._last_sample: SystemLoadSample | None = None
        self._last_check_at: datetime | None = None
        self._last_notification_at: datetime | None = None
        self._last_error_alert_at: datetime | None = None
        self._samples: deque[SystemLoadSample] = deque(maxlen=self._config.history_size)
        self._changes: deque[LevelChange] = deque(maxlen=self._config.history_size)
        self._ticking = False
        self._running = False

    # --- Level selection ---

    @staticmethod
    def _within(sample: SystemLoadSample, row: LevelThresholds) -> bool:
        return all(getattr(sample, attr) <= getattr(row, limit) for attr, limit, _, _ in _METRICS)

    def determine_level(self, sample: SystemLoadSample) -> ServiceLevel:
        for level, row in self._table:
            if self._within(sample, row):
                return level
        return ServiceLevel.FALLBACK

    def describe_reason(self, sample: SystemLoadSample, level: ServiceLevel) -> str:
        """Name the metrics that keep the sample out of the next-better level."""
        if level is ServiceLevel.FULL:
            return "system stable"
        row = self._table[level.rank - 1][1]
        exceeded = []
        for attr, limit, label, unit in _METRICS:
            value, bound = getattr(sample, attr), getattr(row, limit)
            if value > bound:
                exceeded.append(f"{label} {value:.1f}{unit} > {bound:g}{unit}")
        return ", ".join(exceeded) or "thresholds exceeded"

    # --- Transitions ---

    def _stability_remaining(self, now: datetime) -> float:
        elapsed = (now - self._changed_at).total_seconds()
        return max(0.0, self._config.stability_period_s - elapsed)

    async def adjust_level(
        self,
        target: ServiceLevel,
        reason: str,
        *,
        sample: SystemLoadSample | None = None,
        force: bool = False,
    ) -> bool:
        """Move to ``target`` unless still inside the stability period. Returns True on commit."""
        if target is self._level:
            self._pending = None
            return False
        now = self._clock()
        remaining = self._stability_remaining(now)
        if remaining > 0 and not force:
            self._pending = target
            logger.info(
                "Level change %s -> %s deferred, %.0fs of stability period remaining",
                self._level.value, target.value, remaining,
            )
            return False

        change = LevelChange(
            from_level=self._level,
            to_level=target,
            reason=reason,
            changed_at=now,
            sample=sample or self._last_sample,
            forced=force,
        )
        self._previous = self._level
        self._level = target
        self._changed_at = now
        self._reason = reason
        self._pending = None
        self._changes.append(change)
        logger.warning(
            "Service level %s -> %s%s: %s",
            change.from_level.value, target.value, " (forced)" if force else "", reason,
        )

        await self._apply_side_effects(target)
        try:
            self._audit.append(change.to_audit_event())
        except Exception:
            logger.exception("Failed to record level change")
        await self._notify(change)
        return True

    async def force_level(self, level: ServiceLevel, reason: str = "manual override") -> bool:
        return await self.adjust_level(level, reason, force=True)

    async def _apply_side_effects(self, level: ServiceLevel) -> None:
        if level is ServiceLevel.FULL:
            self._breakers.half_open_all()
            return
        if level is not ServiceLevel.FALLBACK:
            return
        if self._failover is None:
            logger.error("FALLBACK reached but no failover coordinator is wired")
            return
        for kind in (FallbackKind.URGENT, FallbackKind.HEALTH):
            try:
                activated = await self._failover.activate(kind)
            except Exception:
                logger.exception("Fallback activation %s raised", kind.value)
                continue
            if not activated:
                logger.error("Fallback activation %s failed", kind.value)

    async def _notify(self, change: LevelChange) -> None:
        now = change.changed_at
        if self._last_notification_at is not None:
            since = (now - self._last_notification_at).total_seconds()
            if since < self._config.notification_cooldown_s:
                logger.debug("Level notification suppressed (%.0fs since last)", since)
                return
        self._last_notification_at = now
        notification = Notification(
            severity=transition_severity(change),
            title=f"Service level changed: {change.from_level.value} -> {change.to_level.value}",
            message=change.reason,
            details=change.to_audit_event(),
        )
        try:
            await self._sink.send(notification)
        except Exception:
            logger.exception("Failed to send level change notification")

    # --- Loop ---

    async def tick(self) -> DegradationStatus | None:
        """Assess, determine and adjust once. Skipped while a previous tick runs."""
        if self._ticking:
            logger.info("Previous degradation check still running, skipping")
            return None
        self._ticking = True
        try:
            sample = await self._assessor.assess()
            self._last_sample = sample
            self._samples.append(sample)
            target = self.determine_level(sample)
            await self.adjust_level(target, self.describe_reason(sample, target), sample=sample)
            self._last_check_at = self._clock()
            return self.status()
        finally:
            self._ticking = False

    async def _checked_tick(self) -> None:
        try:
            await self.tick()
        except Exception as exc:
            raise MonitoringCycleError(f"degradation check failed: {exc!r}") from exc

    async def _report_failure(self, exc: MonitoringCycleError) -> None:
        """Log every failure; alert at most once per notification cooldown."""
        logger.error("%s", exc, exc_info=exc.__cause__)
        now = self._clock()
        if self._last_error_alert_at is not None:
            if (now - self._last_error_alert_at).total_seconds() < self._config.notification_cooldown_s:
                return
        self._last_error_alert_at = now
        notification = Notification(
            severity=Severity.ERROR,
            title="Degradation check failed",
            message=str(exc.__cause__ or exc),
            details={"rule_id": "monitoring_error", "timestamp": now.isoformat()},
        )
        try:
            await self._sink.send(notification)
        except Exception:
            logger.exception("Failed to send degradation failure notification")

    async def run(self, stop_event: asyncio.Event) -> None:
        self._running = True
        logger.info("Degradation controller started (interval %.0fs)", self._config.check_interval_s)
        try:
            while not stop_event.is_set():
                try:
                    await self._checked_tick()
                except MonitoringCycleError as exc:
                    await self._report_failure(exc)
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self._config.check_interval_s)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            logger.info("Degradation controller stopped")

    # --- Inspection ---

    @property
    def current_level(self) -> ServiceLevel:
        return self._level

    def allows(self, capability: str) -> bool:
        return capability in LEVEL_CAPABILITIES[self._level]

    def status(self) -> DegradationStatus:
        now = self._clock()
        next_check = None
        if self._last_check_at is not None:
            next_check = self._last_check_at + timedelta(seconds=self._config.check_interval_s)
        return DegradationStatus(
            current_level=self._level,
            previous_level=self._previous,
            changed_at=self._changed_at,
            reason=self._reason,
            last_sample=self._last_sample,
            next_check_at=next_check,
            stability_remaining_s=self._stability_remaining(now),
            pending_level=self._pending,
        )

    def history(self, limit: int | None = None) -> list[SystemLoadSample]:
        samples = list(self._samples)
        return samples[-limit:] if limit else samples

    def changes(self) -> list[LevelChange]:
        return list(self._changes)
