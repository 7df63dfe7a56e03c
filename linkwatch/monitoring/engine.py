"""Alert engine: periodic metrics collection, rule evaluation, fallback watch and reports."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections import deque
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from ..collaborators import (
    Clock,
    HealthState,
    Notification,
    NotificationSink,
    NullNotificationSink,
    Severity,
    utcnow,
)
from ..config import MonitoringConfig
from ..degradation import LoadAssessor
from ..errors import MonitoringCycleError
from ..failover import FailoverCoordinator, FallbackKind
from ..remote import RemoteWorkflowExecutor
from .models import MonitoringSnapshot
from .reports import WINDOWS, ReportScheduler, build_report
from .rules import AlertRule, RuleKind, default_rules

if TYPE_CHECKING:
    from ..degradation import ServiceLevelController

logger = logging.getLogger("linkwatch.monitoring")


class AlertEngine:
    def __init__(
        self,
        config: MonitoringConfig | None = None,
        *,
        assessor: LoadAssessor,
        failover: FailoverCoordinator | None = None,
        executor: RemoteWorkflowExecutor | None = None,
        levels: ServiceLevelController | None = None,
        sink: NotificationSink | None = None,
        rules: list[AlertRule] | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._config = config or MonitoringConfig()
        self._assessor = assessor
        self._failover = failover
        self._executor = executor
        self._levels = levels
        self._sink = sink or NullNotificationSink()
        self._clock = clock
        self._rules: list[AlertRule] = list(rules) if rules is not None else default_rules(self._config)
        self._reports = ReportScheduler(self._config)
        self._history: deque[MonitoringSnapshot] = deque(maxlen=self._config.history_size)
        self._fired: deque[tuple[datetime, Severity, str]] = deque(maxlen=5000)
        self._adhoc_last: dict[str, datetime] = {}
        self._last_check_at: datetime | None = None
        self._ticking = False
        self._running = False

    # --- Rule management ---

    def rules(self) -> list[AlertRule]:
        return [dataclasses.replace(r, params=dict(r.params)) for r in self._rules]

    def get_rule(self, rule_id: str) -> AlertRule | None:
        for rule in self._rules:
            if rule.id == rule_id:
                return rule
        return None

    def add_rule(self, rule: AlertRule) -> None:
        if self.get_rule(rule.id) is not None:
            raise ValueError(f"alert rule already exists: {rule.id}")
        self._rules.append(rule)

    def remove_rule(self, rule_id: str) -> bool:
        rule = self.get_rule(rule_id)
        if rule is None:
            return False
        self._rules.remove(rule)
        return True

    def update_rule(self, rule_id: str, **changes: Any) -> AlertRule | None:
        """Apply ``changes`` all at once; nothing is applied if any field is invalid."""
        rule = self.get_rule(rule_id)
        if rule is None:
            return None
        updatable = {f.name for f in dataclasses.fields(AlertRule)} - {"id"}
        unknown = sorted(set(changes) - updatable)
        if unknown:
            raise ValueError(f"cannot update alert rule field: {', '.join(unknown)}")
        if "kind" in changes:
            changes["kind"] = RuleKind(changes["kind"])
        if "severity" in changes:
            changes["severity"] = Severity(changes["severity"])
        updated = dataclasses.replace(rule, **changes)
        self._rules[self._rules.index(rule)] = updated
        return dataclasses.replace(updated, params=dict(updated.params))

    def enable_rule(self, rule_id: str) -> bool:
        return self.update_rule(rule_id, enabled=True) is not None

    def disable_rule(self, rule_id: str) -> bool:
        return self.update_rule(rule_id, enabled=False) is not None

    # --- Cycle steps ---

    def _active_alerts(self, now: datetime) -> dict[str, int]:
        cutoff = now - timedelta(hours=24)
        counts = {s.value: 0 for s in Severity}
        for at, severity, _ in self._fired:
            if at >= cutoff:
                counts[severity.value] += 1
        return counts

    async def collect_snapshot(self) -> MonitoringSnapshot:
        usage = await self._assessor.usage()
        fallback = await self._failover.should_failover() if self._failover else None
        health = fallback.health if fallback else None
        now = self._clock()
        return MonitoringSnapshot(
            collected_at=now,
            usage=usage,
            response_time_ms=self._assessor.request_stats.mean_response_time_ms,
            error_rate=self._assessor.request_stats.error_rate,
            memory_usage=self._assessor.memory_percent(),
            datastore=health.datastore if health else HealthState.UNKNOWN,
            platform=health.api if health else HealthState.UNKNOWN,
            fallback_active=fallback.active if fallback else False,
            service_level=self._levels.current_level.value if self._levels else "unknown",
            fallback=fallback,
            active_alerts=self._active_alerts(now),
        )

    async def _dispatch(self, notification: Notification, key: str) -> None:
        self._fired.append((self._clock(), notification.severity, key))
        try:
            await self._sink.send(notification)
        except Exception:
            logger.exception("Failed to deliver alert %s", key)

    async def evaluate_rules(self, snapshot: MonitoringSnapshot) -> list[str]:
        """Fire every enabled, matching rule outside its cooldown. Returns fired rule ids."""
        now = self._clock()
        fired: list[str] = []
        for rule in list(self._rules):
            if not rule.enabled or not rule.matches(snapshot):
                continue
            if rule.is_cooling_down(now):
                logger.debug("Rule %s matched but is cooling down", rule.id)
                continue
            rule.last_triggered_at = now
            logger.warning("Alert rule %s fired", rule.id)
            await self._dispatch(
                Notification(
                    severity=rule.severity,
                    title=rule.name,
                    message=rule.message(snapshot),
                    details={
                        "rule_id": rule.id,
                        "timestamp": now.isoformat(),
                        "service_level": snapshot.service_level,
                    },
                ),
                key=rule.id,
            )
            fired.append(rule.id)
        return fired

    async def _alert_once(self, key: str, severity: Severity, title: str, message: str, **details: Any) -> bool:
        """Ad-hoc alert deduplicated per ``key`` by the ad-hoc cooldown."""
        now = self._clock()
        last = self._adhoc_last.get(key)
        if last is not None and (now - last).total_seconds() < self._config.adhoc_alert_cooldown_s:
            return False
        self._adhoc_last[key] = now
        await self._dispatch(
            Notification(
                severity=severity,
                title=title,
                message=message,
                details={"rule_id": key, "timestamp": now.isoformat(), **details},
            ),
            key=key,
        )
        return True

    async def check_fallback_health(self, snapshot: MonitoringSnapshot) -> None:
        status = snapshot.fallback
        if self._failover is None or status is None:
            return
        if not status.is_primary_down or status.active:
            return
        logger.warning("Primary platform down (%s), activating urgent fallback", status.reason)
        if await self._failover.activate(FallbackKind.URGENT):
            await self._alert_once(
                "fallback_activated", Severity.CRITICAL, "Fallback activated",
                f"Primary platform down ({status.reason}); urgent remote flow dispatched.",
                reason=status.reason,
            )
        else:
            await self._alert_once(
                "fallback_failed", Severity.CRITICAL, "Fallback activation failed",
                f"Primary platform down ({status.reason}) and the urgent remote flow could not be dispatched.",
                reason=status.reason,
            )

    async def check_remote_flows(self) -> None:
        """Alert when too many recent runs of a fallback flow failed."""
        if self._executor is None or not self._executor.is_configured():
            return
        sample = self._config.workflow_sample_size
        for flow in await self._executor.list_flows():
            runs = await self._executor.list_recent_runs(flow.file_name, limit=sample)
            if not runs:
                continue
            failed = sum(1 for r in runs if r.conclusion == "failure")
            rate = failed / len(runs)
            if rate > self._config.workflow_failure_rate:
                await self._alert_once(
                    f"workflow_failures:{flow.file_name}", Severity.ERROR, "Fallback flow failing",
                    f"{failed} of the last {len(runs)} runs of {flow.name or flow.file_name} failed.",
                    flow=flow.file_name, failure_rate=round(rate, 2),
                )

    async def check_reports(self, now: datetime) -> None:
        for kind in self._reports.due(now):
            since = now - WINDOWS[kind]
            report = build_report(
                kind,
                list(self._history),
                now,
                alert_count=sum(1 for at, _, _ in self._fired if at >= since),
                fallback_activations=self._failover.activations_since(since) if self._failover else 0,
            )
            self._reports.mark_sent(kind, now)
            logger.info("Sending %s report for %s", kind.value, report.period)
            await self._dispatch(report.to_notification(), key=f"{kind.value}_report")

    # --- Loop ---

    async def _run_cycle(self) -> MonitoringSnapshot:
        try:
            snapshot = await self.collect_snapshot()
            self._history.append(snapshot)
            if self._config.alerting_enabled:
                await self.evaluate_rules(snapshot)
            await self.check_fallback_health(snapshot)
            await self.check_remote_flows()
            await self.check_reports(snapshot.collected_at)
        except Exception as exc:
            raise MonitoringCycleError(f"monitoring cycle failed: {exc}") from exc
        self._last_check_at = snapshot.collected_at
        return snapshot

    async def tick(self) -> MonitoringSnapshot | None:
        """One monitoring cycle. Errors are reported as a ``monitoring_error`` alert."""
        if self._ticking:
            logger.info("Previous monitoring cycle still running, skipping")
            return None
        self._ticking = True
        try:
            return await self._run_cycle()
        except MonitoringCycleError as exc:
            logger.error("%s", exc, exc_info=exc.__cause__)
            await self._dispatch(
                Notification(
                    severity=Severity.ERROR,
                    title="Monitoring cycle failed",
                    message=str(exc.__cause__ or exc),
                    details={"rule_id": "monitoring_error", "timestamp": self._clock().isoformat()},
                ),
                key="monitoring_error",
            )
            return None
        finally:
            self._ticking = False

    async def run(self, stop_event: asyncio.Event) -> None:
        self._running = True
        logger.info("Alert engine started (interval %.0fs, %d rules)", self._config.check_interval_s, len(self._rules))
        try:
            while not stop_event.is_set():
                await self.tick()
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self._config.check_interval_s)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            logger.info("Alert engine stopped")

    # --- Inspection ---

    def status(self) -> dict[str, Any]:
        next_check = None
        if self._running and self._last_check_at is not None:
            next_check = (self._last_check_at + timedelta(seconds=self._config.check_interval_s)).isoformat()
        return {
            "running": self._running,
            "last_check": self._last_check_at.isoformat() if self._last_check_at else None,
            "next_check": next_check,
            "metrics_count": len(self._history),
            "active_rules": sum(1 for r in self._rules if r.enabled),
        }

    def history(self, hours: float = 24) -> list[MonitoringSnapshot]:
        cutoff = self._clock() - timedelta(hours=hours)
        return [s for s in self._history if s.collected_at >= cutoff]
