"""Scheduled daily / weekly / monthly reports, each sent at most once per calendar period."""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from ..collaborators import HealthState, Notification, Severity
from ..config import MonitoringConfig
from .models import MonitoringSnapshot


class ReportKind(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


WINDOWS: dict[ReportKind, timedelta] = {
    ReportKind.DAILY: timedelta(days=1),
    ReportKind.WEEKLY: timedelta(days=7),
    ReportKind.MONTHLY: timedelta(days=31),
}


def period_key(kind: ReportKind, when: datetime) -> str:
    if kind is ReportKind.DAILY:
        return when.strftime("%Y-%m-%d")
    if kind is ReportKind.WEEKLY:
        year, week, _ = when.isocalendar()
        return f"{year}-W{week:02d}"
    return when.strftime("%Y-%m")


class ReportScheduler:
    """Tracks which report periods have been sent.

    A report becomes due once its send time has passed within its period:
    daily from the configured hour, weekly on Monday from its hour, monthly
    on the 1st from its hour.
    """

    def __init__(self, config: MonitoringConfig | None = None) -> None:
        self._config = config or MonitoringConfig()
        self._sent: dict[ReportKind, str] = {}

    def _window_open(self, kind: ReportKind, now: datetime) -> bool:
        cfg = self._config
        if kind is ReportKind.DAILY:
            return cfg.daily_report and now.hour >= cfg.daily_report_hour
        if kind is ReportKind.WEEKLY:
            return cfg.weekly_report and now.weekday() == 0 and now.hour >= cfg.weekly_report_hour
        return cfg.monthly_report and now.day == 1 and now.hour >= cfg.monthly_report_hour

    def due(self, now: datetime) -> list[ReportKind]:
        return [
            kind for kind in ReportKind
            if self._window_open(kind, now) and self._sent.get(kind) != period_key(kind, now)
        ]

    def mark_sent(self, kind: ReportKind, now: datetime) -> None:
        self._sent[kind] = period_key(kind, now)


@dataclass
class Report:
    kind: ReportKind
    period: str
    generated_at: datetime
    summary: dict[str, Any]
    recommendations: list[str] = field(default_factory=list)

    def to_notification(self) -> Notification:
        lines = [f"{key}: {value}" for key, value in self.summary.items()]
        if self.recommendations:
            lines.append("Recommendations:")
            lines.extend(f"- {r}" for r in self.recommendations)
        return Notification(
            severity=Severity.INFO,
            title=f"{self.kind.value.capitalize()} report {self.period}",
            message="\n".join(lines),
            details={
                "rule_id": f"{self.kind.value}_report",
                "period": self.period,
                "summary": self.summary,
                "recommendations": self.recommendations,
                "generated_at": self.generated_at.isoformat(),
            },
        )


def build_recommendations(snapshot: MonitoringSnapshot) -> list[str]:
    recs: list[str] = []
    if snapshot.usage is not None and snapshot.usage.percent_of_limit > 80:
        recs.append("Platform usage above 80% of plan limit: consider upgrading the plan")
    if snapshot.response_time_ms > 3000:
        recs.append("Response times above 3s: optimize slow functions")
    if snapshot.error_rate > 3:
        recs.append("Error rate above 3%: investigate recent errors")
    if snapshot.datastore is HealthState.SLOW:
        recs.append("Datastore is slow: optimize queries and indexes")
    return recs


def usage_trend(values: list[float]) -> str:
    """Compare the mean of the later half of ``values`` with the earlier half."""
    if len(values) < 2:
        return "stable"
    half = len(values) // 2
    earlier = sum(values[:half]) / half
    later = sum(values[half:]) / (len(values) - half)
    if later > earlier * 1.1:
        return "increasing"
    if later < earlier * 0.9:
        return "decreasing"
    return "stable"


def _risk(projected_percent: float) -> str:
    if projected_percent >= 90:
        return "high"
    if projected_percent >= 70:
        return "medium"
    return "low"


def _mean(values: list[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


def build_report(
    kind: ReportKind,
    history: list[MonitoringSnapshot],
    now: datetime,
    *,
    alert_count: int = 0,
    fallback_activations: int = 0,
) -> Report:
    window = [s for s in history if s.collected_at >= now - WINDOWS[kind]]
    latest = window[-1] if window else None
    usage = [s.usage_percent for s in window if s.usage_percent is not None]
    response = [s.response_time_ms for s in window]

    summary: dict[str, Any] = {"samples": len(window)}
    if kind is ReportKind.MONTHLY:
        projected = latest.usage.projected_percent if latest and latest.usage else 0.0
        days_in_month = calendar.monthrange(now.year, now.month)[1]
        summary.update({
            "current_usage_percent": round(latest.usage_percent or 0.0, 2) if latest else 0.0,
            "projected_monthly_invocations": round(latest.usage.projected_monthly) if latest and latest.usage else 0,
            "projected_percent": round(projected, 2),
            "days_in_month": days_in_month,
            "risk": _risk(projected),
            "trend": usage_trend(usage),
        })
    else:
        summary.update({
            "avg_usage_percent": _mean(usage),
            "max_usage_percent": round(max(usage), 2) if usage else 0.0,
            "avg_response_time_ms": _mean(response),
            "max_error_rate": round(max((s.error_rate for s in window), default=0.0), 2),
            "total_alerts": alert_count,
            "fallback_activations": fallback_activations,
        })
        if kind is ReportKind.WEEKLY:
            summary["datastore_unhealthy_samples"] = sum(
                1 for s in window if s.datastore is HealthState.UNHEALTHY
            )
    if latest is not None:
        summary["service_level"] = latest.service_level

    return Report(
        kind=kind,
        period=period_key(kind, now),
        generated_at=now,
        summary=summary,
        recommendations=build_recommendations(latest) if latest else [],
    )
