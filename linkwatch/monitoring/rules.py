"""Alert rules: a tagged condition kind plus parameters, evaluated through a function table."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from ..collaborators import HealthState, Severity
from ..config import MonitoringConfig
from .models import MonitoringSnapshot


class RuleKind(str, Enum):
    USAGE_AT_LEAST = "usage_at_least"
    RESPONSE_TIME_ABOVE = "response_time_above"
    ERROR_RATE_ABOVE = "error_rate_above"
    DATASTORE_UNHEALTHY = "datastore_unhealthy"
    FALLBACK_ACTIVE = "fallback_active"


Condition = Callable[[MonitoringSnapshot, dict], bool]
Describe = Callable[[MonitoringSnapshot, dict], str]


def _usage_at_least(s: MonitoringSnapshot, p: dict) -> bool:
    return s.usage is not None and s.usage.percent_of_limit >= p["threshold"]


def _response_time_above(s: MonitoringSnapshot, p: dict) -> bool:
    return s.response_time_ms > p["threshold_ms"]


def _error_rate_above(s: MonitoringSnapshot, p: dict) -> bool:
    return s.error_rate > p["threshold"]


def _datastore_unhealthy(s: MonitoringSnapshot, p: dict) -> bool:
    return s.datastore is HealthState.UNHEALTHY


def _fallback_active(s: MonitoringSnapshot, p: dict) -> bool:
    return s.fallback_active


CONDITIONS: dict[RuleKind, Condition] = {
    RuleKind.USAGE_AT_LEAST: _usage_at_least,
    RuleKind.RESPONSE_TIME_ABOVE: _response_time_above,
    RuleKind.ERROR_RATE_ABOVE: _error_rate_above,
    RuleKind.DATASTORE_UNHEALTHY: _datastore_unhealthy,
    RuleKind.FALLBACK_ACTIVE: _fallback_active,
}

MESSAGES: dict[RuleKind, Describe] = {
    RuleKind.USAGE_AT_LEAST: lambda s, p: (
        f"Platform usage at {s.usage.percent_of_limit:.1f}% of plan limit (threshold {p['threshold']:g}%)"
    ),
    RuleKind.RESPONSE_TIME_ABOVE: lambda s, p: (
        f"Mean response time {s.response_time_ms:.0f}ms exceeds {p['threshold_ms']:g}ms"
    ),
    RuleKind.ERROR_RATE_ABOVE: lambda s, p: f"Error rate {s.error_rate:.1f}% exceeds {p['threshold']:g}%",
    RuleKind.DATASTORE_UNHEALTHY: lambda s, p: "Datastore is unhealthy",
    RuleKind.FALLBACK_ACTIVE: lambda s, p: "Remote fallback is active; the primary platform is degraded",
}


@dataclass
class AlertRule:
    id: str
    name: str
    kind: RuleKind
    severity: Severity
    cooldown_s: float
    params: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    last_triggered_at: datetime | None = None

    def matches(self, snapshot: MonitoringSnapshot) -> bool:
        return CONDITIONS[self.kind](snapshot, self.params)

    def message(self, snapshot: MonitoringSnapshot) -> str:
        return MESSAGES[self.kind](snapshot, self.params)

    def is_cooling_down(self, now: datetime) -> bool:
        if self.last_triggered_at is None:
            return False
        return (now - self.last_triggered_at).total_seconds() < self.cooldown_s

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "severity": self.severity.value,
            "cooldown_s": self.cooldown_s,
            "params": dict(self.params),
            "enabled": self.enabled,
            "last_triggered_at": self.last_triggered_at.isoformat() if self.last_triggered_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AlertRule:
        last = data.get("last_triggered_at")
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            kind=RuleKind(data["kind"]),
            severity=Severity(data.get("severity", "warning")),
            cooldown_s=float(data.get("cooldown_s", 1800)),
            params=dict(data.get("params") or {}),
            enabled=bool(data.get("enabled", True)),
            last_triggered_at=datetime.fromisoformat(last) if last else None,
        )


def default_rules(config: MonitoringConfig | None = None) -> list[AlertRule]:
    cfg = config or MonitoringConfig()
    return [
        AlertRule("quota_usage_warning", "Quota usage warning", RuleKind.USAGE_AT_LEAST,
                  Severity.WARNING, 60 * 60, {"threshold": cfg.usage_warning}),
        AlertRule("quota_usage_error", "Quota usage high", RuleKind.USAGE_AT_LEAST,
                  Severity.ERROR, 30 * 60, {"threshold": cfg.usage_error}),
        AlertRule("quota_usage_critical", "Quota usage critical", RuleKind.USAGE_AT_LEAST,
                  Severity.CRITICAL, 15 * 60, {"threshold": cfg.usage_critical}),
        AlertRule("high_response_time", "High response time", RuleKind.RESPONSE_TIME_ABOVE,
                  Severity.WARNING, 30 * 60, {"threshold_ms": 5000}),
        AlertRule("high_error_rate", "High error rate", RuleKind.ERROR_RATE_ABOVE,
                  Severity.ERROR, 15 * 60, {"threshold": 5}),
        AlertRule("datastore_unhealthy", "Datastore unhealthy", RuleKind.DATASTORE_UNHEALTHY,
                  Severity.CRITICAL, 10 * 60),
        AlertRule("fallback_active", "Fallback active", RuleKind.FALLBACK_ACTIVE,
                  Severity.WARNING, 30 * 60),
    ]
