"""Degradation state types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class ServiceLevel(str, Enum):
    """Ordered from least to most degraded."""

    FULL = "full"
    ESSENTIAL = "essential"
    MINIMAL = "minimal"
    FALLBACK = "fallback"

    @property
    def rank(self) -> int:
        return list(ServiceLevel).index(self)


# Capabilities the business layer keeps at each level.
LEVEL_CAPABILITIES: dict[ServiceLevel, frozenset[str]] = {
    ServiceLevel.FULL: frozenset({"scheduled_audits", "detailed_reports", "auto_corrections", "critical_alerts"}),
    ServiceLevel.ESSENTIAL: frozenset({"scheduled_audits", "critical_alerts"}),
    ServiceLevel.MINIMAL: frozenset({"critical_alerts"}),
    ServiceLevel.FALLBACK: frozenset(),
}


@dataclass(frozen=True)
class SystemLoadSample:
    cpu_usage: float
    memory_usage: float
    quota_usage: float
    error_rate: float
    response_time_ms: float
    active_connections: int
    sampled_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "cpu_usage": round(self.cpu_usage, 2),
            "memory_usage": round(self.memory_usage, 2),
            "quota_usage": round(self.quota_usage, 2),
            "error_rate": round(self.error_rate, 2),
            "response_time_ms": round(self.response_time_ms, 1),
            "active_connections": self.active_connections,
            "sampled_at": self.sampled_at.isoformat(),
        }


@dataclass(frozen=True)
class LevelChange:
    from_level: ServiceLevel
    to_level: ServiceLevel
    reason: str
    changed_at: datetime
    sample: SystemLoadSample | None = None
    forced: bool = False

    @property
    def is_worsening(self) -> bool:
        return self.to_level.rank > self.from_level.rank

    def to_audit_event(self) -> dict[str, Any]:
        return {
            "event": "level_change",
            "from_level": self.from_level.value,
            "to_level": self.to_level.value,
            "reason": self.reason,
            "forced": self.forced,
            "changed_at": self.changed_at.isoformat(),
            "sample": self.sample.to_dict() if self.sample else None,
        }


@dataclass(frozen=True)
class DegradationStatus:
    current_level: ServiceLevel
    previous_level: ServiceLevel | None
    changed_at: datetime
    reason: str
    last_sample: SystemLoadSample | None
    next_check_at: datetime | None
    stability_remaining_s: float
    pending_level: ServiceLevel | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_level": self.current_level.value,
            "previous_level": self.previous_level.value if self.previous_level else None,
            "changed_at": self.changed_at.isoformat(),
            "reason": self.reason,
            "last_sample": self.last_sample.to_dict() if self.last_sample else None,
            "next_check_at": self.next_check_at.isoformat() if self.next_check_at else None,
            "stability_remaining_s": round(self.stability_remaining_s, 1),
            "pending_level": self.pending_level.value if self.pending_level else None,
        }
