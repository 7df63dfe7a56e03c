"""Monitoring snapshot collected on every engine tick."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..collaborators import HealthState, PlatformUsage
from ..failover.models import FallbackStatus


@dataclass(frozen=True)
class MonitoringSnapshot:
    collected_at: datetime
    usage: PlatformUsage | None
    response_time_ms: float
    error_rate: float
    memory_usage: float
    datastore: HealthState
    platform: HealthState
    fallback_active: bool
    service_level: str
    fallback: FallbackStatus | None = None
    active_alerts: dict[str, int] = field(default_factory=dict)

    @property
    def usage_percent(self) -> float | None:
        return self.usage.percent_of_limit if self.usage else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "collected_at": self.collected_at.isoformat(),
            "usage": self.usage.to_dict() if self.usage else None,
            "performance": {
                "response_time_ms": round(self.response_time_ms, 1),
                "error_rate": round(self.error_rate, 2),
                "memory_usage": round(self.memory_usage, 2),
            },
            "health": {
                "datastore": self.datastore.value,
                "platform": self.platform.value,
                "fallback_active": self.fallback_active,
            },
            "active_alerts": dict(self.active_alerts),
            "service_level": self.service_level,
        }
