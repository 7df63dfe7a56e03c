"""Failover data models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from ..collaborators import HealthState


class FallbackKind(str, Enum):
    URGENT = "urgent"
    MAINTENANCE = "maintenance"
    HEALTH = "health"


class FailoverPolicy(str, Enum):
    ANY_SIGNAL = "any_signal"  # datastore or scheduler unhealthy is enough
    CORROBORATED = "corroborated"  # at least two unhealthy signals


@dataclass(frozen=True)
class PlatformHealth:
    api: HealthState
    scheduler: HealthState
    datastore: HealthState
    last_scheduled_run_at: datetime | None
    hours_since_last_run: float | None
    checked_at: datetime

    def unhealthy_signals(self) -> list[str]:
        return [
            name
            for name, state in (("api", self.api), ("scheduler", self.scheduler), ("datastore", self.datastore))
            if state is HealthState.UNHEALTHY
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "api": self.api.value,
            "scheduler": self.scheduler.value,
            "datastore": self.datastore.value,
            "last_scheduled_run_at": self.last_scheduled_run_at.isoformat() if self.last_scheduled_run_at else None,
            "hours_since_last_run": round(self.hours_since_last_run, 2) if self.hours_since_last_run is not None else None,
            "checked_at": self.checked_at.isoformat(),
        }


@dataclass(frozen=True)
class FallbackStatus:
    is_primary_down: bool
    reason: str
    last_check: datetime
    active: bool
    next_check: datetime
    health: PlatformHealth | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_primary_down": self.is_primary_down,
            "reason": self.reason,
            "last_check": self.last_check.isoformat(),
            "active": self.active,
            "next_check": self.next_check.isoformat(),
            "health": self.health.to_dict() if self.health else None,
        }
