"""Interfaces of the collaborators the control plane consumes, with no-op defaults."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Protocol, runtime_checkable

logger = logging.getLogger("linkwatch.collaborators")

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return list(Severity).index(self)


class HealthState(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    SLOW = "slow"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"

    @classmethod
    def coerce(cls, value: Any) -> HealthState:
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class PlatformUsage:
    invocations: int = 0
    compute_units: float = 0.0
    percent_of_limit: float = 0.0
    projected_monthly: float = 0.0
    projected_percent: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "invocations": self.invocations,
            "compute_units": round(self.compute_units, 3),
            "percent_of_limit": round(self.percent_of_limit, 2),
            "projected_monthly": round(self.projected_monthly),
            "projected_percent": round(self.projected_percent, 2),
        }


@dataclass
class Notification:
    severity: Severity
    title: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    source: str = "linkwatch"
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    ts: str = field(default_factory=lambda: utcnow().isoformat())


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

@runtime_checkable
class MetricsProvider(Protocol):
    async def get_usage(self) -> PlatformUsage: ...


@runtime_checkable
class HealthProvider(Protocol):
    async def get_datastore_health(self) -> HealthState: ...

    async def get_api_health(self) -> HealthState: ...

    async def get_last_scheduled_run_time(self) -> datetime | None: ...


@runtime_checkable
class SnapshotSource(Protocol):
    async def latest_snapshot(self) -> dict[str, Any] | None: ...


@runtime_checkable
class NotificationSink(Protocol):
    async def send(self, notification: Notification) -> None: ...


@runtime_checkable
class AuditLog(Protocol):
    def append(self, event: dict[str, Any]) -> None: ...


# ---------------------------------------------------------------------------
# No-op implementations
# ---------------------------------------------------------------------------

class NullMetricsProvider:
    async def get_usage(self) -> PlatformUsage:
        return PlatformUsage()


class NullHealthProvider:
    async def get_datastore_health(self) -> HealthState:
        return HealthState.UNKNOWN

    async def get_api_health(self) -> HealthState:
        return HealthState.UNKNOWN

    async def get_last_scheduled_run_time(self) -> datetime | None:
        return None


class NullSnapshotSource:
    async def latest_snapshot(self) -> dict[str, Any] | None:
        return None


class NullNotificationSink:
    """Logs notifications instead of delivering them."""

    async def send(self, notification: Notification) -> None:
        logger.info("Notification [%s] %s: %s", notification.severity.value, notification.title, notification.message)


class NullAuditLog:
    def append(self, event: dict[str, Any]) -> None:
        logger.debug("Audit event dropped: %s", event.get("event"))
