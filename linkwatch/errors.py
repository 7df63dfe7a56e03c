"""Exception types shared across the control plane."""

from __future__ import annotations

from datetime import datetime


class LinkwatchError(Exception):
    """Base class for control plane errors."""


class ConfigurationError(LinkwatchError):
    """Raised when configuration values are inconsistent or out of range."""


class BreakerOpenError(LinkwatchError):
    """Raised when a call is rejected because its breaker is open."""

    def __init__(self, name: str, retry_at: datetime | None) -> None:
        self.name = name
        self.retry_at = retry_at
        when = retry_at.isoformat() if retry_at else "unknown"
        super().__init__(f"circuit breaker '{name}' is open (retry at {when})")


class TransientOperationFailure(LinkwatchError):
    """A guarded operation failed in a way that is expected to recover."""


class OperationTimeoutError(TransientOperationFailure):
    def __init__(self, name: str, timeout_s: float) -> None:
        self.name = name
        self.timeout_s = timeout_s
        super().__init__(f"operation '{name}' timed out after {timeout_s:g}s")


class RemoteTriggerError(LinkwatchError):
    """Dispatching a remote workflow failed."""


class RemoteFetchError(LinkwatchError):
    """Reading from a remote HTTP API failed."""


class SyncError(LinkwatchError):
    """Raised when every configured snapshot target failed."""


class MonitoringCycleError(LinkwatchError):
    """Wraps any exception escaping a monitoring cycle."""
