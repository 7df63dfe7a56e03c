"""Failover: primary-platform health verdicts and remote fallback activation."""

from .coordinator import FLOWS, FailoverCoordinator
from .health import RestHealthProvider
from .models import FailoverPolicy, FallbackKind, FallbackStatus, PlatformHealth

__all__ = [
    "FLOWS",
    "FailoverCoordinator",
    "RestHealthProvider",
    "FailoverPolicy",
    "FallbackKind",
    "FallbackStatus",
    "PlatformHealth",
]
