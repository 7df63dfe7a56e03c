"""Graceful degradation: load sampling and the service-level state machine."""

from .controller import ServiceLevelController, transition_severity
from .load import HostMetrics, LoadAssessor, RequestStats
from .models import (
    LEVEL_CAPABILITIES,
    DegradationStatus,
    LevelChange,
    ServiceLevel,
    SystemLoadSample,
)

__all__ = [
    "ServiceLevelController",
    "transition_severity",
    "HostMetrics",
    "LoadAssessor",
    "RequestStats",
    "LEVEL_CAPABILITIES",
    "DegradationStatus",
    "LevelChange",
    "ServiceLevel",
    "SystemLoadSample",
]
