"""Remote workflow execution on the CI system used as the fallback runner."""

from .executor import RemoteWorkflowExecutor, estimate_duration
from .models import (
    TERMINAL_STATUSES,
    FlowInfo,
    JobLogs,
    WorkflowJob,
    WorkflowLogs,
    WorkflowRun,
    WorkflowStatus,
    WorkflowTriggerResult,
)

__all__ = [
    "RemoteWorkflowExecutor",
    "estimate_duration",
    "TERMINAL_STATUSES",
    "FlowInfo",
    "JobLogs",
    "WorkflowJob",
    "WorkflowLogs",
    "WorkflowRun",
    "WorkflowStatus",
    "WorkflowTriggerResult",
]
