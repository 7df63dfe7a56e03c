"""Remote workflow run types, parsed from the CI API's JSON."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

TERMINAL_STATUSES = frozenset({"completed", "cancelled", "failure", "timed_out"})


@dataclass(frozen=True)
class WorkflowTriggerResult:
    success: bool
    run_id: int | None = None
    error: str | None = None
    workflow_url: str | None = None
    estimated_duration_s: int = 0


@dataclass(frozen=True)
class WorkflowStatus:
    id: int
    status: str
    conclusion: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    run_started_at: str | None = None
    url: str | None = None
    html_url: str | None = None
    workflow_id: int | None = None
    head_branch: str | None = None
    head_sha: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> WorkflowStatus:
        return cls(
            id=int(data["id"]),
            status=data.get("status") or "unknown",
            conclusion=data.get("conclusion"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            run_started_at=data.get("run_started_at"),
            url=data.get("url"),
            html_url=data.get("html_url"),
            workflow_id=data.get("workflow_id"),
            head_branch=data.get("head_branch"),
            head_sha=data.get("head_sha"),
        )


@dataclass(frozen=True)
class WorkflowStep:
    name: str
    status: str
    conclusion: str | None
    number: int

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> WorkflowStep:
        return cls(
            name=data.get("name", ""),
            status=data.get("status", "unknown"),
            conclusion=data.get("conclusion"),
            number=int(data.get("number", 0)),
        )


@dataclass(frozen=True)
class WorkflowJob:
    id: int
    name: str
    status: str
    conclusion: str | None
    started_at: str | None
    completed_at: str | None
    steps: list[WorkflowStep] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> WorkflowJob:
        return cls(
            id=int(data["id"]),
            name=data.get("name", ""),
            status=data.get("status", "unknown"),
            conclusion=data.get("conclusion"),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            steps=[WorkflowStep.from_api(s) for s in data.get("steps") or []],
        )


@dataclass(frozen=True)
class WorkflowRun:
    id: int
    name: str
    status: str
    conclusion: str | None
    created_at: str | None
    updated_at: str | None
    html_url: str | None
    jobs: list[WorkflowJob] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any], jobs: list[WorkflowJob]) -> WorkflowRun:
        return cls(
            id=int(data["id"]),
            name=data.get("name", ""),
            status=data.get("status") or "unknown",
            conclusion=data.get("conclusion"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            html_url=data.get("html_url"),
            jobs=jobs,
        )


@dataclass(frozen=True)
class JobLogs:
    job_id: int
    name: str
    lines: list[str]


@dataclass(frozen=True)
class WorkflowLogs:
    run_id: int
    jobs: list[JobLogs]


@dataclass(frozen=True)
class FlowInfo:
    id: int
    name: str
    path: str
    state: str

    @property
    def file_name(self) -> str:
        return self.path.rsplit("/", 1)[-1]
