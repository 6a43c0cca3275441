from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


@dataclass
class HostConfig:
    name: str
    connection: str = "local"
    address: Optional[str] = None
    user: Optional[str] = None
    port: Optional[int] = None
    identity_file: Optional[str] = None
    groups: list[str] = field(default_factory=list)
    variables: dict[str, Any] = field(default_factory=dict)


@dataclass
class TaskSpec:
    id: str
    kind: str
    params: dict[str, Any] = field(default_factory=dict)
    depends_on: list[str] = field(default_factory=list)
    retries: Optional[int] = None
    timeout: Optional[float] = None
    on_success: list["TaskSpec"] = field(default_factory=list)
    on_failure: list["TaskSpec"] = field(default_factory=list)


@dataclass
class TaskSet:
    tasks: list[TaskSpec]
    hosts: list[str] = field(default_factory=lambda: ["all"])


@dataclass
class Plan:
    hosts: dict[str, HostConfig]
    taskset: TaskSet


class Outcome(str, Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class TaskResult:
    host: str
    task: str
    kind: str
    outcome: Outcome
    details: str
    attempts: int = 1
    resource: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.outcome is Outcome.APPLIED

    @property
    def failed(self) -> bool:
        return self.outcome is Outcome.FAILED


@dataclass(frozen=True)
class HostRun:
    host: str
    results: tuple[TaskResult, ...]
    failed_task: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.failed_task is None


@dataclass(frozen=True)
class Run:
    """Record of one execution of a task set; never mutated after creation."""

    run_id: str
    started_at: float
    finished_at: float
    dry_run: bool
    hosts: tuple[HostRun, ...]
    teardown: tuple[TaskResult, ...] = ()

    @property
    def ok(self) -> bool:
        if any(result.failed for result in self.teardown):
            return False
        return all(host_run.ok for host_run in self.hosts)

    @property
    def results(self) -> list[TaskResult]:
        executed = [result for host_run in self.hosts for result in host_run.results]
        return executed + list(self.teardown)

    @property
    def failures(self) -> dict[str, str]:
        return {h.host: h.failed_task for h in self.hosts if h.failed_task is not None}

    def summary(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "dry_run": self.dry_run,
            "hosts": {
                h.host: {
                    "ok": h.ok,
                    "failed_task": h.failed_task,
                    "outcomes": {r.task: r.outcome.value for r in h.results},
                }
                for h in self.hosts
            },
        }
