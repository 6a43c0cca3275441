from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import contextmanager
from string import Template
from typing import Any, Iterator, Optional
import logging
import threading

from ..errors import ConfigurationError, ResourceConflictError
from ..executors import Executor
from ..types import HostConfig, Outcome, TaskResult

logger = logging.getLogger(__name__)


class ResourceLocks:
    """Serialises work on one named resource behind one endpoint."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, str, str], threading.Lock] = defaultdict(threading.Lock)

    @contextmanager
    def hold(self, endpoint: str, kind: str, name: Optional[str]) -> Iterator[None]:
        if not name:
            yield
            return
        with self._guard:
            lock = self._locks[(endpoint, kind, name)]
        with lock:
            yield


RESOURCE_LOCKS = ResourceLocks()


class Operation(ABC):
    """Shared surface for runnable automation tasks."""

    kind = "operation"

    def __init__(self, spec: dict[str, Any]):
        self.spec = spec
        self.task_id = str(spec.get("_task_id") or self.kind)

    @property
    def resource(self) -> Optional[str]:
        value = self.spec.get("name")
        return str(value) if value else None

    @abstractmethod
    def apply(self, host: HostConfig, executor: Executor) -> TaskResult:
        """Perform the operation against ``host`` using ``executor``."""

    def result(self, host: HostConfig, outcome: Outcome, details: str) -> TaskResult:
        return TaskResult(
            host=host.name,
            task=self.task_id,
            kind=self.kind,
            outcome=outcome,
            details=details,
            resource=self.resource,
        )


class ReconcilingOperation(Operation):
    """Operation that compares observed state with desired state and applies the delta.

    Subclasses implement ``observe`` (read-only), ``drift`` (differences between
    the observation and the desired state, empty when converged) and
    ``converge`` (the mutation). ``apply`` ties them together, skips the
    mutation during dry-runs and treats a lost creation race as success when
    the resource ends up in the desired state anyway.
    """

    locks = RESOURCE_LOCKS

    def apply(self, host: HostConfig, executor: Executor) -> TaskResult:
        with self.locks.hold(executor.endpoint, self.kind, self.resource):
            observed = self.observe(host, executor)
            drift = self.drift(observed)
            if not drift:
                return self.result(host, Outcome.UNCHANGED, "noop")
            detail = ", ".join(drift)
            if executor.dry_run:
                return self.result(host, Outcome.APPLIED, f"dry-run ({detail})")
            try:
                self.converge(host, executor, observed, drift)
            except ResourceConflictError as exc:
                if self.drift(self.observe(host, executor)):
                    raise
                logger.debug("kind=%s resource=%s conflict resolved: %s", self.kind, self.resource, exc)
                return self.result(host, Outcome.UNCHANGED, "already exists")
            return self.result(host, Outcome.APPLIED, detail)

    @abstractmethod
    def observe(self, host: HostConfig, executor: Executor) -> Any:
        """Read the current state of the resource."""

    @abstractmethod
    def drift(self, observed: Any) -> list[str]:
        """Describe what differs from the desired state."""

    @abstractmethod
    def converge(self, host: HostConfig, executor: Executor, observed: Any, drift: list[str]) -> None:
        """Change the resource so that ``drift`` becomes empty."""


def coerce_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "on", "1"}:
            return True
        if lowered in {"false", "no", "off", "0"}:
            return False
        raise ConfigurationError(f"Unable to interpret boolean value '{value}'")
    return bool(value)


def require_choice(kind: str, field: str, value: Any, choices: set[str]) -> str:
    text = str(value)
    if text not in choices:
        options = ", ".join(sorted(repr(c) for c in choices))
        raise ConfigurationError(f"{kind} {field} must be one of {options}")
    return text


def string_list(kind: str, field: str, value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    raise ConfigurationError(f"{kind} {field} must be a string or list of strings")


def render(value: str, context: dict[str, Any]) -> str:
    return Template(value).safe_substitute({k: v for k, v in context.items() if not isinstance(v, dict)})
