from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from .graph import reverse_order
from .executors import Executor
from .operations import OPERATION_REGISTRY
from .types import HostConfig, Outcome, Run, TaskResult, TaskSpec

logger = logging.getLogger(__name__)


def _normalize_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _normalize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_normalize_value(v) for v in value]
    if isinstance(value, Path):
        return str(value)
    return value


def _absent(params: dict[str, Any]) -> dict[str, Any]:
    return {**params, "state": "absent"}


TEARDOWN_BUILDERS: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
    "network": _absent,
    "volume": _absent,
    "image": _absent,
    "container": _absent,
    "package": _absent,
    "service": lambda params: {**params, "enabled": False, "state": "stopped"},
}


class StateStore:
    """Remembers what each host was converged to, so dropped resources can be torn down.

    The file maps host -> resource key -> entry and also keeps a summary of
    the last run. Hosts whose run failed, or that were not targeted, keep
    their previous entries untouched.
    """

    def __init__(self, path: Path):
        self.path = path
        data = self._load()
        self.previous: dict[str, dict[str, dict[str, Any]]] = data.get("resources", {})
        self.last_run: Optional[dict[str, Any]] = data.get("last_run")
        self.current: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def record(self, host: str, task: TaskSpec, params: dict[str, Any]) -> None:
        if task.kind not in TEARDOWN_BUILDERS:
            return
        spec = _normalize_value({k: v for k, v in params.items() if not k.startswith("_")})
        entry = {
            "kind": task.kind,
            "task": task.id,
            "params": spec,
            "depends_on": list(task.depends_on),
        }
        with self._lock:
            self.current.setdefault(host, {})[self.resource_key(task.kind, spec)] = entry

    def finalize(
        self,
        run: Run,
        hosts: Iterable[HostConfig],
        executor_factory: Callable[[HostConfig], Executor],
    ) -> list[TaskResult]:
        results: list[TaskResult] = []
        targeted = {host.name: host for host in hosts}
        healthy = {host_run.host for host_run in run.hosts if host_run.ok}
        state: dict[str, dict[str, dict[str, Any]]] = {}

        for host_name in set(self.previous) | set(self.current):
            previous = self.previous.get(host_name, {})
            current = self.current.get(host_name, {})
            host = targeted.get(host_name)
            if host is None or host_name not in healthy:
                if host is None:
                    logger.debug("Skipping cleanup for untargeted host %s", host_name)
                merged = {**previous, **current}
                if merged:
                    state[host_name] = merged
                continue
            for key in reverse_order(previous):
                if key in current:
                    continue
                results.append(self._teardown(host, previous[key], executor_factory))
            if current:
                state[host_name] = current

        self._write(state, run.summary())
        return results

    def _teardown(
        self,
        host: HostConfig,
        entry: dict[str, Any],
        executor_factory: Callable[[HostConfig], Executor],
    ) -> TaskResult:
        kind = str(entry.get("kind"))
        task_id = str(entry.get("task") or kind)
        params = TEARDOWN_BUILDERS[kind](dict(entry.get("params", {})))
        params["_task_id"] = task_id
        try:
            operation = OPERATION_REGISTRY[kind](params)
            result = operation.apply(host, executor_factory(host))
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to tear down %s on host %s: %s", kind, host.name, exc)
            return TaskResult(
                host=host.name,
                task=task_id,
                kind=kind,
                outcome=Outcome.FAILED,
                details=str(exc),
                resource=params.get("name"),
            )
        return replace(result, details=f"teardown: {result.details}")

    @staticmethod
    def resource_key(kind: str, params: dict[str, Any]) -> str:
        name = params.get("name") or params.get("image") or params.get("packages")
        if isinstance(name, list):
            name = ",".join(str(n) for n in name)
        if name:
            return f"{kind}.{name}"
        return json.dumps({"kind": kind, "params": params}, sort_keys=True)

    def _write(self, resources: dict[str, Any], last_run: dict[str, Any]) -> None:
        data = {"resources": resources, "last_run": last_run}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2))
        try:
            os.chmod(self.path, 0o600)
        except OSError:
            logger.debug("Unable to chmod state file %s", self.path, exc_info=True)
        self.previous = resources
        self.last_run = last_run

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except json.JSONDecodeError:
            logger.warning("State file %s is corrupt; starting fresh", self.path)
            return {}
        if not isinstance(data, dict):
            logger.warning("State file %s has an unexpected layout; starting fresh", self.path)
            return {}
        return data
