from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Optional

from .documents import load_document
from .errors import ConfigurationError
from .graph import order_tasks
from .types import TaskSet, TaskSpec

RESERVED_KEYS = {"id", "kind", "type", "params", "depends_on", "retries", "timeout", "on_success", "on_failure"}


class TaskSetLoader:
    """Loads task sets from TOML or YAML files.

    Each task needs an ``id`` (``name`` is accepted too) and a ``kind``.
    Desired state goes in ``params``; any other unreserved keys are folded
    into ``params`` as well so short tasks can stay flat. Dependencies are
    validated here so a broken graph is reported before anything runs.
    """

    def __init__(self, registry: Optional[Mapping[str, Any]] = None):
        self.registry = registry

    def load(self, path: Path) -> TaskSet:
        path = Path(path)
        data = load_document(path)
        try:
            taskset = self.parse(data)
        except ConfigurationError as exc:
            raise ConfigurationError(f"{path}: {exc}") from exc
        return taskset

    def parse(self, data: dict[str, Any]) -> TaskSet:
        raw_hosts = data.get("hosts", "all")
        if isinstance(raw_hosts, str):
            hosts = [raw_hosts]
        elif isinstance(raw_hosts, list) and raw_hosts:
            hosts = [str(h) for h in raw_hosts]
        else:
            raise ConfigurationError("hosts must be a group/host name or a non-empty list of them")

        raw_tasks = data.get("tasks", [])
        if not isinstance(raw_tasks, list):
            raise ConfigurationError("tasks must be a list")
        tasks = [self._parse_task(raw, f"task {index}") for index, raw in enumerate(raw_tasks, start=1)]
        order_tasks(tasks)
        return TaskSet(tasks=tasks, hosts=hosts)

    def _parse_task(self, raw: Any, where: str, default_id: Optional[str] = None, handler: bool = False) -> TaskSpec:
        if not isinstance(raw, dict):
            raise ConfigurationError(f"{where} must be a mapping")
        # ``name`` doubles as the id only when there is no explicit one.
        name_is_id = not raw.get("id") and bool(raw.get("name"))
        task_id = raw.get("id") or raw.get("name") or default_id
        if not task_id:
            raise ConfigurationError(f"{where} is missing an id")
        task_id = str(task_id)
        kind = raw.get("kind") or raw.get("type")
        if not kind:
            raise ConfigurationError(f"task '{task_id}' is missing a kind")
        kind = str(kind)
        if self.registry is not None and kind not in self.registry:
            raise ConfigurationError(f"task '{task_id}' uses unknown kind '{kind}'")

        params = raw.get("params") or {}
        if not isinstance(params, dict):
            raise ConfigurationError(f"task '{task_id}' params must be a mapping")
        extras = {k: v for k, v in raw.items() if k not in RESERVED_KEYS and not (k == "name" and name_is_id)}
        params = {**extras, **params}

        depends = raw.get("depends_on") or []
        if handler and depends:
            raise ConfigurationError(f"handler '{task_id}' cannot declare depends_on; it runs right after its parent")
        if isinstance(depends, str):
            depends_on = [depends]
        elif isinstance(depends, list):
            depends_on = [str(d) for d in depends]
        else:
            raise ConfigurationError(f"task '{task_id}' depends_on must be a task id or a list of them")

        return TaskSpec(
            id=task_id,
            kind=kind,
            params=params,
            depends_on=depends_on,
            retries=_optional_number(raw.get("retries"), int, f"task '{task_id}' retries"),
            timeout=_optional_number(raw.get("timeout"), float, f"task '{task_id}' timeout"),
            on_success=self._parse_handlers(raw.get("on_success"), task_id, "on_success"),
            on_failure=self._parse_handlers(raw.get("on_failure"), task_id, "on_failure"),
        )

    def _parse_handlers(self, value: Any, parent: str, hook: str) -> list[TaskSpec]:
        if not value:
            return []
        items = value if isinstance(value, list) else [value]
        return [
            self._parse_task(raw, f"task '{parent}' {hook}[{idx}]", default_id=f"{parent}.{hook}.{idx}", handler=True)
            for idx, raw in enumerate(items, start=1)
        ]


def _optional_number(value: Any, cast, where: str):
    if value is None:
        return None
    try:
        number = cast(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{where} must be numeric") from None
    if number < 0:
        raise ConfigurationError(f"{where} must not be negative")
    return number

