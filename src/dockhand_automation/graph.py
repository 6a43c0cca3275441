from __future__ import annotations

from typing import Any, Iterable, Sequence

from .errors import ConfigurationError, CycleError
from .types import TaskSpec


def order_tasks(tasks: Sequence[TaskSpec]) -> list[TaskSpec]:
    """Return ``tasks`` in an order where every task follows its dependencies.

    Ties are broken by declaration order, so an already ordered list comes
    back unchanged. Raises ``ConfigurationError`` for duplicate ids or
    references to unknown tasks and ``CycleError`` when no order exists.
    """

    by_id: dict[str, TaskSpec] = {}
    for task in tasks:
        if task.id in by_id:
            raise ConfigurationError(f"duplicate task id '{task.id}'")
        by_id[task.id] = task

    for task in tasks:
        for dep in task.depends_on:
            if dep not in by_id:
                raise ConfigurationError(f"task '{task.id}' depends on unknown task '{dep}'")
            if dep == task.id:
                raise CycleError([task.id])

    position = {task.id: index for index, task in enumerate(tasks)}
    in_degree = {task.id: len(set(task.depends_on)) for task in tasks}
    dependents: dict[str, list[str]] = {task.id: [] for task in tasks}
    for task in tasks:
        for dep in set(task.depends_on):
            dependents[dep].append(task.id)

    ready = sorted((tid for tid, deg in in_degree.items() if deg == 0), key=position.__getitem__)
    ordered: list[str] = []
    while ready:
        current = ready.pop(0)
        ordered.append(current)
        for node in dependents[current]:
            in_degree[node] -= 1
            if in_degree[node] == 0:
                ready.append(node)
        ready.sort(key=position.__getitem__)

    if len(ordered) != len(tasks):
        remaining = {tid for tid in by_id if tid not in set(ordered)}
        raise CycleError(_find_cycle(by_id, remaining))
    return [by_id[tid] for tid in ordered]


def dependents_of(tasks: Iterable[TaskSpec], task_id: str) -> set[str]:
    """Every task that transitively depends on ``task_id``."""

    reverse: dict[str, set[str]] = {}
    for task in tasks:
        for dep in task.depends_on:
            reverse.setdefault(dep, set()).add(task.id)
    found: set[str] = set()
    stack = [task_id]
    while stack:
        for child in reverse.get(stack.pop(), ()):
            if child not in found:
                found.add(child)
                stack.append(child)
    return found


def reverse_order(entries: dict[str, dict[str, Any]]) -> list[str]:
    """Teardown order for recorded state entries: dependents before dependencies.

    Entries carry a ``task`` id and ``depends_on`` list. Unlike ``order_tasks``
    this never raises; entries caught in a cycle keep their recorded order.
    """

    if not entries:
        return []
    task_to_key = {entry.get("task") or key: key for key, entry in entries.items()}
    in_degree: dict[str, int] = {}
    deps_map: dict[str, set[str]] = {}
    for key, entry in entries.items():
        tid = entry.get("task") or key
        deps = {dep for dep in entry.get("depends_on", []) if dep in task_to_key}
        deps_map[tid] = deps
        in_degree[tid] = len(deps)

    queue = [tid for tid, deg in in_degree.items() if deg == 0]
    ordered: list[str] = []
    while queue:
        current = queue.pop(0)
        ordered.append(current)
        for node, deps in deps_map.items():
            if current in deps:
                in_degree[node] -= 1
                if in_degree[node] == 0:
                    queue.append(node)
    for tid in deps_map:
        if tid not in ordered:
            ordered.append(tid)
    ordered.reverse()
    return [task_to_key[tid] for tid in ordered]


def _find_cycle(by_id: dict[str, TaskSpec], candidates: set[str]) -> list[str]:
    # Walk dependency edges inside the unresolved set until a node repeats.
    start = min(candidates, key=list(by_id).index)
    path: list[str] = []
    seen: dict[str, int] = {}
    node = start
    while node not in seen:
        seen[node] = len(path)
        path.append(node)
        node = next(dep for dep in by_id[node].depends_on if dep in candidates)
    return path[seen[node]:]
