from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterable, Optional, Sequence
import logging
import time
import uuid

from .errors import is_retryable
from .executors import DEFAULT_TIMEOUT, Executor, executor_for
from .graph import order_tasks
from .inventory import select_hosts
from .operations import OPERATION_REGISTRY, Operation
from .types import HostConfig, HostRun, Outcome, Plan, Run, TaskResult, TaskSpec

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """Bounded exponential backoff for transient (connection) failures."""

    retries: int = 2
    base_delay: float = 1.0
    max_delay: float = 30.0
    factor: float = 2.0

    def delay(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * self.factor ** max(attempt - 1, 0))


class TaskRunner:
    """Coordinates the execution of a task set across the targeted hosts.

    Hosts run in parallel; tasks on one host run one after another in
    dependency order. The first failure on a host stops that host, the
    remaining tasks are reported as skipped, and other hosts carry on.
    """

    def __init__(
        self,
        plan: Plan,
        *,
        dry_run: bool = False,
        state_store=None,
        retry_policy: Optional[RetryPolicy] = None,
        max_workers: int = 5,
        default_timeout: Optional[float] = DEFAULT_TIMEOUT,
        limit: Optional[Sequence[str]] = None,
        param_defaults: Optional[dict[str, Any]] = None,
        ssh_options: Optional[Sequence[str]] = None,
        progress_callback: Optional[Callable[[HostConfig, TaskSpec], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.plan = plan
        self.dry_run = dry_run
        self.state_store = state_store
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_workers = max(1, max_workers)
        self.default_timeout = default_timeout
        self.limit = list(limit) if limit else None
        self.param_defaults = dict(param_defaults or {})
        self.ssh_options = list(ssh_options or [])
        self.progress_callback = progress_callback
        self.sleep = sleep

    def run(self) -> Run:
        ordered = order_tasks(self.plan.taskset.tasks)
        hosts = select_hosts(self.plan.hosts, self.plan.taskset.hosts, self.limit)
        logger.debug("hosts=%s order=%s", ",".join(h.name for h in hosts), ",".join(t.id for t in ordered))

        started = time.time()
        if len(hosts) <= 1 or self.max_workers == 1:
            host_runs = [self._run_host(host, ordered) for host in hosts]
        else:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(hosts))) as pool:
                host_runs = list(pool.map(lambda host: self._run_host(host, ordered), hosts))

        run = Run(
            run_id=uuid.uuid4().hex,
            started_at=started,
            finished_at=time.time(),
            dry_run=self.dry_run,
            hosts=tuple(host_runs),
        )
        if self.state_store and not self.dry_run:
            teardown = self.state_store.finalize(run, hosts, self._executor_for)
            run = replace(run, teardown=tuple(teardown), finished_at=time.time())
        return run

    def _run_host(self, host: HostConfig, ordered: Iterable[TaskSpec]) -> HostRun:
        results: list[TaskResult] = []
        succeeded: set[str] = set()
        failed_task: Optional[str] = None
        for task in ordered:
            if failed_task is not None:
                results.append(self._skipped(host, task, f"host stopped after '{failed_task}' failed"))
                continue
            unmet = [dep for dep in task.depends_on if dep not in succeeded]
            if unmet:
                results.append(self._skipped(host, task, f"dependency '{unmet[0]}' not met"))
                continue
            task_results = self._run_task(host, task)
            results.extend(task_results)
            failures = [r for r in task_results if r.failed]
            if failures:
                failed_task = failures[0].task
            else:
                succeeded.add(task.id)
        if failed_task:
            logger.warning("host=%s stopped at task=%s", host.name, failed_task)
        return HostRun(host=host.name, results=tuple(results), failed_task=failed_task)

    def _run_task(self, host: HostConfig, task: TaskSpec) -> list[TaskResult]:
        if self.progress_callback:
            self.progress_callback(host, task)
        params = {**self.param_defaults, **task.params, "_task_id": task.id}
        result = self._apply_with_retries(host, task, params)
        logger.debug(
            "task=%s host=%s outcome=%s attempts=%s", task.id, host.name, result.outcome.value, result.attempts
        )

        results = [result]
        if result.failed:
            for handler in task.on_failure:
                results.extend(self._run_task(host, handler))
            return results

        if self.state_store and not self.dry_run:
            self.state_store.record(host.name, task, params)
        if result.changed:
            for handler in task.on_success:
                results.extend(self._run_task(host, handler))
        return results

    def _apply_with_retries(self, host: HostConfig, task: TaskSpec, params: dict[str, Any]) -> TaskResult:
        operation_cls = OPERATION_REGISTRY.get(task.kind)
        if not operation_cls:
            detail = f"unknown operation kind '{task.kind}'"
            logger.warning(detail)
            return self._failed(host, task, detail, attempts=1, params=params)

        retries = task.retries if task.retries is not None else self.retry_policy.retries
        attempts = 0
        while True:
            attempts += 1
            try:
                operation: Operation = operation_cls(params)
                result = operation.apply(host, self._executor_for(host, task.timeout))
            except Exception as exc:  # noqa: BLE001
                if is_retryable(exc) and attempts <= retries:
                    delay = self.retry_policy.delay(attempts)
                    logger.warning(
                        "task=%s host=%s attempt=%s transient failure, retrying in %.1fs: %s",
                        task.id,
                        host.name,
                        attempts,
                        delay,
                        exc,
                    )
                    self.sleep(delay)
                    continue
                logger.error("task=%s host=%s failed: %s", task.id, host.name, exc, exc_info=True)
                return self._failed(host, task, str(exc), attempts=attempts, params=params)
            break

        return replace(
            result,
            task=task.id,
            kind=task.kind,
            attempts=attempts,
            resource=result.resource if result.resource is not None else _resource_name(params),
        )

    def _executor_for(self, host: HostConfig, timeout: Optional[float] = None) -> Executor:
        return executor_for(
            host,
            dry_run=self.dry_run,
            default_timeout=timeout if timeout is not None else self.default_timeout,
            ssh_options=self.ssh_options,
        )

    @staticmethod
    def _failed(host: HostConfig, task: TaskSpec, detail: str, *, attempts: int, params: dict[str, Any]) -> TaskResult:
        return TaskResult(
            host=host.name,
            task=task.id,
            kind=task.kind,
            outcome=Outcome.FAILED,
            details=detail,
            attempts=attempts,
            resource=_resource_name(params),
        )

    @staticmethod
    def _skipped(host: HostConfig, task: TaskSpec, reason: str) -> TaskResult:
        return TaskResult(
            host=host.name,
            task=task.id,
            kind=task.kind,
            outcome=Outcome.SKIPPED,
            details=f"skipped ({reason})",
            attempts=0,
            resource=_resource_name(task.params),
        )


def _resource_name(data: dict[str, Any]) -> Optional[str]:
    for key in ("name", "image", "service"):
        value = data.get(key)
        if value:
            return str(value)
    pkgs = data.get("packages")
    if isinstance(pkgs, (list, tuple)) and pkgs:
        rendered = ", ".join(str(p) for p in pkgs[:3])
        if len(pkgs) > 3:
            rendered += ", ..."
        return rendered
    return None
