from __future__ import annotations

import argparse
import importlib
import importlib.util
import logging
import os
import sys
import threading
from pathlib import Path
from typing import Optional, Sequence

from .config import DEFAULT_CONFIG, DockhandConfig, load_config
from .errors import ConfigurationError
from .inventory import InventoryLoader
from .operations import OPERATION_REGISTRY
from .runner import RetryPolicy, TaskRunner
from .state import StateStore
from .taskset import TaskSetLoader
from .types import Outcome, Plan, Run, TaskResult, TaskSpec

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_HOST_FAILED = 2


class Ansi:
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    GREY = "\033[90m"
    RESET = "\033[0m"


def colorize(text: str, color: Optional[str]) -> str:
    if not color:
        return text
    if not sys.stdout.isatty() or os.environ.get("NO_COLOR"):
        return text
    return f"{color}{text}{Ansi.RESET}"

_last_progress_len = 0
_progress_lock = threading.Lock()


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Dockhand container deployment runner")
    parser.add_argument("inventory", nargs="?", default=None, type=Path, help="Inventory file (TOML or YAML)")
    parser.add_argument("tasks", nargs="?", default=None, type=Path, help="Task set file (TOML or YAML)")
    parser.add_argument("--limit", action="append", help="Only run on these hosts or groups (repeatable)")
    parser.add_argument(
        "--state-file",
        type=Path,
        help="Location for run state (default: task set + .state.json)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Path to dockhand config file (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument("--dry-run", action="store_true", help="Calculate changes without executing")
    parser.add_argument("--retries", type=int, help="Retries for transient failures (default from config: 2)")
    parser.add_argument("--forks", type=int, help="Hosts handled in parallel (default from config: 5)")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO)",
    )
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(levelname)s %(name)s - %(message)s",
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        cfg = load_config(args.config)
        _apply_aws_env(cfg)
        _load_plugins(cfg)
    except (ConfigurationError, ImportError) as exc:
        print(colorize(f"Configuration failed: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_ERROR

    inventory_path = args.inventory or cfg.inventory
    tasks_path = args.tasks or cfg.tasks
    if not inventory_path or not tasks_path:
        print(colorize("An inventory and a task set are required", Ansi.RED), file=sys.stderr)
        return EXIT_ERROR

    try:
        hosts = InventoryLoader().load(inventory_path)
        taskset = TaskSetLoader(OPERATION_REGISTRY).load(tasks_path)
    except ConfigurationError as exc:
        print(colorize(f"Plan validation failed: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_ERROR

    state_path = args.state_file or cfg.state_file
    if not state_path:
        state_path = tasks_path.with_name(tasks_path.name + ".state.json")
    state_store = None if args.dry_run else StateStore(state_path)

    runner = TaskRunner(
        Plan(hosts=hosts, taskset=taskset),
        dry_run=args.dry_run,
        state_store=state_store,
        retry_policy=RetryPolicy(
            retries=args.retries if args.retries is not None else cfg.retries,
            base_delay=cfg.retry_delay,
            max_delay=cfg.retry_max_delay,
        ),
        max_workers=args.forks or cfg.forks,
        default_timeout=cfg.timeout,
        limit=args.limit,
        param_defaults={"docker_binary": cfg.docker_binary},
        ssh_options=cfg.ssh_options,
        progress_callback=print_progress,
    )
    try:
        run = runner.run()
    except ConfigurationError as exc:
        _clear_progress()
        print(colorize(f"Plan validation failed: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_ERROR
    except Exception as exc:  # noqa: BLE001
        _clear_progress()
        if logging.getLogger().isEnabledFor(logging.DEBUG):
            raise
        print(colorize(f"Execution failed: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_ERROR

    _clear_progress()
    effective_level = logging.getLogger().getEffectiveLevel()
    summary = Summary()
    for result in run.results:
        summary.add(result)
        if should_display_result(result, effective_level):
            print(format_result(result))
    print(summary.render())

    if run.ok:
        return EXIT_OK
    for line in failure_report(run):
        print(colorize(line, Ansi.RED), file=sys.stderr)
    return EXIT_HOST_FAILED


STATUS_COLORS = {
    Outcome.APPLIED: Ansi.GREEN,
    Outcome.UNCHANGED: Ansi.BLUE,
    Outcome.FAILED: Ansi.RED,
    Outcome.SKIPPED: Ansi.GREY,
}


def format_result(result: TaskResult) -> str:
    resource = f"[{result.resource}]" if result.resource else ""
    retried = f" (attempts={result.attempts})" if result.attempts > 1 else ""
    line = f"{result.host}::{result.kind}{resource} {result.outcome.value} - {result.details}{retried}"
    return colorize(line, STATUS_COLORS[result.outcome])


def should_display_result(result: TaskResult, log_level: int) -> bool:
    if result.outcome is not Outcome.UNCHANGED:
        return True
    return log_level <= logging.DEBUG


def failure_report(run: Run) -> list[str]:
    lines = []
    for host_run in run.hosts:
        if host_run.ok:
            continue
        failed = next((r for r in host_run.results if r.task == host_run.failed_task and r.failed), None)
        detail = failed.details if failed else "unknown error"
        lines.append(f"{host_run.host}: failed at {host_run.failed_task} - {detail}")
    for result in run.teardown:
        if result.failed:
            lines.append(f"{result.host}: teardown of {result.task} failed - {result.details}")
    return lines


def print_progress(host, task: TaskSpec) -> None:
    global _last_progress_len
    if not sys.stdout.isatty():
        return
    line = f"{host.name}::{task.kind}[{task.id}] pending..."
    with _progress_lock:
        padding = " " * max(_last_progress_len - len(line), 0)
        _last_progress_len = len(line)
        print(colorize(line, Ansi.YELLOW) + padding, end="\r", flush=True)


def _clear_progress() -> None:
    global _last_progress_len
    with _progress_lock:
        if _last_progress_len:
            print(" " * _last_progress_len, end="\r", flush=True)
            _last_progress_len = 0


def _apply_aws_env(cfg: DockhandConfig) -> None:
    if cfg.aws_profile and "AWS_PROFILE" not in os.environ:
        os.environ["AWS_PROFILE"] = cfg.aws_profile
    if cfg.aws_region:
        if "AWS_REGION" not in os.environ:
            os.environ["AWS_REGION"] = cfg.aws_region
        if "AWS_DEFAULT_REGION" not in os.environ:
            os.environ["AWS_DEFAULT_REGION"] = cfg.aws_region


def _load_plugins(cfg: DockhandConfig) -> None:
    """Import plugin files/modules and let them add kinds to the operation registry."""

    for directory in cfg.plugin_dirs:
        if not directory.is_dir():
            logging.warning("Plugin directory %s does not exist", directory)
            continue
        for path in sorted(directory.glob("*.py")):
            spec = importlib.util.spec_from_file_location(f"dockhand_plugin_{path.stem}", path)
            if spec is None or spec.loader is None:
                raise ImportError(f"cannot load plugin {path}")
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)
            _register(module, str(path))
    for name in cfg.plugin_modules:
        _register(importlib.import_module(name), name)


def _register(module, origin: str) -> None:
    hook = getattr(module, "register_operations", None)
    if hook is None:
        logging.warning("Plugin %s has no register_operations(); skipped", origin)
        return
    hook(OPERATION_REGISTRY)
    logging.debug("Loaded plugin %s", origin)


class Summary:
    def __init__(self) -> None:
        self.counts = {outcome: 0 for outcome in Outcome}

    def add(self, result: TaskResult) -> None:
        self.counts[result.outcome] += 1

    def render(self) -> str:
        text = " | ".join(f"{outcome.value.capitalize()}: {count}" for outcome, count in self.counts.items())
        color = Ansi.GREEN if self.counts[Outcome.FAILED] == 0 else Ansi.RED
        return colorize(text, color)


if __name__ == "__main__":
    raise SystemExit(main())
