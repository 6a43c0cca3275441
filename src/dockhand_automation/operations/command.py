from __future__ import annotations

from typing import Any, Optional, Sequence
import logging

from .base import Operation, render
from ..errors import CommandError, ConfigurationError
from ..executors import Executor
from ..secrets import SecretResolver
from ..types import HostConfig, Outcome, TaskResult

logger = logging.getLogger(__name__)


class CommandOperation(Operation):
    """Run a shell command on the target, guarded by ``creates``/``unless``/``only_if``.

    Guards are what make a command idempotent: without any of them the
    command runs on every pass and always reports a change.
    """

    kind = "command"
    secret_resolver = SecretResolver()

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_command = spec.get("command") or spec.get("cmd")
        if raw_command is None:
            raise ConfigurationError("command operation requires a command")
        if not isinstance(raw_command, (str, list, tuple)):
            raise ConfigurationError("command must be a string or list")
        self.raw_command = raw_command
        self.creates: Optional[str] = str(spec["creates"]) if spec.get("creates") else None
        self.unless = spec.get("unless")
        self.only_if = spec.get("only_if")
        returns = spec.get("returns", [0])
        try:
            self.allowed_returns = [int(returns)] if isinstance(returns, int) else [int(v) for v in returns]
        except (TypeError, ValueError) as exc:
            raise ConfigurationError("command returns must be an int or list of ints") from exc

    @property
    def resource(self) -> Optional[str]:
        value = self.spec.get("name")
        return str(value) if value else self.task_id

    def apply(self, host: HostConfig, executor: Executor) -> TaskResult:
        context = self.secret_resolver.resolve(host.variables) if self._templated() else {}

        if self.creates:
            probe = executor.run(["test", "-e", render(self.creates, context)], check=False, mutable=False)
            if probe.returncode == 0:
                return self.result(host, Outcome.UNCHANGED, f"skipped (creates {self.creates})")
        if self.only_if:
            guard = executor.run(self._argv(self.only_if, context), check=False, mutable=False)
            if guard.returncode != 0:
                return self.result(host, Outcome.UNCHANGED, f"skipped (only_if rc={guard.returncode})")
        if self.unless:
            guard = executor.run(self._argv(self.unless, context), check=False, mutable=False)
            if guard.returncode == 0:
                return self.result(host, Outcome.UNCHANGED, "skipped (unless rc=0)")

        command = self._argv(self.raw_command, context)
        if executor.dry_run:
            return self.result(host, Outcome.APPLIED, "dry-run")
        result = executor.run(command, check=False)
        if result.returncode not in self.allowed_returns:
            logger.debug("command failed task=%s rc=%s cmd=%s", self.task_id, result.returncode, " ".join(command))
            raise CommandError(command, result.returncode, result.stderr, result.stdout)
        return self.result(host, Outcome.APPLIED, f"ran (rc={result.returncode})")

    def _templated(self) -> bool:
        values = [self.raw_command, self.creates, self.unless, self.only_if]
        return any("$" in str(v) for v in values if v is not None)

    @staticmethod
    def _argv(value: Any, context: dict[str, Any]) -> list[str]:
        if isinstance(value, str):
            return ["sh", "-c", render(value, context)]
        if isinstance(value, Sequence):
            return [render(str(v), context) for v in value]
        raise ConfigurationError("command/guard must be a string or list")
