from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Union
import logging
import os
import shlex
import subprocess

from .errors import CommandError, ConfigurationError, HostConnectionError
from .types import HostConfig

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300.0
SSH_TRANSPORT_FAILURE = 255


@dataclass
class CommandResult:
    command: list[str]
    stdout: str
    stderr: str
    returncode: int


class Executor:
    """Base executor abstraction used by operations."""

    def __init__(
        self,
        host: HostConfig,
        *,
        dry_run: bool = False,
        default_timeout: Optional[float] = DEFAULT_TIMEOUT,
    ):
        self.host = host
        self.dry_run = dry_run
        self.default_timeout = default_timeout

    @property
    def endpoint(self) -> str:
        raise NotImplementedError

    def run(
        self,
        command: Sequence[str],
        *,
        check: bool = True,
        mutable: bool = True,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run ``command`` and optionally skip it during dry-runs."""

        cmd_list = [str(part) for part in command]
        if self.dry_run and mutable:
            return CommandResult(cmd_list, "", "skipped (dry-run)", 0)

        limit = timeout if timeout is not None else self.default_timeout
        argv, exec_env, exec_cwd = self._prepare(cmd_list, env=env, cwd=cwd)
        logger.debug("endpoint=%s run=%s timeout=%s", self.endpoint, " ".join(cmd_list), limit)
        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                check=False,
                env=exec_env,
                cwd=exec_cwd,
                timeout=limit,
            )
        except subprocess.TimeoutExpired as exc:
            raise HostConnectionError(
                f"{self.endpoint}: '{cmd_list[0]}' timed out after {exc.timeout}s"
            ) from exc
        except FileNotFoundError as exc:
            raise CommandError(cmd_list, 127, str(exc)) from exc

        self._check_transport(proc)
        if check and proc.returncode != 0:
            raise CommandError(cmd_list, proc.returncode, proc.stderr, proc.stdout)
        return CommandResult(cmd_list, proc.stdout, proc.stderr, proc.returncode)

    def _prepare(
        self,
        command: list[str],
        *,
        env: Optional[dict[str, str]],
        cwd: Optional[Union[str, Path]],
    ) -> tuple[list[str], Optional[dict[str, str]], Optional[str]]:
        raise NotImplementedError

    def _check_transport(self, proc: subprocess.CompletedProcess) -> None:
        return None


class LocalExecutor(Executor):
    """Executor that acts directly on the local host."""

    @property
    def endpoint(self) -> str:
        return "local"

    def _prepare(self, command, *, env, cwd):
        exec_env = None
        if env:
            exec_env = os.environ.copy()
            exec_env.update(env)
        return command, exec_env, str(cwd) if cwd is not None else None


class SshExecutor(Executor):
    """Executor that runs commands on a remote host through the ``ssh`` client."""

    def __init__(
        self,
        host: HostConfig,
        *,
        dry_run: bool = False,
        default_timeout: Optional[float] = DEFAULT_TIMEOUT,
        ssh_options: Optional[Sequence[str]] = None,
    ):
        super().__init__(host, dry_run=dry_run, default_timeout=default_timeout)
        if not host.address:
            raise ConfigurationError(f"host '{host.name}' uses ssh but has no address")
        self.ssh_options = list(ssh_options or [])

    @property
    def endpoint(self) -> str:
        target = f"{self.host.user}@{self.host.address}" if self.host.user else str(self.host.address)
        if self.host.port:
            target = f"{target}:{self.host.port}"
        return target

    def _prepare(self, command, *, env, cwd):
        remote = shlex.join(command)
        if env:
            exports = " ".join(f"{key}={shlex.quote(value)}" for key, value in env.items())
            remote = f"env {exports} {remote}"
        if cwd is not None:
            remote = f"cd {shlex.quote(str(cwd))} && {remote}"
        argv = ["ssh", "-o", "BatchMode=yes"]
        if self.host.port:
            argv += ["-p", str(self.host.port)]
        if self.host.identity_file:
            argv += ["-i", str(self.host.identity_file)]
        argv += self.ssh_options
        target = f"{self.host.user}@{self.host.address}" if self.host.user else str(self.host.address)
        argv += [target, remote]
        return argv, None, None

    def _check_transport(self, proc: subprocess.CompletedProcess) -> None:
        if proc.returncode == SSH_TRANSPORT_FAILURE:
            message = (proc.stderr or "").strip().splitlines()
            detail = message[-1] if message else "ssh transport failure"
            raise HostConnectionError(f"{self.endpoint}: {detail}")


def executor_for(
    host: HostConfig,
    *,
    dry_run: bool = False,
    default_timeout: Optional[float] = DEFAULT_TIMEOUT,
    ssh_options: Optional[Sequence[str]] = None,
) -> Executor:
    if host.connection == "local":
        return LocalExecutor(host, dry_run=dry_run, default_timeout=default_timeout)
    if host.connection == "ssh":
        return SshExecutor(
            host,
            dry_run=dry_run,
            default_timeout=default_timeout,
            ssh_options=ssh_options,
        )
    raise ConfigurationError(f"Unknown connection type '{host.connection}'")
