from __future__ import annotations

from typing import Any, Optional, Sequence
import json
import logging

from .errors import CommandError, HostConnectionError, ResourceConflictError
from .executors import CommandResult, Executor

logger = logging.getLogger(__name__)

DAEMON_UNREACHABLE = (
    "cannot connect to the docker daemon",
    "is the docker daemon running",
    "connection refused",
    "error during connect",
)
CONFLICT_MARKERS = ("already exists", "is already in use", "conflict")
NOT_FOUND_MARKERS = ("no such", "not found")


class DockerClient:
    def __init__(self, executor: Executor, binary: str = "docker", timeout: Optional[float] = None):
        self.executor = executor
        self.binary = binary
        self.timeout = timeout

    # Observation ---------------------------------------------------------
    def inspect(self, kind: str, name: str) -> Optional[dict[str, Any]]:
        """Return the parsed ``docker <kind> inspect`` payload or ``None`` if absent."""

        result = self._run([kind, "inspect", name], check=False, mutable=False)
        if result.returncode != 0:
            if _contains(result.stderr, NOT_FOUND_MARKERS):
                return None
            raise CommandError(result.command, result.returncode, result.stderr, result.stdout)
        try:
            payload = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as exc:
            raise CommandError(result.command, 0, f"unparseable inspect output: {exc}") from exc
        if isinstance(payload, list):
            return payload[0] if payload else None
        return payload

    # Networks ------------------------------------------------------------
    def create_network(self, name: str, *, driver: str = "bridge", labels: Optional[dict[str, str]] = None) -> None:
        args = ["network", "create", "--driver", driver, *_label_args(labels), name]
        self._mutate(args, kind="network", name=name)

    def remove_network(self, name: str) -> None:
        self._mutate(["network", "rm", name], kind="network", name=name)

    # Volumes -------------------------------------------------------------
    def create_volume(self, name: str, *, driver: str = "local", labels: Optional[dict[str, str]] = None) -> None:
        args = ["volume", "create", "--driver", driver, *_label_args(labels), name]
        self._mutate(args, kind="volume", name=name)

    def remove_volume(self, name: str) -> None:
        self._mutate(["volume", "rm", name], kind="volume", name=name)

    # Images --------------------------------------------------------------
    def pull_image(self, reference: str) -> None:
        self._mutate(["pull", "--quiet", reference], kind="image", name=reference)

    def remove_image(self, reference: str) -> None:
        self._mutate(["image", "rm", reference], kind="image", name=reference)

    # Containers ----------------------------------------------------------
    def run_container(
        self,
        name: str,
        image: str,
        *,
        ports: Sequence[str] = (),
        networks: Sequence[str] = (),
        volumes: Sequence[str] = (),
        env: Optional[dict[str, str]] = None,
        restart_policy: Optional[str] = None,
        command: Sequence[str] = (),
    ) -> None:
        args = ["run", "--detach", "--name", name]
        for port in ports:
            args += ["--publish", port]
        if networks:
            args += ["--network", networks[0]]
        for volume in volumes:
            args += ["--volume", volume]
        for key, value in (env or {}).items():
            args += ["--env", f"{key}={value}"]
        if restart_policy:
            args += ["--restart", restart_policy]
        args += [image, *command]
        self._mutate(args, kind="container", name=name)
        # ``docker run`` only accepts one network; attach the rest afterwards.
        for extra in networks[1:]:
            self._mutate(["network", "connect", extra, name], kind="container", name=name)

    def start_container(self, name: str) -> None:
        self._mutate(["start", name], kind="container", name=name)

    def stop_container(self, name: str) -> None:
        self._mutate(["stop", name], kind="container", name=name)

    def remove_container(self, name: str) -> None:
        self._mutate(["rm", "--force", name], kind="container", name=name)

    # Internals -----------------------------------------------------------
    def _mutate(self, args: list[str], *, kind: str, name: str) -> CommandResult:
        result = self._run(args, check=False, mutable=True)
        if result.returncode != 0:
            if _contains(result.stderr, CONFLICT_MARKERS):
                raise ResourceConflictError(kind, name, result.stderr.strip())
            raise CommandError(result.command, result.returncode, result.stderr, result.stdout)
        logger.debug("docker %s %s ok", args[0], name)
        return result

    def _run(self, args: list[str], *, check: bool, mutable: bool) -> CommandResult:
        result = self.executor.run(
            [self.binary, *args],
            check=check,
            mutable=mutable,
            timeout=self.timeout,
        )
        if result.returncode != 0 and _contains(result.stderr, DAEMON_UNREACHABLE):
            raise HostConnectionError(f"{self.executor.endpoint}: {result.stderr.strip()}")
        return result


def _label_args(labels: Optional[dict[str, str]]) -> list[str]:
    args: list[str] = []
    for key, value in (labels or {}).items():
        args += ["--label", f"{key}={value}"]
    return args


def _contains(text: Optional[str], markers: Sequence[str]) -> bool:
    lowered = (text or "").lower()
    return any(marker in lowered for marker in markers)
