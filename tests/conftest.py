from __future__ import annotations

import json
from typing import Callable, Optional, Sequence

import pytest

from dockhand_automation.executors import CommandResult, Executor
from dockhand_automation.types import HostConfig

IMAGE_ENV = ["PATH=/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"]


class FakeDockerExecutor(Executor):
    """In-memory stand-in for a host running dockerd and systemd."""

    def __init__(self, host: Optional[HostConfig] = None, *, dry_run: bool = False, endpoint: str = "fake"):
        super().__init__(host or HostConfig("local"), dry_run=dry_run)
        self._endpoint = endpoint
        self.networks: dict[str, dict] = {}
        self.volumes: dict[str, dict] = {}
        self.images: dict[str, dict] = {}
        self.containers: dict[str, dict] = {}
        self.services: dict[str, dict[str, bool]] = {}
        self.calls: list[list[str]] = []
        self.mutations: list[list[str]] = []
        self.failures: list[Exception] = []
        self.handlers: list[Callable[[list[str]], Optional[CommandResult]]] = []

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def run(self, command: Sequence[str], *, check=True, mutable=True, env=None, cwd=None, timeout=None):
        cmd = [str(c) for c in command]
        self.calls.append(cmd)
        if self.failures:
            raise self.failures.pop(0)
        if self.dry_run and mutable:
            return CommandResult(cmd, "", "skipped (dry-run)", 0)
        if mutable:
            self.mutations.append(cmd)
        for handler in self.handlers:
            result = handler(cmd)
            if result is not None:
                return result
        if cmd[0] == "docker":
            return self._docker(cmd[1:])
        if cmd[0] == "systemctl":
            return self._systemctl(cmd[1:])
        return self._ok(cmd)

    # docker ------------------------------------------------------------
    def _docker(self, args: list[str]) -> CommandResult:
        cmd = ["docker", *args]
        if args[0] in {"network", "volume"} and args[1] in {"inspect", "create", "rm"}:
            store = self.networks if args[0] == "network" else self.volumes
            name = args[-1]
            if args[1] == "inspect":
                if name not in store:
                    return self._err(cmd, f"Error: No such {args[0]}: {name}")
                return self._ok(cmd, json.dumps([store[name]]))
            if args[1] == "create":
                if name in store:
                    return self._err(cmd, f"Error response from daemon: {args[0]} with name {name} already exists")
                store[name] = {"Name": name, "Driver": args[args.index("--driver") + 1]}
                return self._ok(cmd, name)
            store.pop(name, None)
            return self._ok(cmd, name)
        if args[:2] == ["network", "connect"]:
            self.containers[args[3]]["NetworkSettings"]["Networks"][args[2]] = {}
            return self._ok(cmd)
        if args[:2] == ["image", "inspect"]:
            if args[2] not in self.images:
                return self._err(cmd, f"Error: No such image: {args[2]}")
            return self._ok(cmd, json.dumps([self.images[args[2]]]))
        if args[0] == "pull":
            self.images[args[-1]] = {"RepoTags": [args[-1]]}
            return self._ok(cmd)
        if args[:2] == ["image", "rm"]:
            self.images.pop(args[2], None)
            return self._ok(cmd)
        if args[:2] == ["container", "inspect"]:
            if args[2] not in self.containers:
                return self._err(cmd, f"Error: No such container: {args[2]}")
            return self._ok(cmd, json.dumps([self.containers[args[2]]]))
        if args[0] == "run":
            return self._run_container(cmd, args[1:])
        if args[0] in {"start", "stop"}:
            self.containers[args[1]]["State"]["Running"] = args[0] == "start"
            return self._ok(cmd)
        if args[0] == "rm":
            self.containers.pop(args[-1], None)
            return self._ok(cmd)
        return self._err(cmd, f"unknown docker command {args}")

    def _run_container(self, cmd: list[str], args: list[str]) -> CommandResult:
        name = image = restart = None
        ports: dict[str, list] = {}
        networks: list[str] = []
        mounts: list[dict] = []
        env = list(IMAGE_ENV)
        idx = 0
        while idx < len(args):
            flag = args[idx]
            if flag == "--detach":
                idx += 1
                continue
            if not flag.startswith("--"):
                image = flag
                break
            value = args[idx + 1]
            if flag == "--name":
                name = value
            elif flag == "--publish":
                host_port, container_port = value.split(":")[-2:]
                ports.setdefault(f"{container_port}/tcp", []).append({"HostIp": "", "HostPort": host_port})
            elif flag == "--network":
                networks.append(value)
            elif flag == "--volume":
                source, dest, *mode = value.split(":")
                mounts.append({"Type": "volume", "Name": source, "Destination": dest, "RW": mode != ["ro"]})
            elif flag == "--env":
                env.append(value)
            elif flag == "--restart":
                restart = value
            idx += 2
        if name in self.containers:
            return self._err(cmd, f'docker: Error response from daemon: Conflict. The container name "/{name}" is already in use.')
        self.containers[name] = {
            "Name": f"/{name}",
            "Config": {"Image": image, "Env": env, "Cmd": args[idx + 1:] or ["default"]},
            "State": {"Running": True},
            "HostConfig": {"PortBindings": ports, "RestartPolicy": {"Name": restart or "no"}},
            "NetworkSettings": {"Networks": {n: {} for n in (networks or ["bridge"])}},
            "Mounts": mounts,
        }
        return self._ok(cmd, "0123abcd")

    # systemd -----------------------------------------------------------
    def _systemctl(self, args: list[str]) -> CommandResult:
        verb, unit = args
        status = self.services.setdefault(unit, {"enabled": False, "active": False})
        cmd = ["systemctl", *args]
        if verb == "is-enabled":
            return CommandResult(cmd, "", "", 0 if status["enabled"] else 1)
        if verb == "is-active":
            return CommandResult(cmd, "", "", 0 if status["active"] else 3)
        updates = {"enable": ("enabled", True), "disable": ("enabled", False), "start": ("active", True), "stop": ("active", False)}
        key, value = updates[verb]
        status[key] = value
        return self._ok(cmd)

    @staticmethod
    def _ok(cmd: list[str], stdout: str = "") -> CommandResult:
        return CommandResult(cmd, stdout, "", 0)

    @staticmethod
    def _err(cmd: list[str], stderr: str) -> CommandResult:
        return CommandResult(cmd, "", stderr, 1)


@pytest.fixture
def docker_host() -> FakeDockerExecutor:
    return FakeDockerExecutor()


@pytest.fixture
def dry_docker_host() -> FakeDockerExecutor:
    return FakeDockerExecutor(dry_run=True)


@pytest.fixture
def fake_docker():
    return FakeDockerExecutor
