from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional
import logging
import shlex

from .base import ReconcilingOperation, render, require_choice, string_list
from ..docker import DockerClient
from ..errors import ConfigurationError
from ..executors import Executor
from ..secrets import SecretResolver
from ..types import HostConfig

logger = logging.getLogger(__name__)

RESTART_POLICIES = {"no", "always", "unless-stopped", "on-failure"}
VOLUME_MODES = {"rw", "ro"}


@dataclass(frozen=True)
class PortBinding:
    container: str
    host_port: str
    host_ip: str = ""

    @classmethod
    def parse(cls, text: str) -> "PortBinding":
        port, _, proto = text.partition("/")
        parts = port.split(":")
        if len(parts) == 2:
            host_ip, (host_port, container) = "", parts
        elif len(parts) == 3:
            host_ip, host_port, container = parts
        else:
            raise ConfigurationError(f"container port '{text}' must be HOST:CONTAINER or IP:HOST:CONTAINER")
        if not host_port.isdigit() or not container.isdigit():
            raise ConfigurationError(f"container port '{text}' must use numeric ports")
        return cls(f"{container}/{proto or 'tcp'}", host_port, host_ip)

    def render(self) -> str:
        port, proto = self.container.split("/")
        prefix = f"{self.host_ip}:" if self.host_ip else ""
        suffix = f"/{proto}" if proto != "tcp" else ""
        return f"{prefix}{self.host_port}:{port}{suffix}"


class ContainerOperation(ReconcilingOperation):
    """Run a container with a given image and wiring, recreating it when the wiring drifts."""

    kind = "container"
    secret_resolver = SecretResolver()

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("name")
        if not raw_name:
            raise ConfigurationError("container operation requires a name")
        self.name = str(raw_name)
        self.state = require_choice(
            "container", "state", spec.get("state", "started"), {"started", "stopped", "absent"}
        )
        raw_image = spec.get("image")
        if not raw_image and self.state != "absent":
            raise ConfigurationError(f"container '{self.name}' requires an image")
        self.image = str(raw_image) if raw_image else None
        self.ports = [PortBinding.parse(p) for p in string_list("container", "ports", spec.get("ports"))]
        self.networks = string_list("container", "networks", spec.get("networks") or spec.get("network"))
        self.volumes = [self._parse_volume(v) for v in string_list("container", "volumes", spec.get("volumes"))]
        raw_env = spec.get("env") or {}
        if not isinstance(raw_env, dict):
            raise ConfigurationError("container env must be a mapping")
        self.raw_env = {str(k): str(v) for k, v in raw_env.items()}
        command = spec.get("command")
        self.command = shlex.split(command) if isinstance(command, str) else string_list("container", "command", command)
        self.restart_policy: Optional[str] = None
        if spec.get("restart_policy") is not None:
            self.restart_policy = require_choice("container", "restart_policy", spec["restart_policy"], RESTART_POLICIES)
        self.docker_binary = str(spec.get("docker_binary", "docker"))
        self.env: dict[str, str] = {}

    def observe(self, host: HostConfig, executor: Executor) -> Optional[dict[str, Any]]:
        if self.state != "absent":
            self.env = self._render_env(host)
        return DockerClient(executor, self.docker_binary).inspect("container", self.name)

    def drift(self, observed: Optional[dict[str, Any]]) -> list[str]:
        if self.state == "absent":
            return ["removed"] if observed is not None else []
        if observed is None:
            return ["created"] if self.state == "started" else ["created", "stopped"]
        changes = self._config_drift(observed)
        if changes:
            return [*changes, "recreated"]
        running = bool((observed.get("State") or {}).get("Running"))
        if self.state == "started" and not running:
            return ["started"]
        if self.state == "stopped" and running:
            return ["stopped"]
        return []

    def converge(self, host: HostConfig, executor: Executor, observed: Any, drift: list[str]) -> None:
        docker = DockerClient(executor, self.docker_binary)
        if self.state == "absent":
            docker.remove_container(self.name)
            return
        if observed is None or "recreated" in drift:
            if observed is not None:
                logger.debug("container=%s host=%s recreating: %s", self.name, host.name, drift)
                docker.remove_container(self.name)
            docker.run_container(
                self.name,
                str(self.image),
                ports=[p.render() for p in self.ports],
                networks=self.networks,
                volumes=[_render_volume(volume) for volume in self.volumes],
                env=self.env,
                restart_policy=self.restart_policy,
                command=self.command,
            )
            if self.state == "stopped":
                docker.stop_container(self.name)
            return
        if "started" in drift:
            docker.start_container(self.name)
        elif "stopped" in drift:
            docker.stop_container(self.name)

    def _config_drift(self, observed: dict[str, Any]) -> list[str]:
        config = observed.get("Config") or {}
        host_config = observed.get("HostConfig") or {}
        changes: list[str] = []

        current_image = config.get("Image")
        if current_image != self.image:
            changes.append(f"image {current_image}->{self.image}")

        if set(self.ports) != _observed_ports(host_config.get("PortBindings") or {}):
            changes.append("ports")

        if self.networks:
            attached = set(((observed.get("NetworkSettings") or {}).get("Networks") or {}).keys())
            if set(self.networks) != attached:
                changes.append("networks")

        if set(self.volumes) != _observed_mounts(observed.get("Mounts") or []):
            changes.append("volumes")

        current_env = set(config.get("Env") or [])
        if any(f"{key}={value}" not in current_env for key, value in self.env.items()):
            changes.append("env")

        if self.restart_policy is not None:
            current_policy = (host_config.get("RestartPolicy") or {}).get("Name") or "no"
            if current_policy != self.restart_policy:
                changes.append(f"restart_policy {current_policy}->{self.restart_policy}")

        if self.command and list(config.get("Cmd") or []) != self.command:
            changes.append("command")
        return changes

    def _render_env(self, host: HostConfig) -> dict[str, str]:
        if not any("$" in value for value in self.raw_env.values()):
            return dict(self.raw_env)
        context = self.secret_resolver.resolve(host.variables)
        return {key: render(value, context) for key, value in self.raw_env.items()}

    @staticmethod
    def _parse_volume(text: str) -> tuple[str, str, str]:
        parts = text.split(":")
        if len(parts) not in (2, 3) or not parts[0] or not parts[1].startswith("/"):
            raise ConfigurationError(f"container volume '{text}' must be SOURCE:/container/path[:ro|rw]")
        mode = parts[2] if len(parts) == 3 else "rw"
        if mode not in VOLUME_MODES:
            raise ConfigurationError(f"container volume '{text}' has unsupported mode '{mode}'")
        return parts[0], parts[1], mode


def _observed_ports(bindings: dict[str, Any]) -> set[PortBinding]:
    ports: set[PortBinding] = set()
    for container_port, entries in bindings.items():
        for entry in entries or []:
            host_ip = entry.get("HostIp") or ""
            if host_ip in {"0.0.0.0", "::"}:
                host_ip = ""
            ports.add(PortBinding(container_port, str(entry.get("HostPort") or ""), host_ip))
    return ports


def _observed_mounts(mounts: list[dict[str, Any]]) -> set[tuple[str, str, str]]:
    found: set[tuple[str, str, str]] = set()
    for mount in mounts:
        if _is_anonymous(mount):
            continue
        source = mount.get("Name") if mount.get("Type") == "volume" else mount.get("Source")
        if source and mount.get("Destination"):
            mode = "rw" if mount.get("RW", True) else "ro"
            found.add((str(source), str(mount["Destination"]), mode))
    return found


def _render_volume(volume: tuple[str, str, str]) -> str:
    source, dest, mode = volume
    return f"{source}:{dest}:ro" if mode == "ro" else f"{source}:{dest}"


def _is_anonymous(mount: dict[str, Any]) -> bool:
    # Volumes declared by the image itself get a random 64-hex name.
    name = str(mount.get("Name") or "")
    return mount.get("Type") == "volume" and len(name) == 64 and all(c in "0123456789abcdef" for c in name)
