from __future__ import annotations

from typing import Any, Optional

from .base import ReconcilingOperation, coerce_bool, require_choice
from ..docker import DockerClient
from ..errors import ConfigurationError
from ..executors import Executor
from ..types import HostConfig


class DockerResourceOperation(ReconcilingOperation):
    """Named Docker object that is either present or absent."""

    default_driver = "local"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("name")
        if not raw_name:
            raise ConfigurationError(f"{self.kind} operation requires a name")
        self.name = str(raw_name)
        self.state = require_choice(self.kind, "state", spec.get("state", "present"), {"present", "absent"})
        self.driver = str(spec.get("driver", self.default_driver))
        labels = spec.get("labels") or {}
        if not isinstance(labels, dict):
            raise ConfigurationError(f"{self.kind} labels must be a mapping")
        self.labels = {str(k): str(v) for k, v in labels.items()}
        self.recreate = bool(coerce_bool(spec.get("recreate", False)))
        self.docker_binary = str(spec.get("docker_binary", "docker"))

    def client(self, executor: Executor) -> DockerClient:
        return DockerClient(executor, self.docker_binary)

    def observe(self, host: HostConfig, executor: Executor) -> Optional[dict[str, Any]]:
        return self.client(executor).inspect(self.kind, self.name)

    def drift(self, observed: Optional[dict[str, Any]]) -> list[str]:
        if self.state == "absent":
            return ["removed"] if observed is not None else []
        if observed is None:
            return ["created"]
        current = observed.get("Driver")
        if current and current != self.driver:
            if not self.recreate:
                raise ConfigurationError(
                    f"{self.kind} '{self.name}' uses driver '{current}', expected '{self.driver}'"
                    " (set recreate = true to replace it)"
                )
            return [f"driver {current}->{self.driver}"]
        return []

    def converge(self, host: HostConfig, executor: Executor, observed: Any, drift: list[str]) -> None:
        docker = self.client(executor)
        if observed is not None:
            self.remove(docker)
        if self.state == "present":
            self.create(docker)

    def create(self, docker: DockerClient) -> None:
        raise NotImplementedError

    def remove(self, docker: DockerClient) -> None:
        raise NotImplementedError


class NetworkOperation(DockerResourceOperation):
    kind = "network"
    default_driver = "bridge"

    def create(self, docker: DockerClient) -> None:
        docker.create_network(self.name, driver=self.driver, labels=self.labels)

    def remove(self, docker: DockerClient) -> None:
        docker.remove_network(self.name)


class VolumeOperation(DockerResourceOperation):
    kind = "volume"

    def create(self, docker: DockerClient) -> None:
        docker.create_volume(self.name, driver=self.driver, labels=self.labels)

    def remove(self, docker: DockerClient) -> None:
        docker.remove_volume(self.name)
