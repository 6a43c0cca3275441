from __future__ import annotations

from typing import Any, Optional

from .base import ReconcilingOperation, coerce_bool, require_choice
from ..docker import DockerClient
from ..errors import ConfigurationError
from ..executors import Executor
from ..types import HostConfig


class ImageOperation(ReconcilingOperation):
    """Make sure an image is available locally (pulled) or removed."""

    kind = "image"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("name") or spec.get("image")
        if not raw_name:
            raise ConfigurationError("image operation requires a name")
        self.reference = str(raw_name)
        if ":" not in self.reference.rsplit("/", 1)[-1] and "@" not in self.reference:
            self.reference = f"{self.reference}:latest"
        self.state = require_choice("image", "state", spec.get("state", "present"), {"present", "absent"})
        self.force = bool(coerce_bool(spec.get("force", False)))
        self.docker_binary = str(spec.get("docker_binary", "docker"))

    @property
    def resource(self) -> Optional[str]:
        return self.reference

    def observe(self, host: HostConfig, executor: Executor) -> Optional[dict[str, Any]]:
        return DockerClient(executor, self.docker_binary).inspect("image", self.reference)

    def drift(self, observed: Optional[dict[str, Any]]) -> list[str]:
        if self.state == "absent":
            return ["removed"] if observed is not None else []
        if observed is None:
            return ["pulled"]
        if self.force:
            return ["re-pulled"]
        return []

    def converge(self, host: HostConfig, executor: Executor, observed: Any, drift: list[str]) -> None:
        docker = DockerClient(executor, self.docker_binary)
        if self.state == "absent":
            docker.remove_image(self.reference)
        else:
            docker.pull_image(self.reference)
