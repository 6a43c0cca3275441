from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional
import logging

from .base import ReconcilingOperation, coerce_bool, require_choice
from ..errors import ConfigurationError
from ..executors import Executor
from ..types import HostConfig

logger = logging.getLogger(__name__)


@dataclass
class SystemCtl:
    executable: str = "systemctl"

    def is_enabled(self, executor: Executor, service: str) -> bool:
        result = executor.run([self.executable, "is-enabled", service], check=False, mutable=False)
        return result.returncode == 0

    def is_active(self, executor: Executor, service: str) -> bool:
        result = executor.run([self.executable, "is-active", service], check=False, mutable=False)
        return result.returncode == 0

    def call(self, executor: Executor, verb: str, service: str) -> None:
        executor.run([self.executable, verb, service])


@dataclass
class ServiceStatus:
    enabled: bool
    active: bool


class ServiceOperation(ReconcilingOperation):
    """Keep a systemd unit (for example the container runtime daemon) running and enabled."""

    kind = "service"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("name")
        if not raw_name:
            raise ConfigurationError("service operation requires a name")
        self.name = str(raw_name)
        self.enabled: Optional[bool] = coerce_bool(spec.get("enabled"))
        self.state: Optional[str] = None
        if spec.get("state") is not None:
            self.state = require_choice("service", "state", spec["state"], {"running", "stopped"})
        self.systemctl = SystemCtl(str(spec.get("systemctl", "systemctl")))

    def observe(self, host: HostConfig, executor: Executor) -> ServiceStatus:
        return ServiceStatus(
            enabled=self.systemctl.is_enabled(executor, self.name),
            active=self.systemctl.is_active(executor, self.name),
        )

    def drift(self, observed: ServiceStatus) -> list[str]:
        changes: list[str] = []
        if self.enabled is True and not observed.enabled:
            changes.append("enabled")
        elif self.enabled is False and observed.enabled:
            changes.append("disabled")
        if self.state == "running" and not observed.active:
            changes.append("started")
        elif self.state == "stopped" and observed.active:
            changes.append("stopped")
        return changes

    def converge(self, host: HostConfig, executor: Executor, observed: ServiceStatus, drift: list[str]) -> None:
        verbs = {"enabled": "enable", "disabled": "disable", "started": "start", "stopped": "stop"}
        for change in drift:
            logger.debug("service=%s host=%s %s", self.name, host.name, verbs[change])
            self.systemctl.call(executor, verbs[change], self.name)
