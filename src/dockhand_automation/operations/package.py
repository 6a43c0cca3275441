from __future__ import annotations

from typing import Any, Optional
import logging

from .base import ReconcilingOperation, require_choice, string_list
from ..errors import ConfigurationError
from ..executors import Executor
from ..types import HostConfig

logger = logging.getLogger(__name__)


class PackageOperation(ReconcilingOperation):
    """Install or remove packages using the package manager found on the target."""

    kind = "package"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        self.packages = string_list("package", "name", spec.get("name") or spec.get("packages"))
        if not self.packages:
            raise ConfigurationError("package operation requires at least one package")
        self.state = require_choice("package", "state", spec.get("state", "present"), {"present", "absent"})
        self.preferred_manager = spec.get("manager")
        self._manager: Optional[PackageManager] = None

    @property
    def resource(self) -> Optional[str]:
        rendered = ", ".join(self.packages[:3])
        if len(self.packages) > 3:
            rendered += ", ..."
        return rendered

    def observe(self, host: HostConfig, executor: Executor) -> set[str]:
        self._manager = PackageManagerFactory.create(executor, self.preferred_manager)
        logger.debug("package-manager=%s host=%s packages=%s", self._manager.name, host.name, self.packages)
        return {pkg for pkg in self.packages if self._manager.is_installed(executor, pkg)}

    def drift(self, observed: set[str]) -> list[str]:
        if self.state == "present":
            missing = [pkg for pkg in self.packages if pkg not in observed]
            return [f"install={','.join(missing)}"] if missing else []
        present = [pkg for pkg in self.packages if pkg in observed]
        return [f"remove={','.join(present)}"] if present else []

    def converge(self, host: HostConfig, executor: Executor, observed: set[str], drift: list[str]) -> None:
        manager = self._manager or PackageManagerFactory.create(executor, self.preferred_manager)
        if self.state == "present":
            manager.install(executor, [pkg for pkg in self.packages if pkg not in observed])
        else:
            manager.remove(executor, [pkg for pkg in self.packages if pkg in observed])


class PackageManagerFactory:
    _MANAGERS = [
        ("apt-get", "apt", lambda: AptPackageManager()),
        ("dnf", "dnf", lambda: DnfPackageManager()),
        ("yum", "yum", lambda: YumPackageManager()),
        ("apk", "apk", lambda: ApkPackageManager()),
    ]

    @classmethod
    def create(cls, executor: Executor, preferred: Optional[object]) -> "PackageManager":
        if isinstance(preferred, str):
            preferred = preferred.lower()
            for _, key, factory in cls._MANAGERS:
                if key == preferred:
                    return factory()
            raise ConfigurationError(f"Unknown package manager '{preferred}'")
        for binary, _, factory in cls._MANAGERS:
            probe = executor.run(["sh", "-c", f"command -v {binary}"], check=False, mutable=False)
            if probe.returncode == 0:
                return factory()
        raise ConfigurationError(f"No supported package manager found on {executor.endpoint}")


class PackageManager:
    name = "generic"

    def install(self, executor: Executor, packages: list[str]) -> None:
        raise NotImplementedError

    def remove(self, executor: Executor, packages: list[str]) -> None:
        raise NotImplementedError

    def is_installed(self, executor: Executor, package: str) -> bool:
        raise NotImplementedError


class AptPackageManager(PackageManager):
    name = "apt"

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["apt-get", "install", "-y", *packages], env={"DEBIAN_FRONTEND": "noninteractive"})

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["apt-get", "remove", "-y", *packages], env={"DEBIAN_FRONTEND": "noninteractive"})

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(
            ["dpkg-query", "-W", "-f", "${Status}", package],
            check=False,
            mutable=False,
        )
        return result.returncode == 0 and "install ok installed" in result.stdout


class DnfPackageManager(PackageManager):
    name = "dnf"

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["dnf", "install", "-y", *packages])

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["dnf", "remove", "-y", *packages])

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(["rpm", "-q", package], check=False, mutable=False)
        return result.returncode == 0


class YumPackageManager(DnfPackageManager):
    name = "yum"

    def install(self, executor: Executor, packages: list[str]) -> None:  # type: ignore[override]
        executor.run(["yum", "install", "-y", *packages])

    def remove(self, executor: Executor, packages: list[str]) -> None:  # type: ignore[override]
        executor.run(["yum", "remove", "-y", *packages])


class ApkPackageManager(PackageManager):
    name = "apk"

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["apk", "add", "--no-cache", *packages])

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["apk", "del", *packages])

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(["apk", "info", "-e", package], check=False, mutable=False)
        return result.returncode == 0
