from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .errors import ConfigurationError


DEFAULT_CONFIG = Path("/etc/dockhand/main.conf")


@dataclass
class DockhandConfig:
    inventory: Optional[Path] = None
    tasks: Optional[Path] = None
    state_file: Optional[Path] = None
    retries: int = 2
    retry_delay: float = 1.0
    retry_max_delay: float = 30.0
    timeout: float = 300.0
    forks: int = 5
    docker_binary: str = "docker"
    ssh_options: list[str] = field(default_factory=list)
    plugin_dirs: list[Path] = field(default_factory=list)
    plugin_modules: list[str] = field(default_factory=list)
    aws_region: Optional[str] = None
    aws_profile: Optional[str] = None


def load_config(path: Path) -> DockhandConfig:
    if not path.exists():
        return DockhandConfig()
    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"{path}: {exc}") from None
    defaults = data.get("defaults", {})
    base = DockhandConfig()
    inventory = defaults.get("inventory")
    tasks = defaults.get("tasks")
    state_file = defaults.get("state_file")
    return DockhandConfig(
        inventory=Path(inventory) if inventory else None,
        tasks=Path(tasks) if tasks else None,
        state_file=Path(state_file) if state_file else None,
        retries=_number(defaults, "retries", int, base.retries),
        retry_delay=_number(defaults, "retry_delay", float, base.retry_delay),
        retry_max_delay=_number(defaults, "retry_max_delay", float, base.retry_max_delay),
        timeout=_number(defaults, "timeout", float, base.timeout),
        forks=max(1, _number(defaults, "forks", int, base.forks)),
        docker_binary=str(defaults.get("docker_binary", base.docker_binary)),
        ssh_options=[str(opt) for opt in defaults.get("ssh_options", [])],
        plugin_dirs=[Path(p) for p in defaults.get("plugin_dirs", [])],
        plugin_modules=[str(m) for m in defaults.get("plugin_modules", [])],
        aws_region=str(defaults["aws_region"]) if defaults.get("aws_region") else None,
        aws_profile=str(defaults["aws_profile"]) if defaults.get("aws_profile") else None,
    )


def _number(defaults: dict[str, Any], key: str, cast, fallback):
    if key not in defaults:
        return fallback
    try:
        return cast(defaults[key])
    except (TypeError, ValueError):
        raise ConfigurationError(f"config value '{key}' must be numeric") from None
