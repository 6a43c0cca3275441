from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Optional

from .documents import load_document
from .errors import ConfigurationError
from .types import HostConfig

ALL_GROUP = "all"
ANSIBLE_KEYS = {
    "ansible_host": "address",
    "ansible_user": "user",
    "ansible_port": "port",
    "ansible_connection": "connection",
    "ansible_ssh_private_key_file": "identity_file",
}
CONNECTION_KEYS = {"address", "user", "port", "connection", "identity_file"}


class InventoryLoader:
    """Loads hosts and their group memberships from TOML or YAML inventories.

    Two layouts are understood. The native one::

        [groups.prod.vars]
        app_port = 8080

        [groups.prod.hosts.web1]
        address = "10.0.0.5"
        user = "admin"

    and the Ansible one (YAML with a top-level ``all`` group, ``children``
    and ``ansible_*`` connection variables). Host variables override group
    variables; an empty inventory yields a single ``local`` host.
    """

    def load(self, path: Path) -> dict[str, HostConfig]:
        data = load_document(Path(path))
        if ALL_GROUP in data and isinstance(data[ALL_GROUP], dict):
            hosts = self._parse_ansible(data[ALL_GROUP])
        else:
            hosts = self._parse_native(data)
        if not hosts:
            hosts = {"local": HostConfig(name="local", groups=[ALL_GROUP])}
        return hosts

    def _parse_native(self, data: dict[str, Any]) -> dict[str, HostConfig]:
        hosts: dict[str, HostConfig] = {}
        for name, payload in _mapping(data.get("hosts"), "hosts").items():
            self._merge_host(hosts, name, payload, group=None, group_vars={})
        for group, payload in _mapping(data.get("groups"), "groups").items():
            payload = _mapping(payload, f"groups.{group}")
            group_vars = _mapping(payload.get("vars") or payload.get("variables"), f"groups.{group}.vars")
            for name, host_payload in _mapping(payload.get("hosts"), f"groups.{group}.hosts").items():
                self._merge_host(hosts, name, host_payload, group=group, group_vars=group_vars)
        return hosts

    def _parse_ansible(self, root: dict[str, Any]) -> dict[str, HostConfig]:
        hosts: dict[str, HostConfig] = {}

        def walk(group: str, payload: dict[str, Any], inherited: dict[str, Any]) -> None:
            payload = _mapping(payload, group)
            group_vars = {**inherited, **_mapping(payload.get("vars"), f"{group}.vars")}
            for name, host_payload in _mapping(payload.get("hosts"), f"{group}.hosts").items():
                self._merge_host(
                    hosts,
                    name,
                    _translate_ansible(host_payload),
                    group=None if group == ALL_GROUP else group,
                    group_vars=_translate_ansible(group_vars),
                )
            for child, child_payload in _mapping(payload.get("children"), f"{group}.children").items():
                walk(child, child_payload, group_vars)

        walk(ALL_GROUP, root, {})
        return hosts

    @staticmethod
    def _merge_host(
        hosts: dict[str, HostConfig],
        name: str,
        payload: Any,
        *,
        group: Optional[str],
        group_vars: dict[str, Any],
    ) -> None:
        payload = _mapping(payload, f"host {name}")
        host = hosts.get(name)
        if host is None:
            host = HostConfig(name=str(name), groups=[ALL_GROUP])
            hosts[name] = host
        if group and group not in host.groups:
            host.groups.append(group)

        merged = {**group_vars, **payload}
        own_vars = {
            **_mapping(merged.pop("variables", None), f"host {name} variables"),
            **_mapping(merged.pop("vars", None), f"host {name} vars"),
        }
        for key in CONNECTION_KEYS:
            if key in merged:
                setattr(host, key, merged.pop(key))
        if host.port is not None:
            try:
                host.port = int(host.port)
            except (TypeError, ValueError):
                raise ConfigurationError(f"host {name}: port must be an integer") from None
        if "connection" not in payload and "connection" not in group_vars and host.connection == "local":
            host.connection = "ssh" if host.address else "local"
        host.variables = {**host.variables, **merged, **own_vars}


def select_hosts(
    hosts: dict[str, HostConfig],
    patterns: Iterable[str],
    limit: Optional[Iterable[str]] = None,
) -> list[HostConfig]:
    """Resolve group/host names to hosts, keeping inventory order."""

    selected = _match(hosts, patterns)
    if limit:
        allowed = {host.name for host in _match(hosts, limit)}
        selected = [host for host in selected if host.name in allowed]
    return selected


def _match(hosts: dict[str, HostConfig], patterns: Iterable[str]) -> list[HostConfig]:
    wanted: set[str] = set()
    for pattern in patterns:
        members = {name for name, host in hosts.items() if pattern == name or pattern in host.groups}
        if not members:
            raise ConfigurationError(f"'{pattern}' matches no host or group in the inventory")
        wanted |= members
    return [host for name, host in hosts.items() if name in wanted]


def _translate_ansible(payload: Any) -> dict[str, Any]:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ConfigurationError("ansible host entries must be mappings")
    return {ANSIBLE_KEYS.get(key, key): value for key, value in payload.items()}


def _mapping(value: Any, where: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"{where} must be a mapping")
    return value
