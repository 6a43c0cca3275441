import textwrap

import pytest

from dockhand_automation.errors import ConfigurationError
from dockhand_automation.inventory import InventoryLoader, select_hosts


def write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(textwrap.dedent(text))
    return path


def test_native_toml_inventory(tmp_path):
    path = write(
        tmp_path,
        "inventory.toml",
        """
        [hosts.local]

        [groups.prod.vars]
        app_port = 8080
        region = "eu"

        [groups.prod.hosts.web1]
        address = "10.0.0.5"
        user = "admin"
        port = "2222"
        app_port = 9090

        [groups.prod.hosts.web2]
        address = "10.0.0.6"
        """,
    )

    hosts = InventoryLoader().load(path)

    assert list(hosts) == ["local", "web1", "web2"]
    assert hosts["local"].connection == "local"
    web1 = hosts["web1"]
    assert web1.connection == "ssh"
    assert web1.port == 2222
    assert web1.groups == ["all", "prod"]
    assert web1.variables == {"app_port": 9090, "region": "eu"}
    assert hosts["web2"].variables == {"app_port": 8080, "region": "eu"}


def test_ansible_yaml_inventory(tmp_path):
    path = write(
        tmp_path,
        "inventory.yml",
        """
        all:
          vars:
            ansible_user: deploy
          children:
            prod:
              vars:
                app_env: production
              hosts:
                app1:
                  ansible_host: 192.0.2.10
                  ansible_port: 22
                  ansible_ssh_private_key_file: ~/.ssh/prod
                builder:
                  ansible_connection: local
        """,
    )

    hosts = InventoryLoader().load(path)

    app1 = hosts["app1"]
    assert app1.address == "192.0.2.10"
    assert app1.user == "deploy"
    assert app1.identity_file == "~/.ssh/prod"
    assert app1.connection == "ssh"
    assert app1.groups == ["all", "prod"]
    assert app1.variables == {"app_env": "production"}
    assert hosts["builder"].connection == "local"


def test_empty_inventory_is_local_host(tmp_path):
    hosts = InventoryLoader().load(write(tmp_path, "inventory.toml", ""))

    assert list(hosts) == ["local"]
    assert hosts["local"].connection == "local"


def test_non_integer_port_rejected(tmp_path):
    path = write(tmp_path, "inventory.toml", '[hosts.web1]\naddress = "h"\nport = "ssh"\n')

    with pytest.raises(ConfigurationError, match="port"):
        InventoryLoader().load(path)


def test_missing_inventory_file(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        InventoryLoader().load(tmp_path / "nope.toml")


def test_select_hosts_by_group_and_limit(tmp_path):
    path = write(
        tmp_path,
        "inventory.toml",
        """
        [groups.web.hosts.web1]
        [groups.web.hosts.web2]
        [groups.db.hosts.db1]
        """,
    )
    hosts = InventoryLoader().load(path)

    assert [h.name for h in select_hosts(hosts, ["all"])] == ["web1", "web2", "db1"]
    assert [h.name for h in select_hosts(hosts, ["db", "web1"])] == ["web1", "db1"]
    assert [h.name for h in select_hosts(hosts, ["all"], limit=["web2"])] == ["web2"]
    with pytest.raises(ConfigurationError, match="matches no host"):
        select_hosts(hosts, ["cache"])
