from pathlib import Path

import pytest

from dockhand_automation.config import DockhandConfig, load_config
from dockhand_automation.errors import ConfigurationError


def test_missing_config_uses_defaults(tmp_path):
    assert load_config(tmp_path / "main.conf") == DockhandConfig()


def test_defaults_section_overrides(tmp_path):
    path = tmp_path / "main.conf"
    path.write_text(
        """
[defaults]
inventory = "/srv/deploy/inventory.yml"
tasks = "/srv/deploy/tasks.toml"
retries = 5
retry_delay = 0.5
forks = 0
docker_binary = "podman"
ssh_options = ["-o", "StrictHostKeyChecking=no"]
plugin_dirs = ["/etc/dockhand/plugins"]
aws_region = "eu-west-1"
"""
    )

    cfg = load_config(path)

    assert cfg.inventory == Path("/srv/deploy/inventory.yml")
    assert cfg.tasks == Path("/srv/deploy/tasks.toml")
    assert cfg.retries == 5
    assert cfg.retry_delay == 0.5
    assert cfg.retry_max_delay == 30.0
    assert cfg.forks == 1
    assert cfg.docker_binary == "podman"
    assert cfg.ssh_options == ["-o", "StrictHostKeyChecking=no"]
    assert cfg.plugin_dirs == [Path("/etc/dockhand/plugins")]
    assert cfg.aws_region == "eu-west-1"
    assert cfg.aws_profile is None


def test_invalid_values_rejected(tmp_path):
    path = tmp_path / "main.conf"
    path.write_text('[defaults]\nretries = "many"\n')

    with pytest.raises(ConfigurationError, match="retries"):
        load_config(path)


def test_invalid_toml_rejected(tmp_path):
    path = tmp_path / "main.conf"
    path.write_text("[defaults\n")

    with pytest.raises(ConfigurationError):
        load_config(path)
