from pathlib import Path

import pytest

from dockhand_automation.errors import CommandError, ConfigurationError
from dockhand_automation.executors import LocalExecutor
from dockhand_automation.operations import command as command_mod
from dockhand_automation.operations.command import CommandOperation
from dockhand_automation.types import HostConfig, Outcome


def test_command_runs(tmp_path: Path) -> None:
    host = HostConfig("local")
    target = tmp_path / "out.txt"
    op = CommandOperation({"_task_id": "write-file", "command": f"echo hi > {target}"})
    result = op.apply(host, LocalExecutor(host))

    assert target.read_text().strip() == "hi"
    assert result.outcome is Outcome.APPLIED
    assert result.task == "write-file"
    assert "ran" in result.details


def test_command_skips_when_creates_exists(tmp_path: Path) -> None:
    host = HostConfig("local")
    target = tmp_path / "exists"
    target.write_text("present")
    op = CommandOperation({"command": "echo should-not-run", "creates": str(target)})
    result = op.apply(host, LocalExecutor(host))

    assert result.outcome is Outcome.UNCHANGED
    assert "creates" in result.details


def test_command_only_if_and_unless_guards() -> None:
    host = HostConfig("local")
    result_only_if = CommandOperation({"command": "echo skip", "only_if": "false"}).apply(host, LocalExecutor(host))
    result_unless = CommandOperation({"command": "echo skip", "unless": "true"}).apply(host, LocalExecutor(host))

    assert result_only_if.outcome is Outcome.UNCHANGED
    assert "only_if" in result_only_if.details
    assert result_unless.outcome is Outcome.UNCHANGED
    assert "unless" in result_unless.details


def test_command_respects_allowed_returns() -> None:
    host = HostConfig("local")
    ok = CommandOperation({"command": "exit 3", "returns": [0, 3]}).apply(host, LocalExecutor(host))

    assert ok.outcome is Outcome.APPLIED
    with pytest.raises(CommandError) as excinfo:
        CommandOperation({"command": "echo broken >&2; exit 5"}).apply(host, LocalExecutor(host))
    assert excinfo.value.returncode == 5
    assert "rc=5: broken" in str(excinfo.value)


def test_command_dry_run_does_not_execute(tmp_path: Path) -> None:
    host = HostConfig("local")
    target = tmp_path / "never"
    result = CommandOperation({"command": f"touch {target}"}).apply(host, LocalExecutor(host, dry_run=True))

    assert result.outcome is Outcome.APPLIED
    assert result.details == "dry-run"
    assert not target.exists()


def test_command_renders_host_variables(monkeypatch, tmp_path: Path) -> None:
    class FakeResolver:
        def resolve(self, values):
            return {**values, "token": "sekret"}

    monkeypatch.setattr(command_mod.CommandOperation, "secret_resolver", FakeResolver())
    host = HostConfig("local", variables={"token": {"aws_secret": "registry", "key": "token"}})
    target = tmp_path / "token.txt"

    CommandOperation({"command": f"echo ${{token}} > {target}"}).apply(host, LocalExecutor(host))

    assert target.read_text().strip() == "sekret"


def test_command_requires_command():
    with pytest.raises(ConfigurationError):
        CommandOperation({"name": "nothing"})
