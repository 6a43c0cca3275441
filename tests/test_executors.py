import subprocess

import pytest

from dockhand_automation import executors as executors_mod
from dockhand_automation.errors import CommandError, ConfigurationError, HostConnectionError
from dockhand_automation.executors import LocalExecutor, SshExecutor, executor_for
from dockhand_automation.types import HostConfig


def test_local_executor_runs_commands():
    result = LocalExecutor(HostConfig("local")).run(["sh", "-c", "echo $GREETING"], env={"GREETING": "hello"})

    assert result.returncode == 0
    assert result.stdout.strip() == "hello"


def test_local_executor_check_raises_command_error():
    with pytest.raises(CommandError) as excinfo:
        LocalExecutor(HostConfig("local")).run(["sh", "-c", "echo nope >&2; exit 4"])
    assert excinfo.value.returncode == 4
    assert excinfo.value.stderr.strip() == "nope"


def test_missing_binary_is_command_error():
    with pytest.raises(CommandError) as excinfo:
        LocalExecutor(HostConfig("local")).run(["definitely-not-a-real-binary-xyz"])
    assert excinfo.value.returncode == 127


def test_timeout_is_transient():
    executor = LocalExecutor(HostConfig("local"), default_timeout=0.2)

    with pytest.raises(HostConnectionError, match="timed out"):
        executor.run(["sleep", "5"])


def test_dry_run_skips_mutations_but_not_reads():
    executor = LocalExecutor(HostConfig("local"), dry_run=True)

    skipped = executor.run(["sh", "-c", "exit 9"])
    read = executor.run(["sh", "-c", "echo observed"], mutable=False)

    assert skipped.returncode == 0
    assert skipped.stderr == "skipped (dry-run)"
    assert read.stdout.strip() == "observed"


class CapturedRun:
    def __init__(self, returncode=0, stderr=""):
        self.returncode = returncode
        self.stderr = stderr
        self.calls = []

    def __call__(self, argv, **kwargs):
        self.calls.append((argv, kwargs))
        return subprocess.CompletedProcess(argv, self.returncode, "", self.stderr)


def test_ssh_executor_wraps_command(monkeypatch):
    captured = CapturedRun()
    monkeypatch.setattr(executors_mod.subprocess, "run", captured)
    host = HostConfig("web1", connection="ssh", address="10.0.0.5", user="admin", port=2222, identity_file="~/.ssh/deploy")
    executor = SshExecutor(host, ssh_options=["-o", "StrictHostKeyChecking=no"], default_timeout=30)

    executor.run(["docker", "network", "inspect", "app network"], env={"A": "b c"})

    argv, kwargs = captured.calls[0]
    assert argv[:3] == ["ssh", "-o", "BatchMode=yes"]
    assert argv[3:7] == ["-p", "2222", "-i", "~/.ssh/deploy"]
    assert argv[7:9] == ["-o", "StrictHostKeyChecking=no"]
    assert argv[9] == "admin@10.0.0.5"
    assert argv[10] == "env A='b c' docker network inspect 'app network'"
    assert kwargs["timeout"] == 30
    assert executor.endpoint == "admin@10.0.0.5:2222"


def test_ssh_transport_failure_is_transient(monkeypatch):
    monkeypatch.setattr(
        executors_mod.subprocess,
        "run",
        CapturedRun(returncode=255, stderr="ssh: connect to host 10.0.0.5 port 22: Connection refused\n"),
    )
    executor = SshExecutor(HostConfig("web1", connection="ssh", address="10.0.0.5"))

    with pytest.raises(HostConnectionError, match="Connection refused"):
        executor.run(["true"], check=False)


def test_ssh_requires_address():
    with pytest.raises(ConfigurationError):
        SshExecutor(HostConfig("web1", connection="ssh"))


def test_executor_for_connection_types():
    assert isinstance(executor_for(HostConfig("local")), LocalExecutor)
    assert isinstance(executor_for(HostConfig("web1", connection="ssh", address="h")), SshExecutor)
    with pytest.raises(ConfigurationError):
        executor_for(HostConfig("web1", connection="winrm"))
