import json
import stat

from dockhand_automation.state import StateStore
from dockhand_automation.types import HostConfig, HostRun, Outcome, Run, TaskSpec


def make_run(*host_runs):
    return Run(run_id="r1", started_at=0.0, finished_at=1.0, dry_run=False, hosts=tuple(host_runs))


def test_corrupt_state_file_starts_fresh(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json")

    store = StateStore(path)

    assert store.previous == {}
    assert store.last_run is None


def test_records_resources_and_writes_private_file(tmp_path, docker_host):
    path = tmp_path / "nested" / "state.json"
    store = StateStore(path)
    task = TaskSpec(id="app-network", kind="network", params={"name": "app-network"})
    store.record("local", task, {"name": "app-network", "_task_id": "app-network"})
    store.record("local", TaskSpec(id="hello", kind="command"), {"command": "echo hi"})

    teardown = store.finalize(make_run(HostRun("local", ())), [HostConfig("local")], lambda host: docker_host)

    data = json.loads(path.read_text())
    assert teardown == []
    assert data["resources"] == {
        "local": {
            "network.app-network": {
                "kind": "network",
                "task": "app-network",
                "params": {"name": "app-network"},
                "depends_on": [],
            }
        }
    }
    assert data["last_run"]["run_id"] == "r1"
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_dropped_resources_torn_down_in_reverse_order(tmp_path, docker_host):
    path = tmp_path / "state.json"
    path.write_text(
        json.dumps(
            {
                "resources": {
                    "local": {
                        "network.app-network": {"kind": "network", "task": "net", "params": {"name": "app-network"}, "depends_on": []},
                        "container.web": {
                            "kind": "container",
                            "task": "web",
                            "params": {"name": "web", "image": "nginx:1"},
                            "depends_on": ["net"],
                        },
                    }
                }
            }
        )
    )
    docker_host.networks["app-network"] = {"Name": "app-network", "Driver": "bridge"}
    docker_host.containers["web"] = {"Name": "/web", "Config": {}, "State": {"Running": True}}

    teardown = StateStore(path).finalize(make_run(HostRun("local", ())), [HostConfig("local")], lambda host: docker_host)

    assert [r.task for r in teardown] == ["web", "net"]
    assert all(r.outcome is Outcome.APPLIED for r in teardown)
    assert teardown[0].details.startswith("teardown:")
    assert docker_host.containers == {} and docker_host.networks == {}
    assert json.loads(path.read_text())["resources"] == {}


def test_failed_or_untargeted_hosts_keep_previous_entries(tmp_path, docker_host):
    path = tmp_path / "state.json"
    entry = {"kind": "volume", "task": "data", "params": {"name": "data"}, "depends_on": []}
    path.write_text(json.dumps({"resources": {"web1": {"volume.data": entry}, "web2": {"volume.data": entry}}}))

    run = make_run(HostRun("web1", (), failed_task="backend"))
    teardown = StateStore(path).finalize(run, [HostConfig("web1")], lambda host: docker_host)

    assert teardown == []
    assert docker_host.calls == []
    resources = json.loads(path.read_text())["resources"]
    assert resources == {"web1": {"volume.data": entry}, "web2": {"volume.data": entry}}
