"""
Example plugin module for Dockhand.

Drop this file into a plugin directory (see plugin_dirs in main.conf) or make it
importable (plugin_modules) and it registers a ``http_check`` kind that probes
a URL on the target host and fails the task until the service answers.
"""

from dockhand_automation.errors import HostConnectionError
from dockhand_automation.operations.base import Operation
from dockhand_automation.types import HostConfig, Outcome, TaskResult


class HttpCheckOperation(Operation):
    kind = "http_check"

    def __init__(self, spec: dict):
        super().__init__(spec)
        self.url = spec.get("url", "http://localhost")

    @property
    def resource(self):
        return self.url

    def apply(self, host: HostConfig, executor) -> TaskResult:
        probe = executor.run(["curl", "-fsS", "-o", "/dev/null", self.url], check=False, mutable=False)
        if probe.returncode != 0:
            # Raised as a connection error so the runner retries with backoff.
            raise HostConnectionError(f"{self.url} not answering (rc={probe.returncode})")
        return self.result(host, Outcome.UNCHANGED, "reachable")


def register_operations(registry) -> None:
    registry["http_check"] = HttpCheckOperation
