from __future__ import annotations

from typing import Optional, Sequence


class AutomationError(Exception):
    """Base class for every error raised by dockhand."""

    retryable = False


class HostConnectionError(AutomationError, ConnectionError):
    """The target could not be reached; worth another attempt."""

    retryable = True


class ConfigurationError(AutomationError, ValueError):
    """Invalid inventory, task set or task parameters."""


class CycleError(ConfigurationError):
    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        path = " -> ".join([*self.cycle, self.cycle[0]]) if self.cycle else "?"
        super().__init__(f"dependency cycle detected: {path}")


class ResourceConflictError(AutomationError):
    """The runtime refused to create a resource because it already exists."""

    def __init__(self, kind: str, name: str, message: str = ""):
        self.kind = kind
        self.name = name
        super().__init__(message or f"{kind} '{name}' already exists")


class CommandError(AutomationError):
    def __init__(self, command: Sequence[str], returncode: int, stderr: str = "", stdout: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout
        super().__init__(self._summary())

    def _summary(self) -> str:
        message = _first_line(self.stderr) or _first_line(self.stdout)
        prefix = f"rc={self.returncode}"
        return f"{prefix}: {message}" if message else prefix


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, AutomationError):
        return exc.retryable
    return isinstance(exc, ConnectionError)


def _first_line(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    stripped = text.strip()
    if not stripped:
        return None
    line = stripped.splitlines()[0]
    return (line[:157] + "...") if len(line) > 160 else line
