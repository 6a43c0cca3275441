"""Dockhand container deployment toolkit."""

from .inventory import InventoryLoader
from .runner import RetryPolicy, TaskRunner
from .taskset import TaskSetLoader

__all__ = ["InventoryLoader", "RetryPolicy", "TaskRunner", "TaskSetLoader"]
