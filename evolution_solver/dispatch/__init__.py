"""Task dispatch backends."""

from evolution_solver.dispatch.base import (
    Task,
    TaskDispatcher,
    TaskHandle,
    TaskHandler,
    TaskType,
)
from evolution_solver.dispatch.queue import QueueDispatcher
from evolution_solver.dispatch.workflow import WorkflowDispatcher


def create_dispatcher(
    backend: str,
    handler: TaskHandler,
    max_deliveries: int = 3,
) -> QueueDispatcher | WorkflowDispatcher:
    """Build the dispatch backend selected in settings."""
    if backend == "queue":
        return QueueDispatcher(handler, max_deliveries=max_deliveries)
    if backend == "workflow":
        return WorkflowDispatcher(handler, max_deliveries=max_deliveries)
    raise ValueError(f"Unsupported dispatch backend: {backend}")


__all__ = [
    "QueueDispatcher",
    "Task",
    "TaskDispatcher",
    "TaskHandle",
    "TaskHandler",
    "TaskType",
    "WorkflowDispatcher",
    "create_dispatcher",
]
