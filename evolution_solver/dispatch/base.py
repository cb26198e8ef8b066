"""Task types and the dispatcher interface."""

import uuid
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, Field


class TaskType(str, Enum):
    """Kinds of scheduled work."""

    ORCHESTRATOR_CHECK = "orchestrator-check"
    """Payload: ``{job_id, check_attempt}``."""

    PHASE_WORKER = "phase-worker"
    """Payload: a serialized ``PhaseTaskRequest``."""


class Task(BaseModel):
    """A unit of work delivered to the task handler."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    task_type: TaskType
    payload: dict[str, Any] = Field(default_factory=dict)
    delay: float = Field(default=0.0, ge=0.0, description="Seconds before first delivery")
    delivery: int = Field(default=1, description="1-based delivery attempt")


class TaskHandle(BaseModel):
    """Reference to an enqueued task."""

    task_id: str
    task_type: TaskType
    delay: float


TaskHandler = Callable[[Task], Awaitable[None]]


class TaskDispatcher(Protocol):
    """Schedules tasks for at-least-once delivery to a handler."""

    async def enqueue(
        self,
        task_type: TaskType,
        payload: dict[str, Any],
        delay: float = 0.0,
    ) -> TaskHandle: ...
