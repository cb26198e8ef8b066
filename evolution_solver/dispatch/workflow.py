"""Deterministic step executor over a virtual clock."""

import heapq
import itertools
from datetime import datetime, timedelta
from typing import Any

import structlog

from evolution_solver.core.types import utcnow
from evolution_solver.dispatch.base import Task, TaskHandle, TaskHandler, TaskType

logger = structlog.get_logger()


class WorkflowDispatcher:
    """Runs tasks one at a time in due-time order.

    Delays advance a virtual clock instead of sleeping, so a whole job runs
    as fast as its handlers do. Tasks due at the same time run in enqueue
    order. Failed steps are redelivered immediately, up to
    ``max_deliveries`` times.
    """

    def __init__(
        self,
        handler: TaskHandler,
        start: datetime | None = None,
        max_deliveries: int = 3,
    ) -> None:
        self._handler = handler
        self._now = start or utcnow()
        self._max_deliveries = max(1, max_deliveries)
        self._queue: list[tuple[datetime, int, Task]] = []
        self._sequence = itertools.count()
        self.steps_run = 0

    def clock(self) -> datetime:
        """Current virtual time."""
        return self._now

    def advance(self, seconds: float) -> None:
        """Move the virtual clock forward."""
        self._now += timedelta(seconds=seconds)

    @property
    def pending_count(self) -> int:
        """Number of tasks not yet run."""
        return len(self._queue)

    async def enqueue(
        self,
        task_type: TaskType,
        payload: dict[str, Any],
        delay: float = 0.0,
    ) -> TaskHandle:
        """Schedule a task at ``clock() + delay``."""
        task = Task(task_type=task_type, payload=payload, delay=max(0.0, delay))
        due = self._now + timedelta(seconds=task.delay)
        heapq.heappush(self._queue, (due, next(self._sequence), task))
        return TaskHandle(task_id=task.id, task_type=task_type, delay=task.delay)

    async def step(self) -> bool:
        """Run the next due task.

        Returns:
            False if nothing was queued.
        """
        if not self._queue:
            return False

        due, _, task = heapq.heappop(self._queue)
        if due > self._now:
            self._now = due

        for delivery in range(1, self._max_deliveries + 1):
            task.delivery = delivery
            try:
                await self._handler(task)
                break
            except Exception as e:
                logger.warning(
                    "Workflow step failed",
                    task_id=task.id,
                    task_type=task.task_type.value,
                    delivery=delivery,
                    error=str(e),
                )
        self.steps_run += 1
        return True

    async def run_until_idle(self, max_steps: int = 10_000) -> int:
        """Run tasks until the queue is empty.

        Returns:
            Number of steps executed.

        Raises:
            RuntimeError: If *max_steps* is reached with work still queued.
        """
        steps = 0
        while self._queue:
            if steps >= max_steps:
                raise RuntimeError(f"Workflow still busy after {max_steps} steps")
            await self.step()
            steps += 1
        return steps
