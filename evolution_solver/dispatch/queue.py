"""Asyncio delayed-task queue backend."""

import asyncio
from typing import Any

import structlog

from evolution_solver.dispatch.base import Task, TaskHandle, TaskHandler, TaskType

logger = structlog.get_logger()


class QueueDispatcher:
    """Runs each task as an asyncio task after its delay.

    A handler error triggers redelivery after ``redelivery_delay`` seconds,
    up to ``max_deliveries`` deliveries in total.
    """

    def __init__(
        self,
        handler: TaskHandler,
        max_deliveries: int = 3,
        redelivery_delay: float = 1.0,
    ) -> None:
        self._handler = handler
        self._max_deliveries = max(1, max_deliveries)
        self._redelivery_delay = redelivery_delay
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending_count(self) -> int:
        """Number of tasks scheduled or running."""
        return len(self._pending)

    async def enqueue(
        self,
        task_type: TaskType,
        payload: dict[str, Any],
        delay: float = 0.0,
    ) -> TaskHandle:
        """Schedule a task."""
        task = Task(task_type=task_type, payload=payload, delay=max(0.0, delay))
        runner = asyncio.create_task(self._run(task), name=f"{task_type.value}:{task.id}")
        self._pending.add(runner)
        runner.add_done_callback(self._pending.discard)
        logger.debug("Task enqueued", task_id=task.id, task_type=task_type.value, delay=task.delay)
        return TaskHandle(task_id=task.id, task_type=task_type, delay=task.delay)

    async def _run(self, task: Task) -> None:
        if task.delay:
            await asyncio.sleep(task.delay)

        for delivery in range(1, self._max_deliveries + 1):
            task.delivery = delivery
            try:
                await self._handler(task)
                return
            except Exception as e:
                if delivery == self._max_deliveries:
                    logger.error(
                        "Task dropped after max deliveries",
                        task_id=task.id,
                        task_type=task.task_type.value,
                        deliveries=delivery,
                        error=str(e),
                    )
                    return
                logger.warning(
                    "Task handler failed, redelivering",
                    task_id=task.id,
                    task_type=task.task_type.value,
                    delivery=delivery,
                    error=str(e),
                )
                await asyncio.sleep(self._redelivery_delay)

    async def join(self) -> None:
        """Wait until no task is scheduled or running."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        """Cancel every scheduled task."""
        for runner in list(self._pending):
            runner.cancel()
        await asyncio.gather(*list(self._pending), return_exceptions=True)
