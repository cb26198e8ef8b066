"""Tests for the task dispatch backends."""

from datetime import datetime, timedelta, timezone

import pytest

from evolution_solver.dispatch import (
    QueueDispatcher,
    Task,
    TaskType,
    WorkflowDispatcher,
    create_dispatcher,
)

T0 = datetime(2020, 1, 1, tzinfo=timezone.utc)


class Recorder:
    """Task handler that records deliveries and can fail the first N."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.seen: list[Task] = []

    async def __call__(self, task: Task) -> None:
        self.seen.append(task.model_copy())
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("handler crashed")


class TestCreateDispatcher:
    """Tests for create_dispatcher."""

    def test_backends(self) -> None:
        handler = Recorder()
        assert isinstance(create_dispatcher("queue", handler), QueueDispatcher)
        assert isinstance(create_dispatcher("workflow", handler), WorkflowDispatcher)

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError):
            create_dispatcher("celery", Recorder())


class TestQueueDispatcher:
    """Tests for QueueDispatcher."""

    @pytest.mark.asyncio
    async def test_delivers_payload(self) -> None:
        handler = Recorder()
        dispatcher = QueueDispatcher(handler)

        handle = await dispatcher.enqueue(TaskType.ORCHESTRATOR_CHECK, {"job_id": "j"}, delay=0.01)
        await dispatcher.join()

        assert len(handler.seen) == 1
        assert handler.seen[0].id == handle.task_id
        assert handler.seen[0].payload == {"job_id": "j"}
        assert dispatcher.pending_count == 0

    @pytest.mark.asyncio
    async def test_redelivers_after_failure(self) -> None:
        handler = Recorder(failures=1)
        dispatcher = QueueDispatcher(handler, max_deliveries=3, redelivery_delay=0)

        await dispatcher.enqueue(TaskType.PHASE_WORKER, {})
        await dispatcher.join()

        assert [t.delivery for t in handler.seen] == [1, 2]

    @pytest.mark.asyncio
    async def test_drops_after_max_deliveries(self) -> None:
        handler = Recorder(failures=10)
        dispatcher = QueueDispatcher(handler, max_deliveries=2, redelivery_delay=0)

        await dispatcher.enqueue(TaskType.PHASE_WORKER, {})
        await dispatcher.join()

        assert len(handler.seen) == 2

    @pytest.mark.asyncio
    async def test_close_cancels_pending(self) -> None:
        handler = Recorder()
        dispatcher = QueueDispatcher(handler)

        await dispatcher.enqueue(TaskType.ORCHESTRATOR_CHECK, {}, delay=60)
        await dispatcher.close()

        assert handler.seen == []


class TestWorkflowDispatcher:
    """Tests for WorkflowDispatcher."""

    @pytest.mark.asyncio
    async def test_runs_in_due_order(self) -> None:
        handler = Recorder()
        dispatcher = WorkflowDispatcher(handler, start=T0)

        await dispatcher.enqueue(TaskType.ORCHESTRATOR_CHECK, {"n": "late"}, delay=30)
        await dispatcher.enqueue(TaskType.ORCHESTRATOR_CHECK, {"n": "first"})
        await dispatcher.enqueue(TaskType.ORCHESTRATOR_CHECK, {"n": "second"})

        steps = await dispatcher.run_until_idle()

        assert steps == 3
        assert [t.payload["n"] for t in handler.seen] == ["first", "second", "late"]
        assert dispatcher.clock() == T0 + timedelta(seconds=30)

    @pytest.mark.asyncio
    async def test_virtual_clock_does_not_go_back(self) -> None:
        dispatcher = WorkflowDispatcher(Recorder(), start=T0)
        dispatcher.advance(100)

        await dispatcher.enqueue(TaskType.ORCHESTRATOR_CHECK, {})
        await dispatcher.step()

        assert dispatcher.clock() == T0 + timedelta(seconds=100)

    @pytest.mark.asyncio
    async def test_step_on_empty_queue(self) -> None:
        dispatcher = WorkflowDispatcher(Recorder())
        assert await dispatcher.step() is False

    @pytest.mark.asyncio
    async def test_failed_step_redelivered(self) -> None:
        handler = Recorder(failures=2)
        dispatcher = WorkflowDispatcher(handler, max_deliveries=3)

        await dispatcher.enqueue(TaskType.PHASE_WORKER, {})
        await dispatcher.run_until_idle()

        assert [t.delivery for t in handler.seen] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_step_limit(self) -> None:
        class Requeuer:
            def __init__(self) -> None:
                self.dispatcher: WorkflowDispatcher | None = None

            async def __call__(self, task: Task) -> None:
                await self.dispatcher.enqueue(TaskType.ORCHESTRATOR_CHECK, {}, delay=5)

        handler = Requeuer()
        dispatcher = WorkflowDispatcher(handler)
        handler.dispatcher = dispatcher
        await dispatcher.enqueue(TaskType.ORCHESTRATOR_CHECK, {})

        with pytest.raises(RuntimeError):
            await dispatcher.run_until_idle(max_steps=20)
