"""Evolution service: wires store, oracle, dispatcher, orchestrator and workers."""

import random
import uuid
from typing import Any

import pydantic
import structlog

from evolution_solver.config.settings import Settings, get_settings
from evolution_solver.core.errors import ValidationError
from evolution_solver.core.types import EvolutionConfig, Job, utcnow
from evolution_solver.dispatch import (
    QueueDispatcher,
    Task,
    TaskType,
    WorkflowDispatcher,
    create_dispatcher,
)
from evolution_solver.evolution.enricher import Enricher
from evolution_solver.evolution.oracle import Oracle
from evolution_solver.evolution.variator import Variator
from evolution_solver.llm.router import ModelRouter
from evolution_solver.orchestrator import PhaseOrchestrator
from evolution_solver.store import BaseJobStore, create_store
from evolution_solver.worker import PhaseTaskRequest, PhaseWorker

logger = structlog.get_logger()

MIN_PROBLEM_LENGTH = 10
MAX_PROBLEM_LENGTH = 5000


def validate_problem_context(problem_context: str) -> str:
    """Normalize and check the problem statement.

    Raises:
        ValidationError: If it is shorter than 10 or longer than 5000 characters.
    """
    text = (problem_context or "").strip()
    if len(text) < MIN_PROBLEM_LENGTH:
        raise ValidationError(
            f"Problem context must be at least {MIN_PROBLEM_LENGTH} characters"
        )
    if len(text) > MAX_PROBLEM_LENGTH:
        raise ValidationError(
            f"Problem context must be at most {MAX_PROBLEM_LENGTH} characters"
        )
    return text


def parse_config(config: EvolutionConfig | dict[str, Any] | None) -> EvolutionConfig:
    """Validate a job configuration, reporting every invalid field.

    Raises:
        ValidationError: If any field is invalid.
    """
    if isinstance(config, EvolutionConfig):
        return config
    try:
        return EvolutionConfig.model_validate(config or {})
    except pydantic.ValidationError as e:
        violations = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise ValidationError("Invalid evolution config", violations=violations) from e


class EvolutionService:
    """Submits jobs and routes dispatched tasks to the orchestrator and workers."""

    def __init__(
        self,
        settings: Settings | None = None,
        store: BaseJobStore | None = None,
        oracle: Oracle | None = None,
        dispatch_backend: str | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            settings: Settings. If None, uses get_settings().
            store: Job store. If None, built from settings.
            oracle: Oracle. If None, a ModelRouter built from settings.
            dispatch_backend: "queue" or "workflow"; overrides settings.
            rng: Random source for backoff jitter.
        """
        self._settings = settings or get_settings()
        self._store = store or create_store(
            self._settings.store_backend, self._settings.data_dir
        )

        self._oracle = oracle or ModelRouter(settings=self._settings)

        backend = dispatch_backend or self._settings.dispatch_backend
        self._dispatcher = create_dispatcher(
            backend, self.handle_task, max_deliveries=self._settings.queue_max_deliveries
        )
        clock = (
            self._dispatcher.clock
            if isinstance(self._dispatcher, WorkflowDispatcher)
            else utcnow
        )

        self._orchestrator = PhaseOrchestrator(
            self._store,
            self._dispatcher,
            config=self._settings.orchestrator,
            clock=clock,
            rng=rng,
        )
        self._worker = PhaseWorker(
            self._store,
            Variator(self._oracle, max_attempts=self._settings.variator_max_attempts),
            Enricher(self._oracle),
            clock=clock,
        )

    @property
    def store(self) -> BaseJobStore:
        """The job store."""
        return self._store

    @property
    def dispatcher(self) -> QueueDispatcher | WorkflowDispatcher:
        """The dispatch backend."""
        return self._dispatcher

    @property
    def orchestrator(self) -> PhaseOrchestrator:
        """The phase orchestrator."""
        return self._orchestrator

    async def submit_job(
        self,
        problem_context: str,
        config: EvolutionConfig | dict[str, Any] | None = None,
        job_id: str | None = None,
    ) -> Job:
        """Create a job and schedule its first orchestrator check.

        Raises:
            ValidationError: If the problem context or configuration is invalid.
        """
        job = Job(
            id=job_id or str(uuid.uuid4()),
            problem_context=validate_problem_context(problem_context),
            config=parse_config(config),
        )
        if isinstance(self._dispatcher, WorkflowDispatcher):
            job.created_at = job.updated_at = self._dispatcher.clock()

        await self._store.create(job)
        await self._dispatcher.enqueue(
            TaskType.ORCHESTRATOR_CHECK, {"job_id": job.id, "check_attempt": 0}
        )
        logger.info(
            "Job submitted",
            job_id=job.id,
            generations=job.config.generations,
            population_size=job.config.population_size,
        )
        return job

    async def handle_task(self, task: Task) -> None:
        """Route a dispatched task."""
        if task.task_type == TaskType.ORCHESTRATOR_CHECK:
            await self._orchestrator.orchestrate(
                task.payload["job_id"], int(task.payload.get("check_attempt", 0))
            )
            return

        request = PhaseTaskRequest.model_validate(task.payload)
        response = await self._worker.handle(request)
        if not response.success:
            logger.warning(
                "Phase task unsuccessful",
                job_id=request.job_id,
                phase=request.phase.value,
                generation=request.generation,
                error_kind=response.error_kind.value if response.error_kind else None,
                retriable=response.retriable,
            )

    async def run_until_idle(self) -> None:
        """Drive scheduled work until nothing is left."""
        if isinstance(self._dispatcher, WorkflowDispatcher):
            await self._dispatcher.run_until_idle()
        else:
            await self._dispatcher.join()

    async def run(
        self,
        problem_context: str,
        config: EvolutionConfig | dict[str, Any] | None = None,
    ) -> Job:
        """Submit a job and drive it to a terminal status."""
        job = await self.submit_job(problem_context, config)
        await self.run_until_idle()
        return await self._store.require(job.id)

    async def close(self) -> None:
        """Release the dispatcher and oracle resources."""
        if isinstance(self._dispatcher, QueueDispatcher):
            await self._dispatcher.close()
        close = getattr(self._oracle, "close", None)
        if close is not None:
            await close()
