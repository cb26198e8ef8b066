"""Phase orchestrator: drives a job through vary -> enrich -> rank per generation.

Each invocation reads the job, decides one :class:`Action` with a pure
function of the job state and the clock, executes it, and schedules the next
check as a delayed task. Nothing loops in-process; a job stops being checked
simply by not being re-enqueued.
"""

import random
from collections.abc import Callable
from datetime import datetime

import structlog
from structlog import contextvars

from evolution_solver.config.settings import OrchestratorConfig
from evolution_solver.core.errors import ErrorKind, JobNotFoundError
from evolution_solver.core.types import (
    PHASE_ORDER,
    GenerationSummary,
    Job,
    JobResult,
    Phase,
    Solution,
    utcnow,
)
from evolution_solver.dispatch.base import TaskDispatcher, TaskType
from evolution_solver.orchestrator.actions import Action, ActionType
from evolution_solver.store.base import BaseJobStore, TransitionAction, TransitionResult
from evolution_solver.worker.handlers import PhaseTaskRequest

logger = structlog.get_logger()

TOP_SOLUTIONS_LIMIT = 10


class PhaseOrchestrator:
    """State machine deciding and executing the next step of a job."""

    def __init__(
        self,
        store: BaseJobStore,
        dispatcher: TaskDispatcher,
        config: OrchestratorConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            store: Job store.
            dispatcher: Backend used for worker tasks and self-checks.
            config: Timeouts and backoff. Defaults to OrchestratorConfig().
            clock: Source of the current time (virtual under the workflow backend).
            rng: Random source for backoff jitter.
        """
        self._store = store
        self._dispatcher = dispatcher
        self._config = config or OrchestratorConfig()
        self._clock = clock
        self._rng = rng or random.Random()

    def phase_timeout(self, phase: Phase) -> float:
        """Seconds a started phase may run before it is retried."""
        return getattr(self._config.phase_timeouts, phase.value)

    def determine_next_action(self, job: Job, now: datetime) -> Action:
        """Decide the next action for *job* at time *now*.

        Pure: identical inputs always yield an identical action.
        """
        if job.is_terminal:
            return Action(type=ActionType.ALREADY_COMPLETE, reason=job.status.value)

        generation = job.current_generation
        record = job.generation_record(generation)

        for phase in PHASE_ORDER:
            state = record.phases.get(phase) if record is not None else None
            if state is not None and state.complete:
                continue

            if state is None or not state.started:
                return self._create(job, phase, generation)

            elapsed = (now - state.started_at).total_seconds() if state.started_at else 0.0
            if elapsed > self.phase_timeout(phase):
                return Action(
                    type=ActionType.RETRY_TASK,
                    phase=phase,
                    generation=generation,
                    reason="timeout",
                    top_performers=self._previous_top_performers(job, phase, generation),
                )
            return Action(
                type=ActionType.WAIT,
                phase=phase,
                generation=generation,
                reason=f"{phase.value} in progress",
            )

        if generation < job.config.generations:
            return self._create(job, Phase.VARIATOR, generation + 1)

        return Action(type=ActionType.MARK_COMPLETE, generation=generation)

    def _create(self, job: Job, phase: Phase, generation: int) -> Action:
        return Action(
            type=ActionType.CREATE_TASK,
            phase=phase,
            generation=generation,
            top_performers=self._previous_top_performers(job, phase, generation),
        )

    @staticmethod
    def _previous_top_performers(job: Job, phase: Phase, generation: int) -> list[Solution]:
        if phase != Phase.VARIATOR or generation <= 1:
            return []
        previous = job.generation_record(generation - 1)
        return list(previous.top_performers) if previous is not None else []

    def base_backoff(self, check_attempt: int) -> float:
        """Deterministic part of the backoff, capped below ``backoff_max - jitter``."""
        cap = self._config.backoff_max - self._config.backoff_jitter
        exponent = min(max(check_attempt, 0), 32)
        return min(self._config.backoff_base * (2**exponent), cap)

    def calculate_backoff(self, check_attempt: int) -> float:
        """Delay in seconds before check number *check_attempt*."""
        jitter = self._rng.random() * self._config.backoff_jitter
        return self.base_backoff(check_attempt) + jitter

    def build_phase_request(self, job: Job, action: Action) -> PhaseTaskRequest:
        """Assemble the inputs a worker needs for the action's phase."""
        if action.phase is None or action.generation is None:
            raise ValueError(f"{action.type.value} action has no phase to build a request for")
        record = job.generation_record(action.generation)

        request = PhaseTaskRequest(
            job_id=job.id,
            generation=action.generation,
            phase=action.phase,
            evolution_config=job.config,
            problem_context=job.problem_context,
        )
        if action.phase == Phase.VARIATOR:
            request.top_performers = list(action.top_performers)
        elif action.phase == Phase.ENRICHER and record is not None:
            request.ideas = list(record.ideas)
        elif action.phase == Phase.RANKER and record is not None:
            request.enriched_ideas = list(record.enriched_ideas)
        return request

    async def orchestrate(self, job_id: str, check_attempt: int = 0) -> Action | None:
        """Run one orchestrator check.

        Returns:
            The executed action, or None if the check did not get that far.
        """
        with contextvars.bound_contextvars(job_id=job_id, check_attempt=check_attempt):
            if check_attempt > self._config.max_check_attempts:
                logger.error(
                    "Orchestration attempts exhausted",
                    max_check_attempts=self._config.max_check_attempts,
                )
                await self._store.mark_failed(
                    job_id,
                    ErrorKind.ORCHESTRATION_EXHAUSTED,
                    f"Max orchestration attempts exceeded ({self._config.max_check_attempts})",
                    now=self._clock(),
                )
                return None

            try:
                job = await self._store.require(job_id)
                now = self._clock()
                action = self.determine_next_action(job, now)
                logger.info("Next action", action=action.describe())
                await self.execute_action(job, action, check_attempt, now)
                return action
            except JobNotFoundError:
                logger.error("Job not found, dropping orchestrator check")
                return None
            except Exception as e:
                logger.exception("Orchestration error, re-queuing", error=str(e))
                await self.requeue(job_id, check_attempt + 1)
                return None

    async def execute_action(
        self,
        job: Job,
        action: Action,
        check_attempt: int,
        now: datetime | None = None,
    ) -> None:
        """Apply the side effects of *action*."""
        now = now or self._clock()

        if action.type in (ActionType.CREATE_TASK, ActionType.RETRY_TASK):
            if action.phase is None or action.generation is None:
                raise ValueError(f"{action.type.value} action needs a phase and a generation")
            if action.type == ActionType.RETRY_TASK:
                logger.warning(
                    "Phase timed out, retrying",
                    phase=action.phase.value,
                    generation=action.generation,
                )
                record = job.generation_record(action.generation)
                seen = record.phase(action.phase).started_at if record is not None else None
                result = await self._store.transition_phase(
                    job.id,
                    action.generation,
                    action.phase,
                    TransitionAction.RESTART,
                    now=now,
                    expected_started_at=seen,
                )
            else:
                result = await self._store.transition_phase(
                    job.id, action.generation, action.phase, TransitionAction.START, now=now
                )
            if result == TransitionResult.ALREADY_STARTED:
                logger.info(
                    "Phase already started elsewhere, not dispatching",
                    phase=action.phase.value,
                    generation=action.generation,
                )
            else:
                request = self.build_phase_request(job, action)
                await self._dispatcher.enqueue(
                    TaskType.PHASE_WORKER, request.model_dump(mode="json")
                )
                logger.info(
                    "Phase task dispatched",
                    phase=action.phase.value,
                    generation=action.generation,
                )
            await self.requeue(job.id, check_attempt + 1)

        elif action.type == ActionType.WAIT:
            await self.requeue(job.id, check_attempt + 1)

        elif action.type == ActionType.MARK_COMPLETE:
            result = self.aggregate(job)
            finalized = await self._store.finalize(job.id, result, now=now)
            if finalized:
                logger.info(
                    "Job complete",
                    total_solutions=result.total_solutions,
                    top_score=result.top_solutions[0].score if result.top_solutions else None,
                )

        else:
            logger.debug("Job already terminal", status=job.status.value)

    async def requeue(self, job_id: str, next_attempt: int) -> None:
        """Schedule the next orchestrator check."""
        delay = self.calculate_backoff(next_attempt)
        await self._dispatcher.enqueue(
            TaskType.ORCHESTRATOR_CHECK,
            {"job_id": job_id, "check_attempt": next_attempt},
            delay=delay,
        )
        logger.debug("Orchestrator re-queued", next_attempt=next_attempt, delay=round(delay, 2))

    def aggregate(self, job: Job) -> JobResult:
        """Combine every generation's ranked output into the final result."""
        all_solutions: list[Solution] = []
        top_performers: list[Solution] = []
        history: list[GenerationSummary] = []

        for generation in sorted(job.generations):
            if generation > job.config.generations:
                continue
            record = job.generations[generation]
            all_solutions.extend(
                s.model_copy(update={"generation": generation}) for s in record.solutions
            )
            top_performers.extend(
                s.model_copy(update={"generation": generation}) for s in record.top_performers
            )
            history.append(
                GenerationSummary(
                    generation=generation,
                    solution_count=len(record.solutions),
                    top_score=record.top_score,
                    avg_score=record.avg_score,
                    completed_at=record.phase(Phase.RANKER).completed_at,
                )
            )

        ranked = sorted(
            all_solutions,
            key=lambda s: -(s.score if s.score is not None else float("-inf")),
        )
        return JobResult(
            top_solutions=ranked[:TOP_SOLUTIONS_LIMIT],
            all_solutions=ranked,
            top_performers=top_performers,
            generation_history=history,
            total_evaluations=job.config.generations * job.config.population_size,
            total_solutions=len(ranked),
        )
