"""Job store interface and the shared phase-transition logic."""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Any, TypeVar

import structlog

from evolution_solver.core.errors import ErrorKind, JobNotFoundError, StoreTransactionConflict
from evolution_solver.core.types import (
    PHASE_OUTPUT_FIELDS,
    GenerationRecord,
    Job,
    JobError,
    JobResult,
    JobStatus,
    Phase,
    Solution,
    utcnow,
)

logger = structlog.get_logger()

T = TypeVar("T")

MAX_TRANSACTION_RETRIES = 3


class TransitionAction(str, Enum):
    """Phase transitions applied by the orchestrator and workers."""

    START = "start"
    COMPLETE = "complete"
    RESET = "reset"
    RESTART = "restart"


class TransitionResult(str, Enum):
    """Outcome of a phase transition."""

    UPDATED = "updated"
    ALREADY_STARTED = "already_started"
    RESET = "reset"
    NOT_STARTED = "not_started"


def _check_output_fields(phase: Phase, payload: dict[str, Any]) -> None:
    unknown = set(payload) - PHASE_OUTPUT_FIELDS[phase]
    if unknown:
        raise ValueError(f"Unknown {phase.value} output fields: {sorted(unknown)}")


def _apply_output(job: Job, generation: int, phase: Phase, payload: dict[str, Any]) -> None:
    record = job.ensure_generation(generation)
    job.generations[generation] = GenerationRecord.model_validate(
        {**record.model_dump(), **payload}
    )


def _apply_transition(
    job: Job,
    generation: int,
    phase: Phase,
    action: TransitionAction,
    timestamp: datetime,
    expected_started_at: datetime | None = None,
) -> tuple[TransitionResult, bool]:
    """Mutate *job* in place; returns ``(result, changed)``."""
    state = job.ensure_generation(generation).phase(phase)

    if action == TransitionAction.RESTART:
        # Only the attempt the caller saw may be replaced
        if state.complete or state.started_at != expected_started_at:
            return TransitionResult.ALREADY_STARTED, False
        state.started = False

    if action in (TransitionAction.START, TransitionAction.RESTART):
        if state.started:
            return TransitionResult.ALREADY_STARTED, False
        state.started = True
        state.started_at = timestamp
        state.complete = False
        state.completed_at = None
        state.error = None
        state.attempts += 1
        if job.status == JobStatus.PENDING:
            job.status = JobStatus.PROCESSING
        if phase == Phase.VARIATOR:
            job.current_generation = generation
        return TransitionResult.UPDATED, True

    if action == TransitionAction.RESET:
        state.started = False
        state.started_at = None
        state.complete = False
        state.completed_at = None
        return TransitionResult.RESET, True

    # complete=true is never written without started=true
    if not state.started:
        return TransitionResult.NOT_STARTED, False
    if state.complete:
        return TransitionResult.UPDATED, False
    state.complete = True
    state.completed_at = timestamp
    state.error = None
    return TransitionResult.UPDATED, True


class BaseJobStore(ABC):
    """Transactional job store.

    Every mutation is a read-modify-write of the whole job document under a
    per-job lock. Backends persist documents and check the optimistic
    ``version`` counter on write, raising :class:`StoreTransactionConflict`
    when another writer got there first; the transaction is then retried on a
    fresh read, where a losing phase start resolves to ``already_started``.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    # Backend hooks

    @abstractmethod
    async def _load(self, job_id: str) -> Job | None:
        """Read a job document, or None if it does not exist."""

    @abstractmethod
    async def _save(self, job: Job, expected_version: int | None) -> None:
        """Write a job document.

        Args:
            job: Document to write (its version already bumped).
            expected_version: Version the stored document must still have,
                or None when creating.

        Raises:
            StoreTransactionConflict: If the stored version differs.
        """

    @abstractmethod
    async def _list_ids(self) -> list[str]:
        """Ids of all stored jobs."""

    @abstractmethod
    async def get_cached_enrichment(self, job_id: str, key: str) -> Solution | None:
        """Read an enrichment cache entry."""

    @abstractmethod
    async def put_cached_enrichment(self, job_id: str, key: str, solution: Solution) -> None:
        """Write an enrichment cache entry (last writer wins)."""

    # Public API

    def _lock(self, job_id: str) -> asyncio.Lock:
        if job_id not in self._locks:
            self._locks[job_id] = asyncio.Lock()
        return self._locks[job_id]

    async def create(self, job: Job) -> Job:
        """Persist a new job."""
        async with self._lock(job.id):
            if await self._load(job.id) is not None:
                raise ValueError(f"Job already exists: {job.id}")
            await self._save(job, None)
        logger.info("Job created", job_id=job.id)
        return job

    async def get(self, job_id: str) -> Job | None:
        """Read a job snapshot."""
        return await self._load(job_id)

    async def require(self, job_id: str) -> Job:
        """Read a job snapshot, raising if it does not exist."""
        job = await self._load(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def list_jobs(self) -> list[Job]:
        """All jobs, newest first."""
        jobs = []
        for job_id in await self._list_ids():
            job = await self._load(job_id)
            if job is not None:
                jobs.append(job)
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    async def _transaction(
        self,
        job_id: str,
        mutate: Callable[[Job], tuple[T, bool]],
        now: datetime | None = None,
    ) -> T:
        """Run *mutate* as an atomic read-modify-write.

        *mutate* returns ``(value, changed)``; nothing is written when
        ``changed`` is false.
        """
        async with self._lock(job_id):
            for attempt in range(1, MAX_TRANSACTION_RETRIES + 1):
                job = await self.require(job_id)
                expected_version = job.version
                value, changed = mutate(job)
                if not changed:
                    return value

                job.version = expected_version + 1
                job.updated_at = now or utcnow()
                try:
                    await self._save(job, expected_version)
                except StoreTransactionConflict:
                    logger.debug("Store conflict, retrying", job_id=job_id, attempt=attempt)
                    continue
                return value

        raise StoreTransactionConflict(
            f"Gave up after {MAX_TRANSACTION_RETRIES} conflicting writes", job_id=job_id
        )

    async def transition_phase(
        self,
        job_id: str,
        generation: int,
        phase: Phase,
        action: TransitionAction,
        now: datetime | None = None,
        expected_started_at: datetime | None = None,
    ) -> TransitionResult:
        """Atomically apply a phase transition.

        - ``start``: rejected with ``already_started`` if the phase is started;
          otherwise marks it started, counts the attempt, moves the job to
          ``processing`` and, for the variator, to this generation.
        - ``reset``: clears started/complete flags and timestamps.
        - ``restart``: reset followed by start in one write, applied only if
          the phase is incomplete and still carries ``expected_started_at``;
          otherwise ``already_started``.
        - ``complete``: marks a started phase complete; ``not_started`` if
          the phase was never started.
        """
        timestamp = now or utcnow()

        def mutate(job: Job) -> tuple[TransitionResult, bool]:
            return _apply_transition(
                job, generation, phase, action, timestamp, expected_started_at
            )

        result = await self._transaction(job_id, mutate, now=timestamp)
        logger.debug(
            "Phase transition",
            job_id=job_id,
            generation=generation,
            phase=phase.value,
            action=action.value,
            result=result.value,
        )
        return result

    async def append_phase_output(
        self,
        job_id: str,
        generation: int,
        phase: Phase,
        payload: dict[str, Any],
        now: datetime | None = None,
    ) -> None:
        """Write a phase's outputs into its generation record."""
        _check_output_fields(phase, payload)

        def mutate(job: Job) -> tuple[None, bool]:
            _apply_output(job, generation, phase, payload)
            return None, True

        await self._transaction(job_id, mutate, now=now)

    async def complete_phase(
        self,
        job_id: str,
        generation: int,
        phase: Phase,
        payload: dict[str, Any],
        now: datetime | None = None,
    ) -> TransitionResult:
        """Write a phase's outputs and mark it complete in one transaction.

        Nothing is written when the phase is not started (it was reset while
        the worker ran) or is already complete (a duplicate delivery won).
        """
        _check_output_fields(phase, payload)
        timestamp = now or utcnow()

        def mutate(job: Job) -> tuple[TransitionResult, bool]:
            state = job.ensure_generation(generation).phase(phase)
            if not state.started:
                return TransitionResult.NOT_STARTED, False
            if state.complete:
                return TransitionResult.UPDATED, False
            _apply_output(job, generation, phase, payload)
            return _apply_transition(
                job, generation, phase, TransitionAction.COMPLETE, timestamp
            )

        return await self._transaction(job_id, mutate, now=timestamp)

    async def record_phase_error(
        self,
        job_id: str,
        generation: int,
        phase: Phase,
        error: str,
        now: datetime | None = None,
    ) -> None:
        """Record why a phase failed; the phase stays incomplete."""

        def mutate(job: Job) -> tuple[None, bool]:
            job.ensure_generation(generation).phase(phase).error = error
            return None, True

        await self._transaction(job_id, mutate, now=now)

    async def finalize(
        self, job_id: str, result: JobResult, now: datetime | None = None
    ) -> bool:
        """Complete a job with its aggregate result.

        Returns:
            False if the job had already reached a terminal status.
        """
        timestamp = now or utcnow()

        def mutate(job: Job) -> tuple[bool, bool]:
            if job.is_terminal:
                return False, False
            job.status = JobStatus.COMPLETED
            job.result = result
            job.completed_at = timestamp
            return True, True

        return await self._transaction(job_id, mutate, now=timestamp)

    async def mark_failed(
        self,
        job_id: str,
        kind: ErrorKind,
        message: str,
        now: datetime | None = None,
    ) -> bool:
        """Fail a job permanently.

        Returns:
            False if the job had already reached a terminal status.
        """
        timestamp = now or utcnow()

        def mutate(job: Job) -> tuple[bool, bool]:
            if job.is_terminal:
                return False, False
            job.status = JobStatus.FAILED
            job.error = JobError(kind=kind, message=message)
            job.completed_at = timestamp
            return True, True

        failed = await self._transaction(job_id, mutate, now=timestamp)
        if failed:
            logger.error("Job failed", job_id=job_id, kind=kind.value, message=message)
        return failed
