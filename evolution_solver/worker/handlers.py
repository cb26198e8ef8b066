"""Stateless phase worker.

A worker runs exactly one phase of one generation and writes the outputs and
the completion flag back to the job store in a single transaction. Duplicate
deliveries of a completed phase are acknowledged without re-running it.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field
from structlog import contextvars

from evolution_solver.core.errors import ErrorKind, EvolutionError, ValidationError
from evolution_solver.core.types import EvolutionConfig, Phase, Solution, utcnow
from evolution_solver.evolution.cache import EnrichmentCache
from evolution_solver.evolution.enricher import Enricher
from evolution_solver.evolution.ranker import rank_solutions
from evolution_solver.evolution.variator import Variator
from evolution_solver.store.base import BaseJobStore, TransitionResult

logger = structlog.get_logger()


class PhaseTaskRequest(BaseModel):
    """Payload of a phase-worker task."""

    job_id: str
    generation: int = Field(..., ge=1)
    phase: Phase
    evolution_config: EvolutionConfig
    problem_context: str

    # Phase-specific inputs
    top_performers: list[Solution] = Field(default_factory=list, description="Variator input")
    ideas: list[Solution] = Field(default_factory=list, description="Enricher input")
    enriched_ideas: list[Solution] = Field(default_factory=list, description="Ranker input")


class PhaseTaskResponse(BaseModel):
    """Result reported by a phase worker."""

    success: bool
    message: str = ""
    outputs: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    error_kind: ErrorKind | None = None
    retriable: bool = False


class PhaseWorker:
    """Executes variator, enricher and ranker tasks."""

    def __init__(
        self,
        store: BaseJobStore,
        variator: Variator,
        enricher: Enricher,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._variator = variator
        self._enricher = enricher
        self._clock = clock

    async def handle(self, request: PhaseTaskRequest) -> PhaseTaskResponse:
        """Run one phase task and report the outcome."""
        with contextvars.bound_contextvars(
            job_id=request.job_id,
            generation=request.generation,
            phase=request.phase.value,
        ):
            return await self._handle(request)

    async def _handle(self, request: PhaseTaskRequest) -> PhaseTaskResponse:
        job = await self._store.get(request.job_id)
        if job is None:
            logger.error("Phase task for unknown job")
            return PhaseTaskResponse(
                success=False,
                error=f"Job not found: {request.job_id}",
                error_kind=ErrorKind.JOB_NOT_FOUND,
            )

        if job.is_terminal:
            logger.info("Job already terminal, skipping phase", status=job.status.value)
            return PhaseTaskResponse(success=True, message=f"Job already {job.status.value}")

        record = job.generation_record(request.generation)
        if record is not None and record.phase(request.phase).complete:
            logger.info("Phase already complete")
            return PhaseTaskResponse(success=True, message="Already complete")

        logger.info("Starting phase")
        try:
            outputs, message = await self._run_phase(request)
        except ValidationError as e:
            await self._store.mark_failed(
                request.job_id, e.kind, e.message, now=self._clock()
            )
            return PhaseTaskResponse(
                success=False,
                error=str(e),
                error_kind=e.kind,
                retriable=False,
            )
        except EvolutionError as e:
            logger.warning("Phase failed, leaving it for retry", error=str(e))
            await self._store.record_phase_error(
                request.job_id,
                request.generation,
                request.phase,
                str(e),
                now=self._clock(),
            )
            return PhaseTaskResponse(
                success=False,
                error=str(e),
                error_kind=e.kind,
                retriable=True,
            )

        result = await self._store.complete_phase(
            request.job_id,
            request.generation,
            request.phase,
            outputs,
            now=self._clock(),
        )
        if result == TransitionResult.NOT_STARTED:
            # Reset by a timeout retry while this run was in flight
            logger.warning("Phase was reset during execution, outputs discarded")
            return PhaseTaskResponse(
                success=False,
                error="Phase was reset during execution",
                error_kind=ErrorKind.PHASE_FAILURE,
                retriable=True,
            )

        logger.info("Phase complete", summary=message)
        return PhaseTaskResponse(success=True, message=message, outputs=outputs)

    async def _run_phase(self, request: PhaseTaskRequest) -> tuple[dict[str, Any], str]:
        config = request.evolution_config

        if request.phase == Phase.VARIATOR:
            ideas = await self._variator.generate(
                job_id=request.job_id,
                generation=request.generation,
                problem_context=request.problem_context,
                top_performers=request.top_performers,
                config=config,
            )
            return {"ideas": ideas}, f"Generated {len(ideas)} ideas"

        if request.phase == Phase.ENRICHER:
            cache = EnrichmentCache(request.job_id, self._store)
            enrichment = await self._enricher.enrich(
                job_id=request.job_id,
                ideas=request.ideas,
                problem_context=request.problem_context,
                config=config,
                cache=cache,
            )
            if enrichment.failed:
                logger.warning(
                    "Some ideas failed enrichment",
                    failed_ids=[f.solution_id for f in enrichment.failed],
                )
            outputs = {
                "enriched_ideas": enrichment.enriched,
                "failed_ideas": enrichment.failed,
            }
            return outputs, f"Enriched {len(enrichment.enriched)} ideas"

        ranking = rank_solutions(request.enriched_ideas, config)
        outputs = {
            "solutions": ranking.solutions,
            "filtered": ranking.filtered,
            "top_performers": ranking.top_performers,
            "top_score": ranking.top_score,
            "avg_score": ranking.avg_score,
        }
        return outputs, f"Ranked {len(ranking.solutions)} ideas"
