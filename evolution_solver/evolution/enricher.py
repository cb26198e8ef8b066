"""Enrichment phase: attach a financial projection to each candidate."""

import asyncio
import json
import math
from typing import Any

import pydantic
import structlog
from pydantic import BaseModel, Field

from evolution_solver.core.errors import PhaseFailure
from evolution_solver.core.types import (
    BusinessCase,
    EnrichmentStrategy,
    EvolutionConfig,
    FailedEnrichment,
    Solution,
)
from evolution_solver.evolution.cache import EnrichmentCache
from evolution_solver.evolution.oracle import Oracle
from evolution_solver.evolution.prompts import ENRICHER_SYSTEM_PROMPT, enricher_guidance
from evolution_solver.evolution.schemas import (
    BATCH_ENRICHER_SCHEMA,
    SINGLE_IDEA_ENRICHER_SCHEMA,
)
from evolution_solver.llm.exceptions import LLMError

logger = structlog.get_logger()

# $50K, in millions USD
MIN_CAPEX = 0.05


class EnrichmentError(Exception):
    """A single candidate could not be enriched."""


class EnrichmentResult(BaseModel):
    """Outcome of enriching a set of candidates."""

    enriched: list[Solution] = Field(default_factory=list)
    failed: list[FailedEnrichment] = Field(default_factory=list)
    cache_hits: int = 0


def build_business_case(raw: Any) -> BusinessCase:
    """Validate an oracle business case, clamping tiny capital estimates.

    Raises:
        EnrichmentError: If the business case is missing or unusable.
    """
    if not isinstance(raw, dict):
        raise EnrichmentError("Missing business_case object")

    try:
        business_case = BusinessCase.model_validate(raw)
    except pydantic.ValidationError as e:
        raise EnrichmentError(f"Invalid business_case: {e.error_count()} field errors") from e

    capex = business_case.capex_est
    if capex is not None and math.isfinite(capex) and capex < MIN_CAPEX:
        business_case = business_case.model_copy(update={"capex_est": MIN_CAPEX})

    problems = business_case.violations()
    if problems:
        raise EnrichmentError("; ".join(problems))
    return business_case


class Enricher:
    """Enriches candidates in bounded batches.

    At most ``enrichment_concurrency`` oracle calls are in flight; batch i+1
    starts only once every call of batch i has settled. One candidate's
    failure never aborts its batch.
    """

    def __init__(self, oracle: Oracle) -> None:
        self._oracle = oracle

    def _system_prompt(self, problem_context: str, config: EvolutionConfig) -> str:
        return ENRICHER_SYSTEM_PROMPT.format(
            problem_context=problem_context,
            guidance=enricher_guidance(config),
        )

    async def enrich(
        self,
        job_id: str,
        ideas: list[Solution],
        problem_context: str,
        config: EvolutionConfig,
        cache: EnrichmentCache | None = None,
    ) -> EnrichmentResult:
        """Enrich every candidate independently.

        Args:
            job_id: Job identifier.
            ideas: Candidates to enrich.
            problem_context: Problem statement.
            config: Job configuration (fan-out width and strategy).
            cache: Optional idea-level cache.

        Returns:
            EnrichmentResult with enriched candidates in input order and the
            failures collected separately.

        Raises:
            PhaseFailure: If no candidate could be enriched.
        """
        if cache is None:
            cache = EnrichmentCache(job_id)
        width = config.enrichment_concurrency
        system_prompt = self._system_prompt(problem_context, config)
        result = EnrichmentResult()

        total_batches = math.ceil(len(ideas) / width) if ideas else 0
        for batch_index, start in enumerate(range(0, len(ideas), width), start=1):
            batch = ideas[start : start + width]
            logger.info(
                "Enriching batch",
                batch=batch_index,
                total_batches=total_batches,
                size=len(batch),
                strategy=config.enrichment_strategy.value,
            )

            # Cache hits skip the oracle entirely
            pending: list[Solution] = []
            outcomes: dict[str, Solution | FailedEnrichment] = {}
            for idea in batch:
                cached = await cache.get(idea)
                if cached is not None:
                    outcomes[idea.id] = cached
                    result.cache_hits += 1
                else:
                    pending.append(idea)

            if pending:
                if config.enrichment_strategy == EnrichmentStrategy.BATCH:
                    fresh = await self._enrich_batch(pending, system_prompt, config)
                else:
                    fresh = await asyncio.gather(
                        *(self._enrich_one(idea, system_prompt, config) for idea in pending)
                    )
                for outcome in fresh:
                    key = outcome.id if isinstance(outcome, Solution) else outcome.solution_id
                    outcomes[key] = outcome
                    if isinstance(outcome, Solution):
                        await cache.put(outcome)

            for idea in batch:
                outcome = outcomes[idea.id]
                if isinstance(outcome, Solution):
                    result.enriched.append(outcome)
                else:
                    result.failed.append(outcome)

        logger.info(
            "Enrichment finished",
            enriched=len(result.enriched),
            failed=len(result.failed),
            cache_hits=result.cache_hits,
        )

        if not result.enriched:
            raise PhaseFailure(
                f"All {len(ideas)} ideas failed enrichment",
                job_id=job_id,
            )
        return result

    async def _enrich_one(
        self,
        idea: Solution,
        system_prompt: str,
        config: EvolutionConfig,
    ) -> Solution | FailedEnrichment:
        user_prompt = "Idea to analyze:\n" + json.dumps(idea.prompt_view(), indent=2)
        try:
            payload = await self._oracle.generate(
                system_prompt,
                user_prompt,
                SINGLE_IDEA_ENRICHER_SCHEMA,
                task="enrichment",
                model_override=config.model,
            )
            business_case = build_business_case(payload.get("business_case"))
        except (LLMError, EnrichmentError) as e:
            logger.warning("Idea enrichment failed", solution_id=idea.id, error=str(e))
            return FailedEnrichment(solution_id=idea.id, error=str(e))

        return idea.model_copy(update={"business_case": business_case})

    async def _enrich_batch(
        self,
        batch: list[Solution],
        system_prompt: str,
        config: EvolutionConfig,
    ) -> list[Solution | FailedEnrichment]:
        user_prompt = "Ideas to analyze:\n" + json.dumps(
            [idea.prompt_view() for idea in batch], indent=2
        )
        try:
            payload = await self._oracle.generate(
                system_prompt,
                user_prompt,
                BATCH_ENRICHER_SCHEMA,
                task="enrichment",
                model_override=config.model,
            )
        except LLMError as e:
            logger.warning("Batch enrichment failed", size=len(batch), error=str(e))
            return [FailedEnrichment(solution_id=idea.id, error=str(e)) for idea in batch]

        raw_items = payload.get("enriched_ideas", payload.get("items", []))
        by_id: dict[str, dict[str, Any]] = {}
        if isinstance(raw_items, list):
            for item in raw_items:
                if isinstance(item, dict) and item.get("idea_id"):
                    by_id[str(item["idea_id"])] = item

        outcomes: list[Solution | FailedEnrichment] = []
        for idea in batch:
            item = by_id.get(idea.id)
            if item is None:
                outcomes.append(
                    FailedEnrichment(solution_id=idea.id, error="Missing from oracle reply")
                )
                continue
            try:
                business_case = build_business_case(item.get("business_case"))
            except EnrichmentError as e:
                outcomes.append(FailedEnrichment(solution_id=idea.id, error=str(e)))
                continue
            outcomes.append(idea.model_copy(update={"business_case": business_case}))
        return outcomes
