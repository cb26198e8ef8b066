"""Variation phase: propose a generation's candidates."""

import json
import math
from dataclasses import dataclass
from typing import Any

import structlog

from evolution_solver.core.errors import PhaseFailure
from evolution_solver.core.types import EvolutionConfig, Solution
from evolution_solver.evolution.oracle import Oracle
from evolution_solver.evolution.prompts import (
    OFFSPRING_MIX,
    VARIATOR_SYSTEM_PROMPT,
    WILDCARD_MIX,
    variator_guidance,
)
from evolution_solver.evolution.schemas import VARIATOR_SCHEMA
from evolution_solver.llm.exceptions import LLMError

logger = structlog.get_logger()

MAX_ELITES = 2
ELITE_FRACTION = 0.2


@dataclass(frozen=True)
class VariationPlan:
    """How a generation's population is split."""

    elite_count: int
    num_needed: int
    offspring_count: int
    wildcard_count: int


def plan_variation(
    population_size: int,
    prior_count: int,
    generation: int,
    config: EvolutionConfig,
) -> VariationPlan:
    """Split a population into elites, offspring and wildcards.

    Elites are kept only from generation 2 on, with elitism enabled and prior
    top performers available: ``min(2, floor(N * 0.2))`` of them, never more
    than the performers available.
    """
    elite_count = 0
    if generation > 1 and config.elitism and prior_count > 0:
        elite_count = min(MAX_ELITES, math.floor(population_size * ELITE_FRACTION), prior_count)

    num_needed = population_size - elite_count
    offspring_count = math.floor(num_needed * config.offspring_ratio) if prior_count > 0 else 0
    return VariationPlan(
        elite_count=elite_count,
        num_needed=num_needed,
        offspring_count=offspring_count,
        wildcard_count=num_needed - offspring_count,
    )


def make_solution_id(job_id: str, generation: int, sequence: int) -> str:
    """Deterministic candidate identifier; oracle-proposed ids are never used."""
    return f"VAR_{job_id[:6]}_G{generation}_{sequence:03d}"


class Variator:
    """Generates new candidates with the oracle.

    Malformed or empty oracle replies are retried inside the phase a bounded
    number of times before :class:`PhaseFailure` is raised.
    """

    def __init__(self, oracle: Oracle, max_attempts: int = 3) -> None:
        self._oracle = oracle
        self._max_attempts = max(1, max_attempts)

    def build_prompts(
        self,
        problem_context: str,
        top_performers: list[Solution],
        plan: VariationPlan,
        config: EvolutionConfig,
    ) -> tuple[str, str]:
        """Build (system, user) prompts for one variation request."""
        if top_performers:
            mix_text = OFFSPRING_MIX.format(
                offspring_count=plan.offspring_count,
                wildcard_count=plan.wildcard_count,
            )
        else:
            mix_text = WILDCARD_MIX.format(wildcard_count=plan.wildcard_count)

        system_prompt = VARIATOR_SYSTEM_PROMPT.format(
            problem_context=problem_context,
            guidance=variator_guidance(config),
            deal_types=config.deal_types,
            num_needed=plan.num_needed,
            mix_text=mix_text,
        )

        if top_performers:
            performers = [s.prompt_view() for s in top_performers]
            user_prompt = "Previous top performers:\n" + json.dumps(performers, indent=2)
        else:
            user_prompt = "Generate new creative business solutions."

        return system_prompt, user_prompt

    async def generate(
        self,
        job_id: str,
        generation: int,
        problem_context: str,
        top_performers: list[Solution],
        config: EvolutionConfig,
    ) -> list[Solution]:
        """Produce the candidates of one generation.

        Args:
            job_id: Job identifier, used for candidate ids.
            generation: Generation index (1-based).
            problem_context: Problem statement.
            top_performers: Previous generation's selection (empty in generation 1).
            config: Job configuration.

        Returns:
            Elites (unchanged) followed by the new candidates. Fewer than
            ``population_size`` if the oracle under-delivers.

        Raises:
            PhaseFailure: If no usable candidates are produced after all attempts.
        """
        plan = plan_variation(
            config.population_size, len(top_performers), generation, config
        )
        elites = top_performers[: plan.elite_count]

        logger.info(
            "Variation plan",
            generation=generation,
            elites=plan.elite_count,
            offspring=plan.offspring_count,
            wildcards=plan.wildcard_count,
        )

        if plan.num_needed <= 0:
            return list(elites)

        system_prompt, user_prompt = self.build_prompts(
            problem_context, top_performers, plan, config
        )

        new_ideas: list[Solution] = []
        last_error: str = "no attempts made"
        for attempt in range(1, self._max_attempts + 1):
            try:
                payload = await self._oracle.generate(
                    system_prompt,
                    user_prompt,
                    VARIATOR_SCHEMA,
                    task="variation",
                    model_override=config.model,
                )
            except LLMError as e:
                last_error = str(e)
                logger.warning(
                    "Variator oracle call failed",
                    attempt=attempt,
                    max_attempts=self._max_attempts,
                    error=last_error,
                )
                continue

            new_ideas = self._parse_ideas(payload, job_id, generation, plan.num_needed)
            if new_ideas:
                break
            last_error = "oracle returned no usable ideas"
            logger.warning(
                "Variator produced no usable ideas",
                attempt=attempt,
                max_attempts=self._max_attempts,
            )

        if not new_ideas:
            raise PhaseFailure(
                f"Variator failed after {self._max_attempts} attempts: {last_error}",
                job_id=job_id,
            )

        if len(new_ideas) < plan.num_needed:
            logger.warning(
                "Oracle under-delivered ideas",
                requested=plan.num_needed,
                received=len(new_ideas),
            )

        return list(elites) + new_ideas

    def _parse_ideas(
        self,
        payload: dict[str, Any],
        job_id: str,
        generation: int,
        num_needed: int,
    ) -> list[Solution]:
        raw_ideas = payload.get("ideas")
        if raw_ideas is None:
            raw_ideas = payload.get("items", [])
        if not isinstance(raw_ideas, list):
            return []

        ideas: list[Solution] = []
        for raw in raw_ideas:
            if len(ideas) >= num_needed:
                logger.debug("Trimming surplus ideas", extra=len(raw_ideas) - num_needed)
                break
            if not isinstance(raw, dict):
                continue
            description = str(raw.get("description") or "").strip()
            if not description:
                logger.debug("Dropping idea without description", raw_id=raw.get("idea_id"))
                continue
            ideas.append(
                Solution(
                    id=make_solution_id(job_id, generation, len(ideas)),
                    title=str(raw.get("title") or "").strip(),
                    description=description,
                    core_mechanism=str(raw.get("core_mechanism") or "").strip(),
                    is_offspring=bool(raw.get("is_offspring", False)),
                    generation=generation,
                )
            )
        return ideas
