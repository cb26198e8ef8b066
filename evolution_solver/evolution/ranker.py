"""Scoring and ranking of enriched candidates."""

import math

import structlog
from pydantic import BaseModel, Field

from evolution_solver.core.errors import ValidationError
from evolution_solver.core.types import EvolutionConfig, Solution

logger = structlog.get_logger()


class ScoreBreakdown(BaseModel):
    """Terms of a candidate's risk-adjusted score."""

    expected_value: float
    diversification_penalty: float
    score: float


class RankingResult(BaseModel):
    """Output of the ranking phase."""

    solutions: list[Solution] = Field(default_factory=list, description="Ranked, best first")
    filtered: list[Solution] = Field(
        default_factory=list, description="Removed by opt-in hard filtering"
    )
    top_performers: list[Solution] = Field(default_factory=list)
    top_score: float | None = None
    avg_score: float | None = None


def score_business_case(
    likelihood: float,
    npv_success: float,
    capex: float,
    diversification_factor: float,
) -> ScoreBreakdown:
    """Risk-adjusted score.

    ``expected_value = p * npv - (1 - p) * capex`` is divided by the
    diversification penalty ``sqrt(capex / C0)``.
    """
    expected_value = likelihood * npv_success - (1 - likelihood) * capex
    penalty = math.sqrt(capex / diversification_factor)
    return ScoreBreakdown(
        expected_value=expected_value,
        diversification_penalty=penalty,
        score=expected_value / penalty,
    )


def preference_violations(solution: Solution, config: EvolutionConfig) -> list[str]:
    """Human-readable notes for each soft preference *solution* breaches."""
    bc = solution.business_case
    if bc is None:
        return []

    notes: list[str] = []
    if bc.capex_est is not None and bc.capex_est > config.max_capex:
        notes.append(f"CAPEX (${bc.capex_est:g}M) exceeds preference (${config.max_capex:g}M)")
    if config.min_profits > 0 and bc.npv_success is not None and bc.npv_success < config.min_profits:
        notes.append(f"NPV (${bc.npv_success:g}M) below preference (${config.min_profits:g}M)")
    return notes


def validate_enriched(solutions: list[Solution]) -> list[str]:
    """Collect every business-case violation across *solutions*."""
    errors: list[str] = []
    for index, solution in enumerate(solutions):
        label = solution.id or str(index)
        if solution.business_case is None:
            errors.append(f"Idea {label}: Missing business_case object")
            continue
        errors.extend(f"Idea {label}: {problem}" for problem in solution.business_case.violations())
    return errors


def rank_solutions(enriched: list[Solution], config: EvolutionConfig) -> RankingResult:
    """Score, order and select the top performers of a generation.

    Every candidate is validated first; if any fails, a single
    :class:`ValidationError` carries all violations. Preference breaches are
    only flagged unless ``hard_filter_preferences`` is set.

    Raises:
        ValidationError: If the input is empty or any candidate is unusable.
    """
    if not enriched:
        raise ValidationError("No enriched ideas provided for ranking")

    errors = validate_enriched(enriched)
    if errors:
        logger.error("Ranker validation failed", error_count=len(errors))
        raise ValidationError("Data validation failed in ranker", violations=errors)

    scored: list[Solution] = []
    filtered: list[Solution] = []
    for solution in enriched:
        bc = solution.business_case
        if bc is None:
            raise ValidationError(f"Idea {solution.id}: Missing business_case object")
        breakdown = score_business_case(
            likelihood=bc.likelihood,
            npv_success=bc.npv_success,
            capex=bc.capex_est,
            diversification_factor=config.diversification_factor,
        )
        notes = preference_violations(solution, config)
        candidate = solution.model_copy(
            update={
                "score": breakdown.score,
                "expected_value": breakdown.expected_value,
                "violates_preferences": bool(notes),
                "preference_note": "; ".join(notes) if notes else None,
                "rank": None,
            }
        )
        if notes and config.hard_filter_preferences:
            filtered.append(candidate)
        else:
            scored.append(candidate)

    # sorted() is stable: equal scores keep input order
    ranked = sorted(scored, key=lambda s: -s.score)
    ranked = [s.model_copy(update={"rank": i}) for i, s in enumerate(ranked, start=1)]

    violating = [s for s in ranked if s.violates_preferences]
    if violating:
        logger.info(
            "Ideas violate preferences but remain ranked",
            count=len(violating),
            ids=[s.id for s in violating],
        )
    if filtered:
        logger.info("Ideas removed by preference filter", count=len(filtered))

    top_count = math.ceil(len(ranked) * config.top_performer_ratio)
    scores = [s.score for s in ranked]

    return RankingResult(
        solutions=ranked,
        filtered=filtered,
        top_performers=ranked[:top_count],
        top_score=scores[0] if scores else None,
        avg_score=sum(scores) / len(scores) if scores else None,
    )
