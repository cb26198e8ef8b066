"""Phase algorithms: variation, enrichment and ranking."""

from evolution_solver.evolution.cache import EnrichmentCache, cache_key
from evolution_solver.evolution.enricher import Enricher, EnrichmentResult
from evolution_solver.evolution.oracle import Oracle
from evolution_solver.evolution.ranker import (
    RankingResult,
    rank_solutions,
    score_business_case,
)
from evolution_solver.evolution.variator import (
    VariationPlan,
    Variator,
    make_solution_id,
    plan_variation,
)

__all__ = [
    "EnrichmentCache",
    "EnrichmentResult",
    "Enricher",
    "Oracle",
    "RankingResult",
    "VariationPlan",
    "Variator",
    "cache_key",
    "make_solution_id",
    "plan_variation",
    "rank_solutions",
    "score_business_case",
]
