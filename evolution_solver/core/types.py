"""Core data types for Evolution Solver."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from evolution_solver.core.errors import ErrorKind

CASHFLOW_PERIODS = 5


def utcnow() -> datetime:
    """Timezone-aware current time used for every persisted timestamp."""
    return datetime.now(timezone.utc)


class Phase(str, Enum):
    """Phases of one generation, in execution order."""

    VARIATOR = "variator"
    ENRICHER = "enricher"
    RANKER = "ranker"


PHASE_ORDER: list[Phase] = [Phase.VARIATOR, Phase.ENRICHER, Phase.RANKER]


class JobStatus(str, Enum):
    """Status of an evolution job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class EnrichmentStrategy(str, Enum):
    """How the enricher talks to the oracle."""

    PER_IDEA = "per_idea"
    """One oracle call per candidate."""

    BATCH = "batch"
    """One oracle call per fan-out batch."""


class EvolutionConfig(BaseModel):
    """Immutable configuration of one evolution job.

    All monetary values are in millions USD. CamelCase aliases are accepted
    so payloads from the job-submission API validate unchanged.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    generations: int = Field(default=10, ge=1, description="Number of generations")
    population_size: int = Field(
        default=5,
        ge=1,
        validation_alias=AliasChoices("population_size", "populationSize"),
        description="Candidates per generation",
    )
    offspring_ratio: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        validation_alias=AliasChoices("offspring_ratio", "offspringRatio"),
        description="Share of new candidates derived from top performers",
    )
    top_performer_ratio: float = Field(
        default=0.3,
        gt=0.0,
        le=1.0,
        validation_alias=AliasChoices("top_performer_ratio", "topPerformerRatio"),
        description="Share of ranked candidates selected to seed the next generation",
    )
    diversification_factor: float = Field(
        default=0.05,
        gt=0.0,
        validation_alias=AliasChoices(
            "diversification_factor", "diversificationFactor", "diversificationUnit"
        ),
        description="Unit capital C0 used by the diversification penalty",
    )
    max_capex: float = Field(
        default=100000.0,
        validation_alias=AliasChoices("max_capex", "maxCapex"),
        description="Soft preference: maximum capital required",
    )
    min_profits: float = Field(
        default=0.0,
        validation_alias=AliasChoices("min_profits", "minProfits"),
        description="Soft preference: minimum success-case NPV",
    )
    enrichment_concurrency: int = Field(
        default=25,
        ge=1,
        validation_alias=AliasChoices(
            "enrichment_concurrency", "enrichmentConcurrency", "enricherConcurrency"
        ),
        description="Enrichment fan-out width per batch",
    )
    enrichment_strategy: EnrichmentStrategy = Field(
        default=EnrichmentStrategy.PER_IDEA,
        validation_alias=AliasChoices("enrichment_strategy", "enrichmentStrategy"),
    )
    hard_filter_preferences: bool = Field(
        default=False,
        validation_alias=AliasChoices("hard_filter_preferences", "hardFilterPreferences"),
        description="Drop preference-breaching candidates instead of flagging them",
    )
    elitism: bool = Field(default=True, description="Carry top performers unchanged")
    deal_types: str = Field(
        default="creative partnerships and business models",
        validation_alias=AliasChoices("deal_types", "dealTypes"),
    )
    model: str | None = Field(default=None, description="Oracle model override")


class BusinessCase(BaseModel):
    """Financial projection attached to a candidate by enrichment.

    Field types are deliberately loose so that the ranker can report every
    violation of a stored record instead of failing on the first one.
    """

    npv_success: float | None = Field(default=None, description="5-year NPV if successful ($M)")
    capex_est: float | None = Field(default=None, description="Initial capital required ($M)")
    timeline_months: int | None = Field(default=None, description="Months to first revenue")
    likelihood: float | None = Field(default=None, description="Probability of success (0-1]")
    risk_factors: list[str] = Field(default_factory=list)
    yearly_cashflows: list[float] = Field(default_factory=list)

    def violations(self) -> list[str]:
        """Return every reason this business case is unusable for scoring."""
        problems: list[str] = []

        for name in ("npv_success", "capex_est", "likelihood"):
            value = getattr(self, name)
            if value is None:
                problems.append(f"Missing {name}")
            elif not math.isfinite(value):
                problems.append(f"{name} must be a finite number")

        if self.capex_est is not None and math.isfinite(self.capex_est) and self.capex_est <= 0:
            problems.append("capex_est must be positive")

        if (
            self.likelihood is not None
            and math.isfinite(self.likelihood)
            and not 0 < self.likelihood <= 1
        ):
            problems.append("likelihood must be between 0 and 1")

        if self.timeline_months is None:
            problems.append("Missing timeline_months")
        elif self.timeline_months < 1:
            problems.append("timeline_months must be at least 1")

        if not self.risk_factors:
            problems.append("risk_factors must list at least one risk")

        if len(self.yearly_cashflows) != CASHFLOW_PERIODS:
            problems.append(
                f"yearly_cashflows must have exactly {CASHFLOW_PERIODS} periods, "
                f"got {len(self.yearly_cashflows)}"
            )
        elif not all(math.isfinite(v) for v in self.yearly_cashflows):
            problems.append("yearly_cashflows must be finite numbers")

        return problems


class Solution(BaseModel):
    """One candidate business idea under evaluation."""

    id: str = Field(
        ...,
        validation_alias=AliasChoices("id", "idea_id"),
        description="Core-assigned identifier",
    )
    title: str = Field(default="", description="Short, catchy title")
    description: str = Field(..., description="Business model in plain terms")
    core_mechanism: str = Field(default="", description="How value is created and captured")
    is_offspring: bool = Field(default=False)
    generation: int | None = Field(default=None, description="Generation that produced it")
    business_case: BusinessCase | None = Field(default=None)

    score: float | None = Field(default=None, description="Risk-adjusted score")
    expected_value: float | None = Field(default=None)
    rank: int | None = Field(default=None, ge=1)
    violates_preferences: bool = Field(default=False)
    preference_note: str | None = Field(default=None)

    model_config = ConfigDict(populate_by_name=True)

    def prompt_view(self) -> dict[str, Any]:
        """Fields shown to the oracle for this candidate."""
        data: dict[str, Any] = {
            "idea_id": self.id,
            "title": self.title,
            "description": self.description,
            "core_mechanism": self.core_mechanism,
        }
        if self.business_case is not None:
            data["business_case"] = self.business_case.model_dump()
        return data


class FailedEnrichment(BaseModel):
    """A candidate that could not be enriched."""

    solution_id: str
    error: str


class PhaseState(BaseModel):
    """Progress flags of one phase within a generation."""

    started: bool = False
    started_at: datetime | None = None
    complete: bool = False
    completed_at: datetime | None = None
    attempts: int = Field(default=0, description="Times the phase has been started")
    error: str | None = None


class GenerationRecord(BaseModel):
    """State and outputs of one generation."""

    generation: int = Field(..., ge=1)
    phases: dict[Phase, PhaseState] = Field(
        default_factory=lambda: {phase: PhaseState() for phase in PHASE_ORDER}
    )

    # Variator output
    ideas: list[Solution] = Field(default_factory=list)

    # Enricher output
    enriched_ideas: list[Solution] = Field(default_factory=list)
    failed_ideas: list[FailedEnrichment] = Field(default_factory=list)

    # Ranker output
    solutions: list[Solution] = Field(default_factory=list)
    filtered: list[Solution] = Field(default_factory=list)
    top_performers: list[Solution] = Field(default_factory=list)
    top_score: float | None = None
    avg_score: float | None = None

    def phase(self, phase: Phase) -> PhaseState:
        """Get the state of *phase*, creating it when absent."""
        if phase not in self.phases:
            self.phases[phase] = PhaseState()
        return self.phases[phase]

    def is_complete(self) -> bool:
        """True when every phase of this generation has completed."""
        return all(self.phase(p).complete for p in PHASE_ORDER)


PHASE_OUTPUT_FIELDS: dict[Phase, frozenset[str]] = {
    Phase.VARIATOR: frozenset({"ideas"}),
    Phase.ENRICHER: frozenset({"enriched_ideas", "failed_ideas"}),
    Phase.RANKER: frozenset(
        {"solutions", "filtered", "top_performers", "top_score", "avg_score"}
    ),
}


class GenerationSummary(BaseModel):
    """One entry of a completed job's generation history."""

    generation: int
    solution_count: int
    top_score: float | None = None
    avg_score: float | None = None
    completed_at: datetime | None = None


class JobResult(BaseModel):
    """Aggregate produced when a job is finalized."""

    top_solutions: list[Solution] = Field(default_factory=list)
    all_solutions: list[Solution] = Field(default_factory=list)
    top_performers: list[Solution] = Field(default_factory=list)
    generation_history: list[GenerationSummary] = Field(default_factory=list)
    total_evaluations: int = 0
    total_solutions: int = 0


class JobError(BaseModel):
    """Failure reason of a job."""

    kind: ErrorKind
    message: str


class Job(BaseModel):
    """An evolution job and its per-generation progress."""

    id: str = Field(..., description="Unique job ID")
    problem_context: str = Field(..., description="Problem statement to solve")
    config: EvolutionConfig = Field(default_factory=EvolutionConfig)
    status: JobStatus = Field(default=JobStatus.PENDING)
    current_generation: int = Field(default=1, ge=1)
    generations: dict[int, GenerationRecord] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    error: JobError | None = None
    result: JobResult | None = None
    version: int = Field(default=0, description="Optimistic concurrency counter")

    def generation_record(self, generation: int) -> GenerationRecord | None:
        """Get a generation record without creating it."""
        return self.generations.get(generation)

    def ensure_generation(self, generation: int) -> GenerationRecord:
        """Get a generation record, creating it lazily."""
        if generation not in self.generations:
            self.generations[generation] = GenerationRecord(generation=generation)
        return self.generations[generation]

    @property
    def is_terminal(self) -> bool:
        """True once the job is completed or failed."""
        return self.status in TERMINAL_STATUSES
