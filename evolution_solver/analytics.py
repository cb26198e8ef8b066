"""Job analytics derived from stored job state."""

from pydantic import BaseModel, Field

from evolution_solver.core.types import PHASE_ORDER, Job, JobStatus, utcnow


class GenerationAnalytics(BaseModel):
    """Statistics of one generation."""

    generation: int
    solution_count: int = 0
    top_score: float | None = None
    avg_score: float | None = None
    preference_violations: int = 0
    enriched_count: int = 0
    failed_enrichments: int = 0
    phase_attempts: dict[str, int] = Field(default_factory=dict)
    complete: bool = False


class JobAnalytics(BaseModel):
    """Summary of a job's progress and results."""

    job_id: str
    status: JobStatus
    current_generation: int
    total_generations: int
    elapsed_minutes: float
    generations: list[GenerationAnalytics] = Field(default_factory=list)
    total_solutions: int = 0
    overall_avg_score: float | None = None
    best_score: float | None = None
    phase_retries: int = Field(default=0, description="Phase starts beyond the first")
    error: str | None = None


def summarize_job(job: Job) -> JobAnalytics:
    """Compute per-generation and overall statistics for *job*."""
    end = job.completed_at or utcnow()
    elapsed = max((end - job.created_at).total_seconds(), 0.0) / 60

    generations: list[GenerationAnalytics] = []
    all_scores: list[float] = []
    retries = 0

    for number in sorted(job.generations):
        record = job.generations[number]
        attempts = {p.value: record.phase(p).attempts for p in PHASE_ORDER}
        retries += sum(max(count - 1, 0) for count in attempts.values())

        scores = [s.score for s in record.solutions if s.score is not None]
        all_scores.extend(scores)
        generations.append(
            GenerationAnalytics(
                generation=number,
                solution_count=len(record.solutions),
                top_score=record.top_score,
                avg_score=record.avg_score,
                preference_violations=sum(1 for s in record.solutions if s.violates_preferences),
                enriched_count=len(record.enriched_ideas),
                failed_enrichments=len(record.failed_ideas),
                phase_attempts=attempts,
                complete=record.is_complete(),
            )
        )

    return JobAnalytics(
        job_id=job.id,
        status=job.status,
        current_generation=job.current_generation,
        total_generations=job.config.generations,
        elapsed_minutes=round(elapsed, 2),
        generations=generations,
        total_solutions=len(all_scores),
        overall_avg_score=sum(all_scores) / len(all_scores) if all_scores else None,
        best_score=max(all_scores) if all_scores else None,
        phase_retries=retries,
        error=f"[{job.error.kind.value}] {job.error.message}" if job.error else None,
    )
