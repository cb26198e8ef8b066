"""Core data types and errors."""

from evolution_solver.core.errors import (
    ErrorKind,
    EvolutionError,
    JobNotFoundError,
    OrchestrationExhausted,
    PhaseFailure,
    StoreTransactionConflict,
    ValidationError,
)
from evolution_solver.core.types import (
    PHASE_ORDER,
    BusinessCase,
    EnrichmentStrategy,
    EvolutionConfig,
    FailedEnrichment,
    GenerationRecord,
    GenerationSummary,
    Job,
    JobError,
    JobResult,
    JobStatus,
    Phase,
    PhaseState,
    Solution,
)

__all__ = [
    "BusinessCase",
    "EnrichmentStrategy",
    "ErrorKind",
    "EvolutionConfig",
    "EvolutionError",
    "FailedEnrichment",
    "GenerationRecord",
    "GenerationSummary",
    "Job",
    "JobError",
    "JobNotFoundError",
    "JobResult",
    "JobStatus",
    "OrchestrationExhausted",
    "PHASE_ORDER",
    "Phase",
    "PhaseFailure",
    "PhaseState",
    "Solution",
    "StoreTransactionConflict",
    "ValidationError",
]
