"""Error taxonomy shared by the orchestrator, workers and oracle layer."""

from enum import Enum


class ErrorKind(str, Enum):
    """Stable error kinds surfaced to users and task responses."""

    VALIDATION = "validation_error"
    ORACLE_TRANSIENT = "oracle_transient_error"
    MALFORMED_OUTPUT = "malformed_output"
    PHASE_FAILURE = "phase_failure"
    ORCHESTRATION_EXHAUSTED = "orchestration_exhausted"
    STORE_CONFLICT = "store_transaction_conflict"
    JOB_NOT_FOUND = "job_not_found"
    INTERNAL = "internal_error"


class EvolutionError(Exception):
    """Base exception for evolution errors."""

    kind: ErrorKind = ErrorKind.INTERNAL
    retriable: bool = False

    def __init__(self, message: str, job_id: str | None = None) -> None:
        self.message = message
        self.job_id = job_id
        super().__init__(message)

    def __str__(self) -> str:
        if self.job_id:
            return f"[{self.kind.value}] job {self.job_id}: {self.message}"
        return f"[{self.kind.value}] {self.message}"


class ValidationError(EvolutionError):
    """Raised for malformed configuration or unusable phase data.

    Not retriable: the job is marked failed immediately.
    """

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        violations: list[str] | None = None,
        job_id: str | None = None,
    ) -> None:
        self.violations = list(violations or [])
        if self.violations:
            message = f"{message}:\n" + "\n".join(self.violations)
        super().__init__(message, job_id=job_id)


class PhaseFailure(EvolutionError):
    """Raised when a phase cannot produce usable output.

    The phase is left incomplete and recovered by the orchestrator's
    timeout retry.
    """

    kind = ErrorKind.PHASE_FAILURE
    retriable = True


class OrchestrationExhausted(EvolutionError):
    """Raised when a job exceeds its orchestrator check budget."""

    kind = ErrorKind.ORCHESTRATION_EXHAUSTED


class StoreTransactionConflict(EvolutionError):
    """Raised when a concurrent transition wins a phase-start race."""

    kind = ErrorKind.STORE_CONFLICT
    retriable = True


class JobNotFoundError(EvolutionError):
    """Raised when a job id is unknown to the store."""

    kind = ErrorKind.JOB_NOT_FOUND

    def __init__(self, job_id: str) -> None:
        super().__init__("Job not found", job_id=job_id)
