"""Tests for core data types."""

import math

from conftest import business_case, make_solution
from evolution_solver.core.errors import (
    ErrorKind,
    EvolutionError,
    JobNotFoundError,
    PhaseFailure,
    ValidationError,
)
from evolution_solver.core.types import (
    PHASE_ORDER,
    BusinessCase,
    Job,
    JobStatus,
    Phase,
    Solution,
)


class TestBusinessCase:
    """Tests for BusinessCase.violations."""

    def test_valid(self) -> None:
        assert BusinessCase(**business_case()).violations() == []

    def test_likelihood_bounds(self) -> None:
        assert BusinessCase(**business_case(likelihood=1.0)).violations() == []
        assert BusinessCase(**business_case(likelihood=0.0)).violations()

    def test_non_finite_values(self) -> None:
        bc = BusinessCase(**business_case(npv=math.inf, capex=math.nan))
        problems = bc.violations()
        assert "npv_success must be a finite number" in problems
        assert "capex_est must be a finite number" in problems

    def test_non_positive_capex(self) -> None:
        assert "capex_est must be positive" in BusinessCase(**business_case(capex=0)).violations()

    def test_empty_risks_and_missing_timeline(self) -> None:
        bc = BusinessCase(**business_case(risk_factors=[], timeline_months=None))
        problems = bc.violations()
        assert "risk_factors must list at least one risk" in problems
        assert "Missing timeline_months" in problems


class TestSolution:
    """Tests for Solution."""

    def test_idea_id_alias(self) -> None:
        solution = Solution.model_validate({"idea_id": "x1", "description": "Shared kitchens"})
        assert solution.id == "x1"

    def test_prompt_view(self) -> None:
        view = make_solution("s1").prompt_view()
        assert view["idea_id"] == "s1"
        assert view["business_case"]["npv_success"] == 10.0
        assert "business_case" not in make_solution("s2", with_case=False).prompt_view()


class TestJob:
    """Tests for Job and GenerationRecord."""

    def test_generation_records_created_lazily(self) -> None:
        job = Job(id="j", problem_context="Lower food waste")
        assert job.generation_record(1) is None

        record = job.ensure_generation(1)

        assert job.generation_record(1) is record
        assert [p for p in record.phases] == PHASE_ORDER
        assert not record.is_complete()

    def test_terminal(self) -> None:
        assert not Job(id="j", problem_context="x").is_terminal
        assert Job(id="j", problem_context="x", status=JobStatus.COMPLETED).is_terminal

    def test_round_trips_through_json(self) -> None:
        job = Job(id="j", problem_context="Lower food waste")
        job.ensure_generation(1).phase(Phase.VARIATOR).started = True

        restored = Job.model_validate_json(job.model_dump_json())

        assert restored.generations[1].phase(Phase.VARIATOR).started


class TestErrors:
    """Tests for the error taxonomy."""

    def test_validation_error_lists_violations(self) -> None:
        error = ValidationError("Bad data", violations=["a", "b"], job_id="j1")

        assert error.kind == ErrorKind.VALIDATION
        assert not error.retriable
        assert str(error) == "[validation_error] job j1: Bad data:\na\nb"

    def test_retriable_kinds(self) -> None:
        assert PhaseFailure("x").retriable
        assert not EvolutionError("x").retriable
        assert JobNotFoundError("j").kind == ErrorKind.JOB_NOT_FOUND
