"""Tests for the phase worker."""

import pytest

from conftest import FakeOracle, make_solution
from evolution_solver.core.errors import ErrorKind
from evolution_solver.core.types import EvolutionConfig, Job, JobStatus, Phase
from evolution_solver.evolution.enricher import Enricher
from evolution_solver.evolution.variator import Variator
from evolution_solver.store import MemoryJobStore, TransitionAction
from evolution_solver.worker import PhaseTaskRequest, PhaseWorker

JOB_ID = "job-worker"
PROBLEM = "Improve last-mile delivery economics in dense cities"


async def _setup(oracle: FakeOracle | None = None) -> tuple[MemoryJobStore, PhaseWorker]:
    store = MemoryJobStore()
    await store.create(
        Job(
            id=JOB_ID,
            problem_context=PROBLEM,
            config=EvolutionConfig(generations=1, population_size=3),
        )
    )
    oracle = oracle or FakeOracle()
    worker = PhaseWorker(store, Variator(oracle), Enricher(oracle))
    return store, worker


def _request(phase: Phase, **inputs) -> PhaseTaskRequest:
    return PhaseTaskRequest(
        job_id=JOB_ID,
        generation=1,
        phase=phase,
        evolution_config=EvolutionConfig(generations=1, population_size=3),
        problem_context=PROBLEM,
        **inputs,
    )


async def _start(store: MemoryJobStore, phase: Phase) -> None:
    await store.transition_phase(JOB_ID, 1, phase, TransitionAction.START)


class TestPhaseWorker:
    """Tests for PhaseWorker.handle."""

    @pytest.mark.asyncio
    async def test_variator_phase(self) -> None:
        store, worker = await _setup()
        await _start(store, Phase.VARIATOR)

        response = await worker.handle(_request(Phase.VARIATOR))

        assert response.success
        assert response.message == "Generated 3 ideas"
        record = (await store.require(JOB_ID)).generations[1]
        assert len(record.ideas) == 3
        assert record.phase(Phase.VARIATOR).complete

    @pytest.mark.asyncio
    async def test_enricher_phase_records_failures(self) -> None:
        oracle = FakeOracle(fail_ids={"b"})
        store, worker = await _setup(oracle)
        await _start(store, Phase.ENRICHER)
        ideas = [make_solution(i, with_case=False) for i in ("a", "b", "c")]

        response = await worker.handle(_request(Phase.ENRICHER, ideas=ideas))

        assert response.success
        assert response.message == "Enriched 2 ideas"
        record = (await store.require(JOB_ID)).generations[1]
        assert [s.id for s in record.enriched_ideas] == ["a", "c"]
        assert [f.solution_id for f in record.failed_ideas] == ["b"]

    @pytest.mark.asyncio
    async def test_ranker_phase(self) -> None:
        store, worker = await _setup()
        await _start(store, Phase.RANKER)
        enriched = [make_solution("a", npv=5.0), make_solution("b", npv=50.0)]

        response = await worker.handle(_request(Phase.RANKER, enriched_ideas=enriched))

        assert response.success
        record = (await store.require(JOB_ID)).generations[1]
        assert [s.id for s in record.solutions] == ["b", "a"]
        assert record.top_score == record.solutions[0].score
        assert len(record.top_performers) == 1

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_noop(self) -> None:
        oracle = FakeOracle()
        store, worker = await _setup(oracle)
        await _start(store, Phase.VARIATOR)
        await worker.handle(_request(Phase.VARIATOR))

        response = await worker.handle(_request(Phase.VARIATOR))

        assert response.success
        assert response.message == "Already complete"
        assert len(oracle.calls) == 1

    @pytest.mark.asyncio
    async def test_unstarted_phase_discards_outputs(self) -> None:
        store, worker = await _setup()

        response = await worker.handle(_request(Phase.VARIATOR))

        assert not response.success
        assert response.retriable
        assert response.error_kind == ErrorKind.PHASE_FAILURE
        job = await store.require(JOB_ID)
        assert not job.generations or job.generations[1].ideas == []

    @pytest.mark.asyncio
    async def test_validation_error_fails_job(self) -> None:
        store, worker = await _setup()
        await _start(store, Phase.RANKER)
        enriched = [make_solution("a", with_case=False)]

        response = await worker.handle(_request(Phase.RANKER, enriched_ideas=enriched))

        assert not response.success
        assert not response.retriable
        assert response.error_kind == ErrorKind.VALIDATION
        job = await store.require(JOB_ID)
        assert job.status == JobStatus.FAILED
        assert "Missing business_case" in job.error.message

    @pytest.mark.asyncio
    async def test_phase_failure_left_for_retry(self) -> None:
        oracle = FakeOracle(fail_ids={"a"})
        store, worker = await _setup(oracle)
        await _start(store, Phase.ENRICHER)

        response = await worker.handle(
            _request(Phase.ENRICHER, ideas=[make_solution("a", with_case=False)])
        )

        assert not response.success
        assert response.retriable
        assert response.error_kind == ErrorKind.PHASE_FAILURE
        job = await store.require(JOB_ID)
        state = job.generations[1].phase(Phase.ENRICHER)
        assert not state.complete
        assert "failed enrichment" in state.error
        assert job.status == JobStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_unknown_job(self) -> None:
        _, worker = await _setup()
        request = _request(Phase.VARIATOR).model_copy(update={"job_id": "missing"})

        response = await worker.handle(request)

        assert not response.success
        assert response.error_kind == ErrorKind.JOB_NOT_FOUND

    @pytest.mark.asyncio
    async def test_terminal_job_skipped(self) -> None:
        oracle = FakeOracle()
        store, worker = await _setup(oracle)
        await store.mark_failed(JOB_ID, ErrorKind.VALIDATION, "bad")

        response = await worker.handle(_request(Phase.VARIATOR))

        assert response.success
        assert oracle.calls == []
