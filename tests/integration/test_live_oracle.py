"""Integration tests against a live oracle.

Note: These tests require a valid API key to run against real LLMs.
They are marked with @pytest.mark.integration and skipped by default.
Run with: OPENAI_API_KEY=... pytest -m integration
"""

import os

import pytest

from evolution_solver.config.settings import Settings
from evolution_solver.core.types import JobStatus
from evolution_solver.service import EvolutionService
from evolution_solver.store import MemoryJobStore

# Skip integration tests by default
pytestmark = pytest.mark.skipif(
    not os.environ.get("OPENAI_API_KEY"),
    reason="OPENAI_API_KEY not set",
)


@pytest.mark.integration
class TestLiveOracle:
    """A single small job against the configured provider."""

    @pytest.mark.asyncio
    async def test_one_generation(self) -> None:
        service = EvolutionService(
            settings=Settings(),
            store=MemoryJobStore(),
            dispatch_backend="workflow",
        )

        try:
            job = await service.run(
                "Help independent coffee shops compete with national chains",
                {"generations": 1, "population_size": 2, "enrichment_concurrency": 2},
            )
        finally:
            await service.close()

        assert job.status == JobStatus.COMPLETED
        for solution in job.result.all_solutions:
            assert solution.business_case is not None
            assert solution.score is not None
            assert solution.rank >= 1
