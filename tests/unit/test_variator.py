"""Tests for the variation phase."""

import pytest

from conftest import FakeOracle, make_solution
from evolution_solver.core.errors import PhaseFailure
from evolution_solver.core.types import EvolutionConfig
from evolution_solver.evolution.variator import Variator, make_solution_id, plan_variation
from evolution_solver.llm.exceptions import MalformedOutputError, OracleTransientError

JOB_ID = "abcdef123456"


class TestPlanVariation:
    """Tests for the elite/offspring/wildcard split."""

    def test_first_generation_all_wildcards(self) -> None:
        plan = plan_variation(5, prior_count=0, generation=1, config=EvolutionConfig())

        assert plan.elite_count == 0
        assert plan.num_needed == 5
        assert plan.offspring_count == 0
        assert plan.wildcard_count == 5

    def test_elitism_keeps_two_of_ten(self) -> None:
        plan = plan_variation(10, prior_count=3, generation=2, config=EvolutionConfig())

        assert plan.elite_count == 2
        assert plan.num_needed == 8
        # floor(8 * 0.7) == 5
        assert plan.offspring_count == 5
        assert plan.wildcard_count == 3

    def test_small_population_has_no_elites(self) -> None:
        """floor(2 * 0.2) == 0."""
        plan = plan_variation(2, prior_count=1, generation=2, config=EvolutionConfig())

        assert plan.elite_count == 0
        assert plan.num_needed == 2

    def test_elitism_disabled(self) -> None:
        config = EvolutionConfig(elitism=False)
        plan = plan_variation(10, prior_count=3, generation=2, config=config)

        assert plan.elite_count == 0
        assert plan.num_needed == 10


class TestVariator:
    """Tests for Variator.generate."""

    @pytest.mark.asyncio
    async def test_first_generation_requests_five_wildcards(self) -> None:
        oracle = FakeOracle()
        variator = Variator(oracle)
        config = EvolutionConfig(population_size=5)

        ideas = await variator.generate(JOB_ID, 1, "Grow rural broadband", [], config)

        assert len(ideas) == 5
        prompt = oracle.calls[0]["system_prompt"]
        assert "Generate 5 new solutions" in prompt
        assert "5 WILDCARDS" in prompt
        assert "OFFSPRING" not in prompt
        assert oracle.calls[0]["schema"] == "variator_response"

    @pytest.mark.asyncio
    async def test_ids_assigned_by_core(self) -> None:
        oracle = FakeOracle()
        variator = Variator(oracle)
        config = EvolutionConfig(population_size=3)

        ideas = await variator.generate(JOB_ID, 4, "Grow rural broadband", [], config)

        assert [i.id for i in ideas] == [make_solution_id(JOB_ID, 4, n) for n in range(3)]
        assert ideas[0].id == "VAR_abcdef_G4_000"
        assert all(not i.id.startswith("LLM_") for i in ideas)
        assert all(i.generation == 4 for i in ideas)

    @pytest.mark.asyncio
    async def test_elites_preserved_unchanged(self) -> None:
        oracle = FakeOracle()
        variator = Variator(oracle)
        config = EvolutionConfig(population_size=10)
        performers = [make_solution(f"top{i}") for i in range(3)]

        ideas = await variator.generate(JOB_ID, 2, "Grow rural broadband", performers, config)

        assert len(ideas) == 10
        assert ideas[:2] == performers[:2]
        assert "Generate 8 new solutions" in oracle.calls[0]["system_prompt"]
        assert "Previous top performers" in oracle.calls[0]["user_prompt"]

    @pytest.mark.asyncio
    async def test_surplus_trimmed_and_invalid_dropped(self) -> None:
        reply = {
            "ideas": [
                {"idea_id": "x", "title": "A", "description": "First", "core_mechanism": "m"},
                {"idea_id": "y", "title": "B", "description": "", "core_mechanism": "m"},
                {"idea_id": "z", "title": "C", "description": "Third", "core_mechanism": "m"},
                {"idea_id": "w", "title": "D", "description": "Fourth", "core_mechanism": "m"},
            ]
        }
        oracle = FakeOracle(variation_replies=[reply])
        variator = Variator(oracle)

        ideas = await variator.generate(
            JOB_ID, 1, "Grow rural broadband", [], EvolutionConfig(population_size=2)
        )

        assert [i.description for i in ideas] == ["First", "Third"]

    @pytest.mark.asyncio
    async def test_under_delivery_is_not_fatal(self) -> None:
        reply = {"ideas": [{"title": "Only", "description": "One idea", "core_mechanism": "m"}]}
        oracle = FakeOracle(variation_replies=[reply])
        variator = Variator(oracle)

        ideas = await variator.generate(
            JOB_ID, 1, "Grow rural broadband", [], EvolutionConfig(population_size=4)
        )

        assert len(ideas) == 1
        assert len(oracle.calls) == 1

    @pytest.mark.asyncio
    async def test_retries_malformed_output(self) -> None:
        oracle = FakeOracle(
            variation_replies=[MalformedOutputError("bad json"), {"ideas": []}]
        )
        variator = Variator(oracle, max_attempts=3)

        ideas = await variator.generate(
            JOB_ID, 1, "Grow rural broadband", [], EvolutionConfig(population_size=2)
        )

        assert len(ideas) == 2
        assert len(oracle.calls) == 3

    @pytest.mark.asyncio
    async def test_exhausted_attempts_raise_phase_failure(self) -> None:
        oracle = FakeOracle(
            variation_replies=[
                OracleTransientError(task="variation", errors=[]),
                {"ideas": []},
            ]
        )
        variator = Variator(oracle, max_attempts=2)

        with pytest.raises(PhaseFailure) as exc_info:
            await variator.generate(
                JOB_ID, 1, "Grow rural broadband", [], EvolutionConfig(population_size=2)
            )

        assert exc_info.value.retriable
        assert exc_info.value.job_id == JOB_ID

    @pytest.mark.asyncio
    async def test_preference_guidance_in_prompt(self) -> None:
        oracle = FakeOracle()
        variator = Variator(oracle)
        config = EvolutionConfig(population_size=1, max_capex=5, min_profits=20)

        await variator.generate(JOB_ID, 1, "Grow rural broadband", [], config)

        prompt = oracle.calls[0]["system_prompt"]
        assert "capital-efficient" in prompt
        assert "$5M" in prompt
        assert "$20M" in prompt
