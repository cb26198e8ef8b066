"""Shared fixtures: a scripted oracle and solution builders."""

import asyncio
import json
import re
from typing import Any

import pytest

from evolution_solver.core.types import BusinessCase, EvolutionConfig, Solution
from evolution_solver.llm.exceptions import MalformedOutputError

_NUM_NEEDED_RE = re.compile(r"Generate (\d+) new solutions")


def business_case(
    likelihood: float = 0.8,
    npv: float = 10.0,
    capex: float = 2.0,
    **overrides: Any,
) -> dict[str, Any]:
    """A valid raw business case as the oracle would return it."""
    data: dict[str, Any] = {
        "npv_success": npv,
        "capex_est": capex,
        "timeline_months": 12,
        "likelihood": likelihood,
        "risk_factors": ["Market adoption"],
        "yearly_cashflows": [-1.0, 0.5, 2.0, 3.0, 4.0],
    }
    data.update(overrides)
    return data


class FakeOracle:
    """Deterministic stand-in for the LLM oracle.

    Variation replies contain as many ideas as the prompt asks for, with
    oracle-side ids that the core must overwrite. Enrichment replies derive a
    business case from the idea's position so scores differ between ideas.
    """

    def __init__(
        self,
        fail_ids: set[str] | None = None,
        delay: float = 0.0,
        variation_replies: list[Any] | None = None,
    ) -> None:
        self.fail_ids = set(fail_ids or ())
        self.delay = delay
        self.variation_replies = list(variation_replies or [])
        self.calls: list[dict[str, Any]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._counter = 0

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        response_schema: dict[str, Any] | None = None,
        *,
        task: str = "variation",
        model_override: str | None = None,
    ) -> dict[str, Any]:
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
                "schema": response_schema["name"] if response_schema else None,
                "task": task,
            }
        )
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if task == "variation":
                return self._variation(system_prompt)
            return self._enrichment(user_prompt)
        finally:
            self.in_flight -= 1

    def _variation(self, system_prompt: str) -> dict[str, Any]:
        if self.variation_replies:
            reply = self.variation_replies.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply

        match = _NUM_NEEDED_RE.search(system_prompt)
        count = int(match.group(1)) if match else 1
        ideas = []
        for _ in range(count):
            self._counter += 1
            ideas.append(
                {
                    "idea_id": f"LLM_{self._counter}",
                    "title": f"Idea {self._counter}",
                    "description": f"Partnership model number {self._counter}",
                    "core_mechanism": f"Shared infrastructure {self._counter}",
                    "is_offspring": False,
                }
            )
        return {"ideas": ideas}

    def _enrichment(self, user_prompt: str) -> dict[str, Any]:
        payload = json.loads(user_prompt.split("\n", 1)[1])
        if isinstance(payload, list):
            return {
                "enriched_ideas": [
                    self._enrich_item(item)
                    for item in payload
                    if item["idea_id"] not in self.fail_ids
                ]
            }
        if payload["idea_id"] in self.fail_ids:
            raise MalformedOutputError("forced failure")
        return self._enrich_item(payload)

    def _enrich_item(self, item: dict[str, Any]) -> dict[str, Any]:
        digits = "".join(ch for ch in item["idea_id"] if ch.isdigit()) or "0"
        seq = int(digits[-3:])
        return {
            "idea_id": item["idea_id"],
            "title": item["title"],
            "description": item["description"],
            "business_case": business_case(
                likelihood=0.5 + (seq % 5) / 10,
                npv=10.0 + seq,
                capex=1.0 + (seq % 3),
            ),
        }


def make_solution(
    solution_id: str,
    with_case: bool = True,
    **case_overrides: Any,
) -> Solution:
    """A candidate, enriched unless *with_case* is false."""
    return Solution(
        id=solution_id,
        title=f"Title {solution_id}",
        description=f"Description of {solution_id}",
        core_mechanism=f"Mechanism of {solution_id}",
        business_case=BusinessCase(**business_case(**case_overrides)) if with_case else None,
    )


@pytest.fixture()
def fake_oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture()
def config() -> EvolutionConfig:
    return EvolutionConfig(generations=2, population_size=5)
