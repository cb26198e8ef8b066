"""Oracle interface consumed by the variation and enrichment phases."""

from typing import Any, Protocol


class Oracle(Protocol):
    """Request/response contract of the external generative service.

    :class:`evolution_solver.llm.ModelRouter` is the production implementation.
    """

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        response_schema: dict[str, Any] | None = None,
        *,
        task: str = "variation",
        model_override: str | None = None,
    ) -> dict[str, Any]: ...
