"""Model routing for task-specific model selection with fallback support."""

from typing import Any

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from evolution_solver.config.settings import ModelConfig, Settings, get_settings
from evolution_solver.llm.client import CompletionResult, LLMClient
from evolution_solver.llm.exceptions import (
    AllModelsFailedError,
    OracleTransientError,
    is_schema_rejection,
    is_transient_error,
)
from evolution_solver.llm.parsing import parse_json_payload

logger = structlog.get_logger()


class ModelRouter:
    """Routes tasks to appropriate models with fallback support.

    Also serves as the oracle used by the variation and enrichment phases
    through :meth:`generate`.
    """

    def __init__(
        self,
        client: LLMClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the model router.

        Args:
            client: LLM client to use. If None, creates one from settings.
            settings: Settings to use. If None, uses get_settings().
        """
        self._settings = settings or get_settings()
        self._client = client or LLMClient(settings=self._settings)
        self._structured_output = self._settings.oracle.structured_output

    def get_config(self, task: str) -> ModelConfig:
        """Get the full configuration for a task."""
        return self._settings.get_model_config(task)

    def get_model(self, task: str) -> str:
        """Get the primary model for a task."""
        return self.get_config(task).model

    def get_fallbacks(self, task: str) -> list[str]:
        """Get fallback models for a task."""
        return self.get_config(task).fallback

    def _retrying(self) -> AsyncRetrying:
        oracle = self._settings.oracle
        return AsyncRetrying(
            retry=retry_if_exception(is_transient_error),
            stop=stop_after_attempt(oracle.max_retries),
            wait=wait_exponential(
                multiplier=oracle.retry_min_delay or 1,
                min=oracle.retry_min_delay,
                max=oracle.retry_max_delay,
            ),
            reraise=True,
        )

    async def complete(
        self,
        task: str,
        messages: list[dict[str, Any]],
        temperature: float | None = None,
        max_tokens: int | None = None,
        model_override: str | None = None,
        **kwargs: Any,
    ) -> CompletionResult:
        """Make a completion with transient-error retries and model fallback.

        Each model is retried with exponential backoff on rate limits, 5xx
        responses, timeouts and dropped connections. Any other error moves on
        to the next model in the chain immediately.

        Args:
            task: Task identifier for model selection.
            messages: List of message dicts.
            temperature: Override temperature (uses task default if None).
            max_tokens: Override max tokens (uses task default if None).
            model_override: If set, use this model instead of the task's
                primary model. Fallback chain from task config is preserved.
            **kwargs: Additional arguments passed to the client.

        Returns:
            CompletionResult from the first successful model.

        Raises:
            OracleTransientError: If every model failed with transient errors.
            AllModelsFailedError: If all models fail otherwise.
        """
        config = self.get_config(task)

        primary = model_override or config.model
        models_to_try = [primary] + [m for m in config.fallback if m != primary]

        actual_temp = temperature if temperature is not None else config.temperature
        actual_max_tokens = max_tokens if max_tokens is not None else config.max_tokens

        errors: list[tuple[str, Exception]] = []

        for model in models_to_try:
            logger.debug("Attempting completion", task=task, model=model)
            try:
                async for attempt in self._retrying():
                    with attempt:
                        result = await self._client.complete(
                            model=model,
                            messages=messages,
                            temperature=actual_temp,
                            max_tokens=actual_max_tokens,
                            **kwargs,
                        )
            except Exception as e:
                if is_schema_rejection(e):
                    # Let the caller switch to the raw-text path
                    raise
                logger.warning(
                    "Model failed, trying fallback",
                    task=task,
                    model=model,
                    error=str(e),
                )
                errors.append((model, e))
                continue

            logger.info(
                "Completion successful",
                task=task,
                model=model,
                tokens=result.total_tokens,
            )
            return result

        if errors and all(is_transient_error(err) for _, err in errors):
            raise OracleTransientError(task=task, errors=errors)
        raise AllModelsFailedError(task=task, errors=errors)

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        response_schema: dict[str, Any] | None = None,
        *,
        task: str = "variation",
        model_override: str | None = None,
    ) -> dict[str, Any]:
        """Ask the oracle for a structured JSON result.

        With a schema and structured output enabled the request uses
        ``response_format={"type": "json_schema", ...}``. When no schema is
        given, structured output is disabled, or the provider rejects the
        schema, the reply is requested as plain text and parsed with JSON
        repair.

        Args:
            system_prompt: System message.
            user_prompt: User message.
            response_schema: Optional ``{"name": ..., "schema": ...}`` dict.
            task: Routing task ("variation" or "enrichment").
            model_override: Primary model override (fallbacks preserved).

        Returns:
            Parsed JSON object. A top-level array is returned as ``{"items": [...]}``.

        Raises:
            OracleTransientError: Transient failures on every model.
            AllModelsFailedError: Non-transient failures on every model.
            MalformedOutputError: The reply could not be parsed.
        """
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

        if response_schema is not None and self._structured_output:
            response_format = {
                "type": "json_schema",
                "json_schema": {
                    "name": response_schema.get("name", "response"),
                    "schema": response_schema["schema"],
                    "strict": response_schema.get("strict", True),
                },
            }
            try:
                result = await self.complete(
                    task,
                    messages,
                    model_override=model_override,
                    response_format=response_format,
                )
            except Exception as e:
                if not is_schema_rejection(e):
                    raise
                logger.warning(
                    "Structured output rejected, falling back to raw text",
                    task=task,
                    error=str(e),
                )
            else:
                if result.truncated:
                    logger.warning("Oracle reply truncated", task=task, model=result.model)
                return parse_json_payload(result.content)

        if response_schema is not None:
            messages[0] = {
                "role": "system",
                "content": (
                    f"{system_prompt}\n\nRespond with JSON only, no markdown, "
                    "matching the requested structure exactly."
                ),
            }

        result = await self.complete(task, messages, model_override=model_override)
        if result.truncated:
            logger.warning("Oracle reply truncated", task=task, model=result.model)
        return parse_json_payload(result.content)

    async def close(self) -> None:
        """Close the underlying client."""
        await self._client.close()
