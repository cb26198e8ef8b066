"""LLM client for interacting with OpenAI-compatible providers."""

from typing import Any

import structlog
from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from evolution_solver.config.settings import Settings, get_settings

logger = structlog.get_logger()

# Reasoning models reject temperature and use max_completion_tokens
_REASONING_PREFIXES = ("o1", "o3", "o4")


def is_reasoning_model(model: str) -> bool:
    """True for reasoning-model families with restricted sampling params."""
    name = model.rsplit("/", 1)[-1].lower()
    return name.startswith(_REASONING_PREFIXES)


class CompletionResult(BaseModel):
    """Result from an LLM completion call."""

    content: str = Field(..., description="The generated content")
    model: str = Field(..., description="Model that generated the response")
    prompt_tokens: int = Field(default=0, description="Number of prompt tokens")
    completion_tokens: int = Field(default=0, description="Number of completion tokens")
    finish_reason: str | None = Field(default=None, description="Why generation stopped")

    @property
    def total_tokens(self) -> int:
        """Total tokens used."""
        return self.prompt_tokens + self.completion_tokens

    @property
    def truncated(self) -> bool:
        """True when generation stopped on the token limit."""
        return self.finish_reason == "length"


class LLMClient:
    """Client for making LLM API calls via configured providers."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        provider: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the LLM client.

        Args:
            api_key: API key for the provider. If None, uses settings.
            base_url: Base URL for the API. If None, uses provider default.
            provider: Provider identifier. If None, uses settings.default_provider.
            settings: Settings to read defaults from. If None, uses get_settings().
        """
        settings = settings or get_settings()
        selected_provider = (provider or settings.default_provider).lower()

        if selected_provider == "openai":
            default_api_key = settings.openai.api_key.get_secret_value()
            default_base_url = settings.openai.base_url
        elif selected_provider == "openrouter":
            default_api_key = settings.openrouter.api_key.get_secret_value()
            default_base_url = settings.openrouter.base_url
        else:
            raise ValueError(f"Unsupported provider: {selected_provider}")

        self._provider = selected_provider
        self._api_key = api_key if api_key is not None else default_api_key
        self._base_url = base_url if base_url is not None else default_base_url
        self._timeout = settings.oracle.request_timeout

        self._client: AsyncOpenAI | None = None

    @property
    def provider(self) -> str:
        """Get the selected provider."""
        return self._provider

    @property
    def base_url(self) -> str:
        """Get the base URL."""
        return self._base_url

    def _get_client(self) -> AsyncOpenAI:
        """Get or create the async OpenAI client."""
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
                timeout=self._timeout,
                # Retries are handled by the router
                max_retries=0,
            )
        return self._client

    async def complete(
        self,
        model: str,
        messages: list[dict[str, Any]],
        temperature: float | None = None,
        max_tokens: int | None = None,
        response_format: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> CompletionResult:
        """Make a completion request.

        Args:
            model: Model identifier (e.g., "o3", "openai/gpt-4o").
            messages: List of message dicts with 'role' and 'content'.
            temperature: Sampling temperature (0-2). Ignored for reasoning models.
            max_tokens: Maximum tokens to generate.
            response_format: Optional structured-output format.
            **kwargs: Additional arguments passed to the API.

        Returns:
            CompletionResult with the generated content.
        """
        client = self._get_client()
        reasoning = is_reasoning_model(model)

        params: dict[str, Any] = {
            "model": model,
            "messages": messages,
        }

        if temperature is not None and not reasoning:
            params["temperature"] = temperature

        if max_tokens is not None:
            params["max_completion_tokens" if reasoning else "max_tokens"] = max_tokens

        if response_format is not None:
            params["response_format"] = response_format

        params.update(kwargs)

        logger.debug(
            "Making completion request",
            model=model,
            temperature=params.get("temperature"),
            structured=response_format is not None,
        )

        response = await client.chat.completions.create(**params)

        if not response.choices:
            raise ValueError(
                f"Model {model} returned empty choices "
                f"(finish_reason may indicate content filtering)"
            )
        choice = response.choices[0]
        usage = response.usage

        return CompletionResult(
            content=choice.message.content or "",
            model=model,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            finish_reason=choice.finish_reason,
        )

    async def close(self) -> None:
        """Close the client connection."""
        if self._client is not None:
            await self._client.close()
            self._client = None
