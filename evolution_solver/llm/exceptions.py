"""Exceptions for LLM module."""

import asyncio

import httpx
import openai

from evolution_solver.core.errors import ErrorKind, EvolutionError

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class LLMError(EvolutionError):
    """Base exception for LLM errors."""

    pass


class AllModelsFailedError(LLMError):
    """Raised when all models (primary and fallbacks) fail."""

    def __init__(self, task: str, errors: list[tuple[str, Exception]]) -> None:
        self.task = task
        self.errors = errors
        models_tried = [f"{model}: {error}" for model, error in errors]
        super().__init__(
            f"All models failed for task '{task}'. "
            f"Tried: {'; '.join(models_tried)}"
        )


class OracleTransientError(AllModelsFailedError):
    """Raised when every model failed with rate-limit, 5xx or timeout errors."""

    kind = ErrorKind.ORACLE_TRANSIENT
    retriable = True


class MalformedOutputError(LLMError):
    """Raised when an oracle reply cannot be parsed into the expected structure."""

    kind = ErrorKind.MALFORMED_OUTPUT
    retriable = True

    def __init__(self, message: str, content_preview: str = "") -> None:
        self.content_preview = content_preview
        super().__init__(message)


def is_transient_error(error: BaseException) -> bool:
    """Heuristic: rate limits, server errors, timeouts and dropped connections."""
    if isinstance(
        error,
        (
            openai.RateLimitError,
            openai.APIConnectionError,  # includes APITimeoutError
            openai.InternalServerError,
            httpx.TimeoutException,
            httpx.TransportError,
            asyncio.TimeoutError,
        ),
    ):
        return True
    if isinstance(error, openai.APIStatusError):
        return error.status_code in TRANSIENT_STATUS_CODES
    return False


def is_schema_rejection(error: BaseException) -> bool:
    """Detect providers refusing ``response_format=json_schema`` requests."""
    if not isinstance(error, openai.BadRequestError):
        return False
    text = str(error).lower()
    return "response_format" in text or "json_schema" in text or "structured" in text
