"""LLM integration layer with provider routing and structured-output parsing."""

from evolution_solver.llm.client import CompletionResult, LLMClient
from evolution_solver.llm.exceptions import (
    AllModelsFailedError,
    LLMError,
    MalformedOutputError,
    OracleTransientError,
)
from evolution_solver.llm.router import ModelRouter

__all__ = [
    "AllModelsFailedError",
    "CompletionResult",
    "LLMClient",
    "LLMError",
    "MalformedOutputError",
    "ModelRouter",
    "OracleTransientError",
]
