"""Tests for the LLM client, error classification and reply parsing."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from evolution_solver.config.settings import Settings
from evolution_solver.llm.client import CompletionResult, LLMClient, is_reasoning_model
from evolution_solver.llm.exceptions import (
    MalformedOutputError,
    is_schema_rejection,
    is_transient_error,
)
from evolution_solver.llm.parsing import (
    extract_json_object,
    parse_json_payload,
    recover_json_array,
    safe_json_loads,
    strip_code_fences,
)

_REQUEST = httpx.Request("POST", "https://api.example.com/v1/chat/completions")


def _status_error(cls: type, code: int, message: str = "error") -> openai.APIStatusError:
    return cls(message, response=httpx.Response(code, request=_REQUEST), body=None)


def _chat_response(content: str, finish_reason: str = "stop") -> SimpleNamespace:
    return SimpleNamespace(
        choices=[
            SimpleNamespace(
                message=SimpleNamespace(content=content),
                finish_reason=finish_reason,
            )
        ],
        usage=SimpleNamespace(prompt_tokens=12, completion_tokens=34),
    )


class TestLLMClient:
    """Tests for LLMClient."""

    @pytest.fixture
    def settings(self) -> Settings:
        return Settings(_env_file=None)

    @pytest.fixture
    def mock_openai_client(self) -> MagicMock:
        """Create a mock OpenAI client."""
        mock = MagicMock()
        mock.chat.completions.create = AsyncMock(return_value=_chat_response('{"a": 1}'))
        return mock

    def test_default_provider_is_openai(self, settings: Settings) -> None:
        client = LLMClient(api_key="test-key", settings=settings)
        assert client.provider == "openai"
        assert client.base_url == "https://api.openai.com/v1"

    def test_openrouter_provider(self, settings: Settings) -> None:
        client = LLMClient(api_key="test-key", provider="openrouter", settings=settings)
        assert "openrouter" in client.base_url

    def test_custom_base_url(self, settings: Settings) -> None:
        client = LLMClient(api_key="k", base_url="http://localhost:8000/v1", settings=settings)
        assert client.base_url == "http://localhost:8000/v1"

    def test_unknown_provider(self, settings: Settings) -> None:
        with pytest.raises(ValueError, match="Unsupported provider"):
            LLMClient(api_key="k", provider="acme", settings=settings)

    @pytest.mark.asyncio
    async def test_complete_standard_model(
        self, settings: Settings, mock_openai_client: MagicMock
    ) -> None:
        client = LLMClient(api_key="k", settings=settings)
        client._client = mock_openai_client

        result = await client.complete(
            model="gpt-4o",
            messages=[{"role": "user", "content": "hi"}],
            temperature=0.5,
            max_tokens=100,
            response_format={"type": "json_object"},
        )

        params = mock_openai_client.chat.completions.create.call_args.kwargs
        assert params["temperature"] == 0.5
        assert params["max_tokens"] == 100
        assert params["response_format"] == {"type": "json_object"}
        assert result.content == '{"a": 1}'
        assert result.total_tokens == 46
        assert not result.truncated

    @pytest.mark.asyncio
    async def test_complete_reasoning_model(
        self, settings: Settings, mock_openai_client: MagicMock
    ) -> None:
        client = LLMClient(api_key="k", settings=settings)
        client._client = mock_openai_client

        await client.complete(
            model="o3",
            messages=[{"role": "user", "content": "hi"}],
            temperature=1.0,
            max_tokens=100,
        )

        params = mock_openai_client.chat.completions.create.call_args.kwargs
        assert "temperature" not in params
        assert params["max_completion_tokens"] == 100
        assert "max_tokens" not in params

    @pytest.mark.asyncio
    async def test_empty_choices(self, settings: Settings) -> None:
        client = LLMClient(api_key="k", settings=settings)
        mock = MagicMock()
        mock.chat.completions.create = AsyncMock(
            return_value=SimpleNamespace(choices=[], usage=None)
        )
        client._client = mock

        with pytest.raises(ValueError, match="empty choices"):
            await client.complete(model="gpt-4o", messages=[])

    def test_reasoning_model_detection(self) -> None:
        assert is_reasoning_model("o3")
        assert is_reasoning_model("openai/o4-mini")
        assert not is_reasoning_model("gpt-4o")

    def test_truncated_result(self) -> None:
        result = CompletionResult(content="[", model="m", finish_reason="length")
        assert result.truncated


class TestErrorClassification:
    """Tests for transient and schema-rejection detection."""

    def test_transient_errors(self) -> None:
        assert is_transient_error(_status_error(openai.RateLimitError, 429))
        assert is_transient_error(_status_error(openai.InternalServerError, 503))
        assert is_transient_error(openai.APITimeoutError(request=_REQUEST))
        assert is_transient_error(httpx.ReadTimeout("slow"))
        assert not is_transient_error(_status_error(openai.BadRequestError, 400))
        assert not is_transient_error(ValueError("nope"))

    def test_schema_rejection(self) -> None:
        rejected = _status_error(
            openai.BadRequestError, 400, "Invalid parameter: response_format"
        )
        other = _status_error(openai.BadRequestError, 400, "context length exceeded")

        assert is_schema_rejection(rejected)
        assert not is_schema_rejection(other)
        assert not is_schema_rejection(_status_error(openai.RateLimitError, 429))


class TestParsing:
    """Tests for raw-text JSON repair."""

    def test_strip_code_fences(self) -> None:
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fences('{"a": 1}') == '{"a": 1}'

    def test_safe_json_loads_repairs_escapes(self) -> None:
        assert safe_json_loads(r'{"path": "C:\data"}') == {"path": "C:\\data"}

    def test_extract_object_from_prose(self) -> None:
        text = 'Here you go: {"ideas": [{"title": "A {curly}"}]} Hope it helps!'
        assert extract_json_object(text) == {"ideas": [{"title": "A {curly}"}]}

    def test_extract_object_none_found(self) -> None:
        assert extract_json_object("no json here") == {}

    def test_recover_truncated_array(self) -> None:
        text = '[{"idea_id": "a"}, {"idea_id": "b"}, {"idea_id": "c", "title": "Cut'
        assert recover_json_array(text) == [{"idea_id": "a"}, {"idea_id": "b"}]

    def test_payload_object(self) -> None:
        assert parse_json_payload('{"ideas": []}') == {"ideas": []}

    def test_payload_bare_array(self) -> None:
        assert parse_json_payload('[{"a": 1}]') == {"items": [{"a": 1}]}

    def test_payload_truncated_object_recovers_items(self) -> None:
        text = '{"ideas": [{"title": "A"}, {"title": "B"}, {"title": "C'
        assert parse_json_payload(text) == {"items": [{"title": "A"}, {"title": "B"}]}

    def test_payload_empty(self) -> None:
        with pytest.raises(MalformedOutputError):
            parse_json_payload("   ")

    def test_payload_garbage(self) -> None:
        with pytest.raises(MalformedOutputError) as exc_info:
            parse_json_payload("Sorry, I can't do that")
        assert exc_info.value.content_preview.startswith("Sorry")
