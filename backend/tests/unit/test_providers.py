"""Unit tests for provider adapters and their retry behaviour."""

import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from backend.src.models.generation import GenerationOptions
from backend.src.services.config import AppConfig
from backend.src.services.errors import UnknownProviderError, UpstreamProviderError
from backend.src.services.providers import (
    AnthropicAdapter,
    BackendResponseError,
    GeminiAdapter,
    OpenAIAdapter,
    create_adapter,
    is_transient,
)

API_KEY = "sk-test-secret-key"


def _json_response(payload: dict) -> MagicMock:
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status = MagicMock()
    return response


def _status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://example.test")
    return httpx.HTTPStatusError(
        f"HTTP {code}", request=request, response=httpx.Response(code, request=request)
    )


def _openai_payload(content: str = '{"ok": true}', tokens: int = 42) -> dict:
    return {
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"total_tokens": tokens},
    }


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


class TestTransientClassification:
    """Tests for is_transient()."""

    def test_network_errors_are_transient(self) -> None:
        assert is_transient(httpx.ConnectError("down")) is True
        assert is_transient(httpx.ReadTimeout("slow")) is True

    def test_server_errors_and_rate_limits_are_transient(self) -> None:
        assert is_transient(_status_error(500)) is True
        assert is_transient(_status_error(503)) is True
        assert is_transient(_status_error(429)) is True

    def test_client_errors_are_not_transient(self) -> None:
        assert is_transient(_status_error(400)) is False
        assert is_transient(_status_error(401)) is False


class TestOpenAIAdapter:
    """Tests for OpenAIAdapter."""

    @pytest.mark.asyncio
    async def test_generate_response(self, sleep: AsyncMock) -> None:
        adapter = OpenAIAdapter(API_KEY, sleep=sleep)

        with patch("backend.src.services.providers.openai.httpx.AsyncClient") as mock_client:
            post = AsyncMock(return_value=_json_response(_openai_payload()))
            mock_client.return_value.__aenter__.return_value.post = post

            result = await adapter.generate_response(
                "Prompt", GenerationOptions(model="gpt-4o-mini", system_prompt="System")
            )

        assert result.content == '{"ok": true}'
        assert result.tokens_used == 42
        assert result.provider == "openai"
        payload = post.call_args.kwargs["json"]
        assert payload["messages"][0] == {"role": "system", "content": "System"}
        assert payload["response_format"] == {"type": "json_object"}
        assert post.call_args.kwargs["headers"]["Authorization"] == f"Bearer {API_KEY}"
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_text_output_skips_json_mode(self, sleep: AsyncMock) -> None:
        adapter = OpenAIAdapter(API_KEY, sleep=sleep)

        with patch("backend.src.services.providers.openai.httpx.AsyncClient") as mock_client:
            post = AsyncMock(return_value=_json_response(_openai_payload("A summary")))
            mock_client.return_value.__aenter__.return_value.post = post

            await adapter.generate_response("Prompt", GenerationOptions(json_output=False))

        assert "response_format" not in post.call_args.kwargs["json"]

    @pytest.mark.asyncio
    async def test_retries_transient_errors_then_fails(self, sleep: AsyncMock) -> None:
        adapter = OpenAIAdapter(API_KEY, max_retries=3, base_delay=1.0, max_jitter=0.0, sleep=sleep)

        with patch("backend.src.services.providers.openai.httpx.AsyncClient") as mock_client:
            post = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
            mock_client.return_value.__aenter__.return_value.post = post

            with pytest.raises(UpstreamProviderError) as exc_info:
                await adapter.generate_response("Prompt")

        assert post.await_count == 4
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0]
        assert exc_info.value.provider == "openai"
        assert exc_info.value.details["attempts"] == 4
        assert isinstance(exc_info.value.cause, httpx.ConnectError)
        assert API_KEY not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_recovers_after_transient_error(self, sleep: AsyncMock) -> None:
        adapter = OpenAIAdapter(API_KEY, max_jitter=0.0, sleep=sleep)

        with patch("backend.src.services.providers.openai.httpx.AsyncClient") as mock_client:
            post = AsyncMock(
                side_effect=[httpx.ReadTimeout("slow"), _json_response(_openai_payload())]
            )
            mock_client.return_value.__aenter__.return_value.post = post

            result = await adapter.generate_response("Prompt")

        assert result.tokens_used == 42
        assert post.await_count == 2
        assert adapter.attempts == 2
        sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_does_not_retry_rejected_key(self, sleep: AsyncMock) -> None:
        adapter = OpenAIAdapter(API_KEY, sleep=sleep)
        response = _json_response({})
        response.raise_for_status.side_effect = _status_error(401)

        with patch("backend.src.services.providers.openai.httpx.AsyncClient") as mock_client:
            post = AsyncMock(return_value=response)
            mock_client.return_value.__aenter__.return_value.post = post

            with pytest.raises(UpstreamProviderError) as exc_info:
                await adapter.generate_response("Prompt")

        assert post.await_count == 1
        assert exc_info.value.details["attempts"] == 1
        assert "HTTP 401" in exc_info.value.message
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_choices_is_retried(self, sleep: AsyncMock) -> None:
        adapter = OpenAIAdapter(API_KEY, max_retries=1, max_jitter=0.0, sleep=sleep)

        with patch("backend.src.services.providers.openai.httpx.AsyncClient") as mock_client:
            post = AsyncMock(return_value=_json_response({"choices": []}))
            mock_client.return_value.__aenter__.return_value.post = post

            with pytest.raises(UpstreamProviderError):
                await adapter.generate_response("Prompt")

        assert post.await_count == 2

    @pytest.mark.asyncio
    async def test_validate_key(self) -> None:
        adapter = OpenAIAdapter(API_KEY)

        with patch("backend.src.services.providers.openai.httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.get = AsyncMock(
                return_value=_json_response({"data": []})
            )
            assert await adapter.validate_key("sk-other") is True

            mock_client.return_value.__aenter__.return_value.get = AsyncMock(
                side_effect=_status_error(401)
            )
            assert await adapter.validate_key("sk-other") is False

    def test_repr_hides_key(self) -> None:
        assert API_KEY not in repr(OpenAIAdapter(API_KEY))


class TestCancellation:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_before_first_attempt(self, sleep: AsyncMock) -> None:
        adapter = OpenAIAdapter(API_KEY, sleep=sleep)
        adapter.cancel()

        with patch("backend.src.services.providers.openai.httpx.AsyncClient") as mock_client:
            post = AsyncMock(return_value=_json_response(_openai_payload()))
            mock_client.return_value.__aenter__.return_value.post = post

            with pytest.raises(asyncio.CancelledError):
                await adapter.generate_response("Prompt")

        post.assert_not_awaited()
        assert adapter.is_cancelled() is True

    @pytest.mark.asyncio
    async def test_cancel_during_backoff_stops_retries(self) -> None:
        adapter = OpenAIAdapter(API_KEY, max_retries=3, max_jitter=0.0)
        adapter._sleep = AsyncMock(side_effect=lambda delay: adapter.cancel())

        with patch("backend.src.services.providers.openai.httpx.AsyncClient") as mock_client:
            post = AsyncMock(side_effect=httpx.ConnectError("down"))
            mock_client.return_value.__aenter__.return_value.post = post

            with pytest.raises(asyncio.CancelledError):
                await adapter.generate_response("Prompt")

        assert post.await_count == 1


class TestGeminiAdapter:
    """Tests for GeminiAdapter."""

    @pytest.mark.asyncio
    async def test_generate_response(self, sleep: AsyncMock) -> None:
        adapter = GeminiAdapter(API_KEY, sleep=sleep)
        payload = {
            "candidates": [{"content": {"parts": [{"text": '{"a": '}, {"text": "1}"}]}}],
            "usageMetadata": {"totalTokenCount": 17},
        }

        with patch("backend.src.services.providers.gemini.httpx.AsyncClient") as mock_client:
            post = AsyncMock(return_value=_json_response(payload))
            mock_client.return_value.__aenter__.return_value.post = post

            result = await adapter.generate_response(
                "Prompt", GenerationOptions(model="gemini-1.5-flash", system_prompt="System")
            )

        assert result.content == '{"a": 1}'
        assert result.tokens_used == 17
        url = post.call_args.args[0]
        assert url.endswith("/models/gemini-1.5-flash:generateContent")
        assert API_KEY not in url
        assert post.call_args.kwargs["headers"]["x-goog-api-key"] == API_KEY
        body = post.call_args.kwargs["json"]
        assert body["contents"][0]["parts"][0]["text"] == "System\n\nPrompt"
        assert body["generationConfig"]["responseMimeType"] == "application/json"

    @pytest.mark.asyncio
    async def test_no_candidates_fails_after_retries(self, sleep: AsyncMock) -> None:
        adapter = GeminiAdapter(API_KEY, max_jitter=0.0, sleep=sleep)

        with patch("backend.src.services.providers.gemini.httpx.AsyncClient") as mock_client:
            post = AsyncMock(return_value=_json_response({"candidates": []}))
            mock_client.return_value.__aenter__.return_value.post = post

            with pytest.raises(UpstreamProviderError) as exc_info:
                await adapter.generate_response("Prompt")

        assert exc_info.value.provider == "gemini"
        assert exc_info.value.details["attempts"] == 4
        assert post.await_count == 4


class TestAnthropicAdapter:
    """Tests for AnthropicAdapter."""

    @pytest.mark.asyncio
    async def test_generate_response(self, sleep: AsyncMock) -> None:
        adapter = AnthropicAdapter(API_KEY, sleep=sleep)
        payload = {
            "content": [
                {"type": "text", "text": "Hello"},
                {"type": "tool_use", "id": "x"},
                {"type": "text", "text": " world"},
            ],
            "usage": {"input_tokens": 10, "output_tokens": 5},
        }

        with patch("backend.src.services.providers.anthropic.httpx.AsyncClient") as mock_client:
            post = AsyncMock(return_value=_json_response(payload))
            mock_client.return_value.__aenter__.return_value.post = post

            result = await adapter.generate_response(
                "Prompt", GenerationOptions(system_prompt="System", max_tokens=1000)
            )

        assert result.content == "Hello world"
        assert result.tokens_used == 15
        assert result.model == "claude-3-5-sonnet-latest"
        body = post.call_args.kwargs["json"]
        assert body["system"] == "System"
        assert body["max_tokens"] == 1000
        headers = post.call_args.kwargs["headers"]
        assert headers["x-api-key"] == API_KEY
        assert headers["anthropic-version"] == "2023-06-01"


ADAPTERS = [
    (OpenAIAdapter, "openai"),
    (GeminiAdapter, "gemini"),
    (AnthropicAdapter, "anthropic"),
]


def _undecodable_response() -> MagicMock:
    response = MagicMock()
    response.json.side_effect = json.JSONDecodeError("Expecting value", "<html>", 0)
    response.raise_for_status = MagicMock()
    return response


def _list_response() -> MagicMock:
    response = MagicMock()
    response.json.return_value = [{"unexpected": "envelope"}]
    response.raise_for_status = MagicMock()
    return response


class TestMalformedEnvelope:
    """A 2xx body the adapter cannot read is retried, then wrapped."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("adapter_cls,module", ADAPTERS)
    @pytest.mark.parametrize("make_response", [_undecodable_response, _list_response])
    async def test_unreadable_body_becomes_upstream_error(
        self, adapter_cls, module: str, make_response, sleep: AsyncMock
    ) -> None:
        adapter = adapter_cls(API_KEY, max_jitter=0.0, sleep=sleep)

        with patch(f"backend.src.services.providers.{module}.httpx.AsyncClient") as mock_client:
            post = AsyncMock(return_value=make_response())
            mock_client.return_value.__aenter__.return_value.post = post

            with pytest.raises(UpstreamProviderError) as exc_info:
                await adapter.generate_response("Prompt")

        assert post.await_count == 4
        assert exc_info.value.provider == module
        assert exc_info.value.details["attempts"] == 4
        assert isinstance(exc_info.value.cause, BackendResponseError)
        assert API_KEY not in str(exc_info.value)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "adapter_cls,module,payload",
        [
            (OpenAIAdapter, "openai", {"choices": ["not-an-object"]}),
            (GeminiAdapter, "gemini", {"candidates": [{"content": {"parts": ["raw"]}}]}),
            (AnthropicAdapter, "anthropic", {"content": ["raw"], "usage": {}}),
        ],
    )
    async def test_wrong_nested_shape_becomes_upstream_error(
        self, adapter_cls, module: str, payload: dict, sleep: AsyncMock
    ) -> None:
        adapter = adapter_cls(API_KEY, max_retries=1, max_jitter=0.0, sleep=sleep)

        with patch(f"backend.src.services.providers.{module}.httpx.AsyncClient") as mock_client:
            post = AsyncMock(return_value=_json_response(payload))
            mock_client.return_value.__aenter__.return_value.post = post

            with pytest.raises(UpstreamProviderError) as exc_info:
                await adapter.generate_response("Prompt")

        assert post.await_count == 2
        assert isinstance(exc_info.value.cause, BackendResponseError)

    @pytest.mark.asyncio
    async def test_recovers_after_unreadable_body(self, sleep: AsyncMock) -> None:
        adapter = OpenAIAdapter(API_KEY, max_jitter=0.0, sleep=sleep)

        with patch("backend.src.services.providers.openai.httpx.AsyncClient") as mock_client:
            post = AsyncMock(
                side_effect=[_undecodable_response(), _json_response(_openai_payload())]
            )
            mock_client.return_value.__aenter__.return_value.post = post

            result = await adapter.generate_response("Prompt")

        assert result.tokens_used == 42
        assert post.await_count == 2


class TestCreateAdapter:
    """Tests for the adapter factory."""

    def test_builds_adapter_from_config(self, tmp_path: Path) -> None:
        config = AppConfig(
            db_path=tmp_path / "maps.db",
            provider_max_retries=1,
            provider_retry_base_delay=0.5,
            provider_timeout_seconds=10,
        )

        adapter = create_adapter("gemini", API_KEY, config=config)

        assert isinstance(adapter, GeminiAdapter)
        assert adapter.max_retries == 1
        assert adapter.base_delay == 0.5
        assert adapter.timeout == 10

    def test_unknown_provider(self, tmp_path: Path) -> None:
        config = AppConfig(db_path=tmp_path / "maps.db")

        with pytest.raises(UnknownProviderError):
            create_adapter("mistral", API_KEY, config=config)
