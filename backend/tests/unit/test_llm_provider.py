"""
Unit tests for LLM provider factory and the chat completions provider.

WHAT: Test provider selection, generate/ping success and failure paths
WHY: Matcher and negotiator share this provider
HOW: Mock HTTP with respx, patch settings values with monkeypatch
"""

import json

import httpx
import pytest
import respx

from bazaar.core.config import settings
from bazaar.llm.chat_completions import ChatCompletionsProvider, strip_thinking_blocks
from bazaar.llm.provider_factory import get_provider
from bazaar.llm.types import (
    ProviderDisabledError,
    ProviderResponseError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)

BASE_URL = "http://localhost:1234/v1"


def completion(text, model="test-model"):
    return {
        "choices": [{"message": {"content": text}}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
        "model": model,
    }


@pytest.mark.unit
class TestProviderFactory:
    """Test provider factory selection logic."""

    def test_factory_returns_lm_studio(self, monkeypatch):
        monkeypatch.setattr(settings, "LLM_PROVIDER", "lm_studio")
        provider = get_provider()
        assert isinstance(provider, ChatCompletionsProvider)
        assert provider.name == "lm_studio"
        assert provider.extra_payload == {"enable_thinking": False}

    def test_factory_returns_openrouter(self, monkeypatch):
        monkeypatch.setattr(settings, "LLM_PROVIDER", "openrouter")
        monkeypatch.setattr(settings, "LLM_ENABLE_OPENROUTER", True)
        monkeypatch.setattr(settings, "OPENROUTER_API_KEY", "test-key")

        provider = get_provider()
        assert provider.name == "openrouter"
        assert provider.client.headers["Authorization"] == "Bearer test-key"

    def test_openrouter_enabled_without_key(self, monkeypatch):
        monkeypatch.setattr(settings, "LLM_PROVIDER", "openrouter")
        monkeypatch.setattr(settings, "LLM_ENABLE_OPENROUTER", True)
        monkeypatch.setattr(settings, "OPENROUTER_API_KEY", "")

        with pytest.raises(ProviderDisabledError):
            get_provider()

    def test_factory_raises_on_unknown_provider(self, monkeypatch):
        monkeypatch.setattr(settings, "LLM_PROVIDER", "unknown_provider")
        with pytest.raises(ValueError, match="Unknown LLM provider"):
            get_provider()

    def test_factory_returns_singleton(self, monkeypatch):
        monkeypatch.setattr(settings, "LLM_PROVIDER", "lm_studio")
        assert get_provider() is get_provider()


@pytest.mark.unit
class TestChatCompletionsProvider:
    """Test generate and ping against a mocked server."""

    @pytest.fixture
    def provider(self):
        return ChatCompletionsProvider(
            "lm_studio", BASE_URL, "test-model", timeout=5, max_retries=3, retry_delay=0.001
        )

    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_success(self, provider):
        route = respx.post(f"{BASE_URL}/chat/completions").mock(
            return_value=httpx.Response(200, json=completion("How about 12 HBAR?"))
        )

        result = await provider.generate(
            [{"role": "user", "content": "hi"}], temperature=0.5, max_tokens=50
        )

        assert result.text == "How about 12 HBAR?"
        assert result.usage["total_tokens"] == 15
        payload = json.loads(route.calls.last.request.content)
        assert payload["model"] == "test-model"
        assert payload["temperature"] == 0.5
        assert payload["stream"] is False

    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_strips_thinking(self, provider):
        respx.post(f"{BASE_URL}/chat/completions").mock(
            return_value=httpx.Response(200, json=completion("<think>budget is 18</think>\nI offer 12 HBAR."))
        )
        result = await provider.generate([{"role": "user", "content": "hi"}], temperature=0.5, max_tokens=50)
        assert result.text == "I offer 12 HBAR."

    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_retries_then_succeeds(self, provider):
        route = respx.post(f"{BASE_URL}/chat/completions").mock(side_effect=[
            httpx.TimeoutException("timeout"),
            httpx.Response(503),
            httpx.Response(200, json=completion("ok")),
        ])
        result = await provider.generate([{"role": "user", "content": "hi"}], temperature=0.5, max_tokens=50)
        assert result.text == "ok"
        assert route.call_count == 3

    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_timeout_after_retries(self, provider):
        respx.post(f"{BASE_URL}/chat/completions").mock(side_effect=httpx.TimeoutException("timeout"))
        with pytest.raises(ProviderTimeoutError):
            await provider.generate([{"role": "user", "content": "hi"}], temperature=0.5, max_tokens=50)

    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_connect_error(self, provider):
        respx.post(f"{BASE_URL}/chat/completions").mock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(ProviderUnavailableError):
            await provider.generate([{"role": "user", "content": "hi"}], temperature=0.5, max_tokens=50)

    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_4xx_not_retried(self, provider):
        route = respx.post(f"{BASE_URL}/chat/completions").mock(return_value=httpx.Response(400, text="bad"))
        with pytest.raises(ProviderResponseError):
            await provider.generate([{"role": "user", "content": "hi"}], temperature=0.5, max_tokens=50)
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_malformed_body(self, provider):
        respx.post(f"{BASE_URL}/chat/completions").mock(return_value=httpx.Response(200, json={"choices": []}))
        with pytest.raises(ProviderResponseError):
            await provider.generate([{"role": "user", "content": "hi"}], temperature=0.5, max_tokens=50)

    @pytest.mark.asyncio
    async def test_disabled_provider(self):
        provider = ChatCompletionsProvider("openrouter", BASE_URL, "m", timeout=5, enabled=False)
        with pytest.raises(ProviderDisabledError):
            await provider.generate([{"role": "user", "content": "hi"}], temperature=0.5, max_tokens=50)
        status = await provider.ping()
        assert status.available is False

    @pytest.mark.asyncio
    @respx.mock
    async def test_ping_success(self, provider):
        respx.get(f"{BASE_URL}/models").mock(
            return_value=httpx.Response(200, json={"data": [{"id": "model-1"}, {"id": "model-2"}]})
        )
        status = await provider.ping()
        assert status.available is True
        assert status.models == ["model-1", "model-2"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_ping_timeout(self, provider):
        respx.get(f"{BASE_URL}/models").mock(side_effect=httpx.TimeoutException("timeout"))
        status = await provider.ping()
        assert status.available is False
        assert status.error == "Connection timeout"


@pytest.mark.unit
def test_strip_thinking_blocks():
    assert strip_thinking_blocks("<thinking>x</thinking>Deal!") == "Deal!"
    assert strip_thinking_blocks("Deal!</think>") == "Deal!"
    assert strip_thinking_blocks(None) == ""
