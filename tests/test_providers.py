"""Tests for the upstream provider clients."""

import json

import httpx
import pytest

from botrouter.config import Settings
from botrouter.errors import UpstreamError
from botrouter.models import FallbackModel
from botrouter.providers.anthropic import AnthropicProvider
from botrouter.providers.openai_compat import OpenAICompatibleProvider
from botrouter.providers.upstream import UpstreamClient
from conftest import chat_completion


def _provider(handler) -> OpenAICompatibleProvider:
    return OpenAICompatibleProvider(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestOpenAICompatibleProvider:
    @pytest.mark.asyncio
    async def test_posts_chat_completions(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=chat_completion("hi"))

        body = {
            "model": "gpt-4o", "messages": [], "temperature": None,
            "stream": True, "thinking": {"type": "enabled"},
        }
        data = await _provider(handler).chat("https://api.test/v1/", "sk-1", body)

        assert data["choices"][0]["message"]["content"] == "hi"
        assert seen[0].url == "https://api.test/v1/chat/completions"
        assert seen[0].headers["Authorization"] == "Bearer sk-1"
        assert json.loads(seen[0].content) == {"model": "gpt-4o", "messages": []}

    @pytest.mark.asyncio
    async def test_error_response_becomes_upstream_error(self):
        def handler(request):
            return httpx.Response(429, json={"error": {"type": "rate_limit_error", "message": "slow down"}})

        with pytest.raises(UpstreamError) as excinfo:
            await _provider(handler).chat("https://api.test/v1", "sk-1", {"model": "gpt-4o"})

        err = excinfo.value
        assert err.status_code == 429
        assert err.error_type == "rate_limit_error"
        assert err.model == "gpt-4o"
        assert str(err) == "[status=429 type=rate_limit_error model=gpt-4o] slow down"

    @pytest.mark.asyncio
    async def test_non_json_error_body(self):
        def handler(request):
            return httpx.Response(502, text="Bad Gateway")

        with pytest.raises(UpstreamError) as excinfo:
            await _provider(handler).chat("https://api.test/v1", "sk-1", {"model": "m"})
        assert excinfo.value.status_code == 502
        assert excinfo.value.error_type is None

    @pytest.mark.asyncio
    async def test_transport_errors(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        def stall(request):
            raise httpx.ReadTimeout("stalled", request=request)

        with pytest.raises(UpstreamError) as excinfo:
            await _provider(refuse).chat("https://api.test/v1", "k", {"model": "m"})
        assert excinfo.value.error_type == "connection_error"
        assert excinfo.value.status_code is None

        with pytest.raises(UpstreamError) as excinfo:
            await _provider(stall).chat("https://api.test/v1", "k", {"model": "m"})
        assert excinfo.value.error_type == "timeout"


class TestAnthropicProvider:
    @pytest.mark.asyncio
    async def test_unconfigured(self):
        provider = AnthropicProvider(api_key=None)
        assert not provider.configured
        with pytest.raises(UpstreamError) as excinfo:
            await provider.messages({"model": "claude", "messages": []})
        assert excinfo.value.error_type == "configuration"


class RecordingProvider(OpenAICompatibleProvider):
    def __init__(self):
        super().__init__()
        self.calls = []

    async def chat(self, base_url, api_key, body, timeout=None):
        self.calls.append((base_url, api_key, body))
        return chat_completion("ok")


class RecordingAnthropic(AnthropicProvider):
    def __init__(self):
        super().__init__(api_key="sk-ant")
        self.calls = []

    async def messages(self, body, timeout=None):
        self.calls.append(body)
        return {"content": []}


class TestUpstreamClient:
    def _client(self, **settings):
        openai, anthropic = RecordingProvider(), RecordingAnthropic()
        client = UpstreamClient(Settings(**settings), openai, anthropic)
        return client, openai, anthropic

    def test_base_url_resolution_order(self):
        client, _, _ = self._client(
            llm_base_url="https://global.test/v1",
            vendor_base_urls={"deepseek": "https://proxy.test/deepseek"},
        )
        assert client.resolve_base_url(
            FallbackModel(vendor="deepseek", model="m", base_url="https://own.test/v1")
        ) == "https://own.test/v1"
        assert client.resolve_base_url(FallbackModel(vendor="deepseek", model="m")) == "https://proxy.test/deepseek"
        assert client.resolve_base_url(FallbackModel(vendor="openai", model="m")) == "https://api.openai.com/v1"
        assert client.resolve_base_url(FallbackModel(vendor="local", model="m")) == "https://global.test/v1"

    def test_api_key_resolution(self):
        client, _, _ = self._client(llm_api_key="sk-global", vendor_api_keys={"openai": "sk-openai"})
        assert client.resolve_api_key("openai") == "sk-openai"
        assert client.resolve_api_key("deepseek") == "sk-global"

    @pytest.mark.asyncio
    async def test_dispatch_by_protocol(self):
        client, openai, anthropic = self._client(vendor_api_keys={"openai": "sk-openai"})

        await client.call(FallbackModel(vendor="openai", model="gpt-4o"), {"model": "gpt-4o"})
        await client.call(
            FallbackModel(vendor="anthropic", model="claude", protocol="anthropic-native"),
            {"model": "claude"},
        )

        assert openai.calls == [("https://api.openai.com/v1", "sk-openai", {"model": "gpt-4o"})]
        assert anthropic.calls == [{"model": "claude"}]

    @pytest.mark.asyncio
    async def test_missing_key_is_a_configuration_error(self):
        client, openai, _ = self._client()
        with pytest.raises(UpstreamError) as excinfo:
            await client.call(FallbackModel(vendor="openai", model="gpt-4o"), {})
        assert excinfo.value.error_type == "configuration"
        assert openai.calls == []
