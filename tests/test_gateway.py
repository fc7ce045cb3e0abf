"""Tests for the completion gateway and its providers.

Requests are served by ``httpx.MockTransport`` so the URL, headers and body
each provider builds can be inspected without network access.
"""

from __future__ import annotations

import json

import httpx
import pytest

from completion_gateway.gateway import CompletionGateway, create_gateway
from completion_gateway.providers.google_ai_studio import GoogleAIStudioProvider
from completion_gateway.providers.openai_compatible import GroqProvider, PerplexityProvider
from completion_gateway.providers.workers_ai import WorkersAIProvider
from orchestrator.services.errors import (
    MissingCredentialsError,
    UnsupportedProviderError,
    UpstreamError,
)

GATEWAY = "https://gateway.ai.cloudflare.com/v1/acct-1/gw-1"


def _client(handler, captured: list):
    def recording(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return handler(request)

    return httpx.AsyncClient(transport=httpx.MockTransport(recording))


def _provider(cls, handler, captured, api_key="key-123"):
    return cls(
        api_key=api_key,
        account_id="acct-1",
        gateway_id="gw-1",
        max_tokens=512,
        client=_client(handler, captured),
    )


class TestGoogleAIStudio:
    @pytest.mark.asyncio
    async def test_request_shape_and_text_joined_across_parts(self):
        captured = []
        reply = {"candidates": [{"content": {"parts": [{"text": "Hello, "}, {"text": "world"}]}}]}
        provider = _provider(GoogleAIStudioProvider, lambda r: httpx.Response(200, json=reply), captured)

        text = await provider.complete("gemini-2.5-flash", "be brief", "hi")

        assert text == "Hello, world"
        request = captured[0]
        assert str(request.url) == f"{GATEWAY}/google-ai-studio/v1/models/gemini-2.5-flash:generateContent"
        assert request.headers["x-goog-api-key"] == "key-123"
        body = json.loads(request.content)
        assert body["systemInstruction"] == {"parts": [{"text": "be brief"}]}
        assert body["contents"][0]["parts"][0]["text"] == "hi"
        assert body["generationConfig"]["maxOutputTokens"] == 512

    @pytest.mark.asyncio
    async def test_no_candidates_yields_empty_text(self):
        provider = _provider(GoogleAIStudioProvider, lambda r: httpx.Response(200, json={}), [])
        assert await provider.complete("gemini-2.5-flash", "", "hi") == ""


class TestOpenAICompatible:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("cls,slug", [(GroqProvider, "groq"), (PerplexityProvider, "perplexity-ai")])
    async def test_chat_completions(self, cls, slug):
        captured = []
        reply = {"choices": [{"message": {"content": "42"}}]}
        provider = _provider(cls, lambda r: httpx.Response(200, json=reply), captured)

        text = await provider.complete("llama-3.3-70b", "sys", "question")

        assert text == "42"
        request = captured[0]
        assert str(request.url) == f"{GATEWAY}/{slug}/chat/completions"
        assert request.headers["Authorization"] == "Bearer key-123"
        body = json.loads(request.content)
        assert body["model"] == "llama-3.3-70b"
        assert [m["role"] for m in body["messages"]] == ["system", "user"]

    @pytest.mark.asyncio
    async def test_empty_system_prompt_omitted(self):
        captured = []
        provider = _provider(
            GroqProvider, lambda r: httpx.Response(200, json={"choices": []}), captured
        )
        assert await provider.complete("m", "", "q") == ""
        assert [m["role"] for m in json.loads(captured[0].content)["messages"]] == ["user"]


class TestWorkersAI:
    @pytest.mark.asyncio
    async def test_model_is_the_path(self):
        captured = []
        reply = {"result": {"response": "ok"}}
        provider = _provider(WorkersAIProvider, lambda r: httpx.Response(200, json=reply), captured)

        text = await provider.complete("@cf/meta/llama-3.1-8b-instruct", "", "hi")

        assert text == "ok"
        assert str(captured[0].url) == f"{GATEWAY}/workers-ai/@cf/meta/llama-3.1-8b-instruct"


class TestErrors:
    @pytest.mark.asyncio
    async def test_non_2xx_raises_upstream_error(self):
        provider = _provider(GroqProvider, lambda r: httpx.Response(429, text="slow down"), [])

        with pytest.raises(UpstreamError) as exc_info:
            await provider.complete("m", "s", "p")

        assert exc_info.value.status_code == 429
        assert exc_info.value.body == "slow down"
        assert exc_info.value.source == "groq"

    @pytest.mark.asyncio
    async def test_missing_key_raises_before_request(self):
        captured = []
        provider = _provider(GroqProvider, lambda r: httpx.Response(200), captured, api_key="")

        with pytest.raises(MissingCredentialsError):
            await provider.complete("m", "s", "p")
        assert captured == []

    @pytest.mark.asyncio
    async def test_unknown_provider(self):
        gateway = CompletionGateway()
        with pytest.raises(UnsupportedProviderError, match="openrouter"):
            await gateway.complete("openrouter", "m", "s", "p")


class TestGateway:
    @pytest.mark.asyncio
    async def test_routes_by_provider_name(self):
        captured = []
        reply = {"choices": [{"message": {"content": "from groq"}}]}
        gateway = CompletionGateway(
            {"groq": _provider(GroqProvider, lambda r: httpx.Response(200, json=reply), captured)}
        )

        assert await gateway.complete("groq", "m", "s", "p") == "from groq"
        assert len(captured) == 1
        await gateway.close()

    def test_create_gateway_registers_builtin_providers(self, settings):
        gateway = create_gateway(settings)
        assert gateway.providers == ["google-ai-studio", "groq", "perplexity-ai", "workers-ai"]
