"""
Completion Gateway — one request/response interface over interchangeable LLM providers.

    gateway.complete("google-ai-studio", "gemini-2.5-flash", system, prompt) -> str

Providers are registered by name, so adding one never touches the callers.
No retry logic lives here; retries, if any, are a caller-level policy.
"""

from __future__ import annotations

import structlog

from completion_gateway.providers.base import CompletionProvider
from orchestrator.services.config import Settings
from orchestrator.services.errors import UnsupportedProviderError

logger = structlog.get_logger()


class CompletionGateway:
    """Registry of completion providers keyed by provider name."""

    def __init__(self, providers: dict[str, CompletionProvider] | None = None):
        self._providers: dict[str, CompletionProvider] = dict(providers or {})

    def register(self, name: str, provider: CompletionProvider) -> None:
        self._providers[name] = provider

    @property
    def providers(self) -> list[str]:
        return sorted(self._providers)

    async def complete(self, provider: str, model: str, system_prompt: str, prompt: str) -> str:
        impl = self._providers.get(provider)
        if impl is None:
            raise UnsupportedProviderError(provider)

        await logger.adebug(
            "Completion request",
            provider=provider,
            model=model,
            prompt_chars=len(prompt) + len(system_prompt),
        )
        text = await impl.complete(model, system_prompt, prompt)
        await logger.adebug("Completion response", provider=provider, model=model, chars=len(text))
        return text

    async def close(self) -> None:
        for impl in self._providers.values():
            await impl.close()


def create_gateway(settings: Settings) -> CompletionGateway:
    """Build a gateway with every built-in provider configured from settings."""
    from completion_gateway.providers.google_ai_studio import GoogleAIStudioProvider
    from completion_gateway.providers.openai_compatible import GroqProvider, PerplexityProvider
    from completion_gateway.providers.workers_ai import WorkersAIProvider

    common = {
        "account_id": settings.ai_gateway_account_id,
        "gateway_id": settings.ai_gateway_id,
        "max_tokens": settings.completion_max_tokens,
        "timeout": settings.completion_timeout_seconds,
    }
    return CompletionGateway(
        {
            GroqProvider.name: GroqProvider(api_key=settings.groq_api_key, **common),
            PerplexityProvider.name: PerplexityProvider(
                api_key=settings.perplexity_api_key, **common
            ),
            GoogleAIStudioProvider.name: GoogleAIStudioProvider(
                api_key=settings.google_ai_studio_api_key, **common
            ),
            WorkersAIProvider.name: WorkersAIProvider(
                api_key=settings.cloudflare_api_token, **common
            ),
        }
    )
