"""Providers speaking the OpenAI chat-completions dialect (Groq, Perplexity)."""

from __future__ import annotations

from typing import Any

from completion_gateway.providers.base import CompletionProvider


class OpenAICompatibleProvider(CompletionProvider):
    def _path(self, model: str) -> str:
        return "chat/completions"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _body(self, model: str, system_prompt: str, prompt: str) -> dict[str, Any]:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return {
            "model": model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "top_p": self.top_p,
        }

    def _extract_text(self, data: dict[str, Any]) -> str:
        choices = data.get("choices") or []
        if not choices:
            return ""
        return choices[0].get("message", {}).get("content") or ""


class GroqProvider(OpenAICompatibleProvider):
    name = "groq"


class PerplexityProvider(OpenAICompatibleProvider):
    name = "perplexity-ai"
