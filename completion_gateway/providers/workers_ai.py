"""Cloudflare Workers AI provider."""

from __future__ import annotations

from typing import Any

from completion_gateway.providers.base import CompletionProvider


class WorkersAIProvider(CompletionProvider):
    name = "workers-ai"

    def _path(self, model: str) -> str:
        return model.lstrip("/")

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _body(self, model: str, system_prompt: str, prompt: str) -> dict[str, Any]:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return {
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }

    def _extract_text(self, data: dict[str, Any]) -> str:
        result = data.get("result")
        if isinstance(result, dict):
            return result.get("response", "") or ""
        return data.get("response", "") or ""
