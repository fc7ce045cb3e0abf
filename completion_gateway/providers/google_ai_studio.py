"""Google AI Studio (Gemini) provider."""

from __future__ import annotations

from typing import Any

from completion_gateway.providers.base import CompletionProvider


class GoogleAIStudioProvider(CompletionProvider):
    name = "google-ai-studio"

    def _path(self, model: str) -> str:
        return f"v1/models/{model}:generateContent"

    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self.api_key}

    def _body(self, model: str, system_prompt: str, prompt: str) -> dict[str, Any]:
        body: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_tokens,
                "topP": self.top_p,
            },
        }
        if system_prompt:
            body["systemInstruction"] = {"parts": [{"text": system_prompt}]}
        return body

    def _extract_text(self, data: dict[str, Any]) -> str:
        # Gemini may split a single answer across several parts
        candidates = data.get("candidates") or []
        if not candidates:
            return data.get("text", "") or ""
        content = candidates[0].get("content") or {}
        parts = content.get("parts") or []
        if parts:
            return "".join(part.get("text", "") for part in parts)
        return candidates[0].get("text", "") or ""
