"""Abstract base for completion providers.

Every provider is reached through the Cloudflare AI gateway, so the shared
code here builds the gateway URL, issues one POST, and maps non-2xx
responses to ``UpstreamError``. Subclasses supply the path, headers, request
body and the response-to-text extraction.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
import structlog

from orchestrator.services.errors import MissingCredentialsError, UpstreamError

logger = structlog.get_logger()

GATEWAY_BASE_URL = "https://gateway.ai.cloudflare.com/v1"


class CompletionProvider(ABC):
    """One language-model provider behind the completion gateway."""

    #: Provider slug used both as registry key and gateway path segment.
    name: str = ""
    temperature: float = 0.6
    top_p: float = 0.95

    def __init__(
        self,
        api_key: str,
        account_id: str,
        gateway_id: str,
        max_tokens: int = 4096,
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.account_id = account_id
        self.gateway_id = gateway_id
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def base_url(self) -> str:
        return f"{GATEWAY_BASE_URL}/{self.account_id}/{self.gateway_id}/{self.name}"

    async def complete(self, model: str, system_prompt: str, prompt: str) -> str:
        if not self.api_key:
            raise MissingCredentialsError(f"No API key configured for provider {self.name!r}")

        url = f"{self.base_url}/{self._path(model)}"
        resp = await self.client.post(
            url,
            headers={"Content-Type": "application/json", **self._headers()},
            json=self._body(model, system_prompt, prompt),
        )
        if resp.status_code >= 300:
            await logger.awarning(
                "Completion provider error",
                provider=self.name,
                model=model,
                status=resp.status_code,
            )
            raise UpstreamError(self.name, resp.status_code, resp.text)

        return self._extract_text(resp.json())

    @abstractmethod
    def _path(self, model: str) -> str:
        """Path under the provider's gateway URL."""
        ...

    @abstractmethod
    def _headers(self) -> dict[str, str]:
        ...

    @abstractmethod
    def _body(self, model: str, system_prompt: str, prompt: str) -> dict[str, Any]:
        ...

    @abstractmethod
    def _extract_text(self, data: dict[str, Any]) -> str:
        ...
