"""GitHub webhook authentication for prpilot."""

from __future__ import annotations

import hashlib
import hmac
from typing import Optional

from fastapi import HTTPException, Request

from orchestrator.services.config import get_settings

SIGNATURE_HEADER = "X-Hub-Signature-256"


def compute_signature(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(compute_signature(secret, body), signature)


async def require_github_signature(request: Request) -> bytes:
    """Validate the webhook HMAC against GITHUB_WEBHOOK_SECRET and return the raw body.

    If GITHUB_WEBHOOK_SECRET is empty (dev mode), verification is skipped.
    """
    body = await request.body()
    secret = get_settings().github_webhook_secret

    # Dev mode: no secret configured = no verification
    if not secret:
        return body

    if not verify_signature(secret, body, request.headers.get(SIGNATURE_HEADER)):
        raise HTTPException(status_code=401, detail="Invalid or missing webhook signature")
    return body
