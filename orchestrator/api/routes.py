"""
HTTP routes for the prpilot orchestrator.

Endpoints:
    POST   /webhooks/github        — GitHub pull_request events start a review
    GET    /api/reviews/{id}       — Review details
    GET    /api/health             — Health check
"""

from __future__ import annotations

import asyncio
import json

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException

from git_integration.providers.base import PullRequest
from orchestrator.api.webhook import require_github_signature
from orchestrator.models.review import RepoRef, Review

logger = structlog.get_logger()

router = APIRouter()

# PR actions that put a new commit in front of reviewers
REVIEW_ACTIONS = {"opened", "synchronize", "reopened"}

# These will be injected by the app factory
_pipeline = None
_store = None
_background: set[asyncio.Task] = set()


def set_dependencies(pipeline, store):
    global _pipeline, _store
    _pipeline = pipeline
    _store = store


def _pull_request_from_event(payload: dict) -> tuple[RepoRef, PullRequest]:
    repo = payload["repository"]
    pr = payload["pull_request"]
    head_repo = (pr["head"].get("repo") or {}).get("full_name") or repo["full_name"]
    return (
        RepoRef(id=repo["id"], full_name=repo["full_name"], private=repo.get("private", False)),
        PullRequest(
            number=pr["number"],
            title=pr.get("title") or "",
            body=pr.get("body") or "",
            head_ref=pr["head"]["ref"],
            head_sha=pr["head"]["sha"],
            head_repo=head_repo,
            base_ref=pr["base"]["ref"],
        ),
    )


def start_review(repo: RepoRef, pr: PullRequest) -> asyncio.Task:
    """Run a review in the background; the task is kept referenced until it finishes."""
    task = asyncio.create_task(_pipeline.run_review(repo, pr))
    _background.add(task)
    task.add_done_callback(_background.discard)
    return task


# ── Webhooks ──────────────────────────────────────────────────────


@router.post("/webhooks/github", status_code=202)
async def github_webhook(
    body: bytes = Depends(require_github_signature),
    x_github_event: str = Header("", alias="X-GitHub-Event"),
):
    """Start a review for every new PR head commit."""
    if _pipeline is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")

    if x_github_event == "ping":
        return {"status": "pong"}
    if x_github_event != "pull_request":
        return {"status": "ignored", "reason": f"event {x_github_event!r}"}

    try:
        payload = json.loads(body)
        action = payload.get("action")
        if action not in REVIEW_ACTIONS:
            return {"status": "ignored", "reason": f"action {action!r}"}
        repo, pr = _pull_request_from_event(payload)
    except (ValueError, KeyError, TypeError) as e:
        raise HTTPException(status_code=400, detail=f"Malformed pull_request payload: {e}")

    await logger.ainfo(
        "Webhook accepted", repo=repo.full_name, pr_number=pr.number, action=action, sha=pr.head_sha[:7]
    )
    start_review(repo, pr)
    return {"status": "accepted", "repo": repo.full_name, "pr_number": pr.number, "commit_sha": pr.head_sha}


# ── Reviews ───────────────────────────────────────────────────────


@router.get("/api/reviews/{review_id}", response_model=Review)
async def get_review(review_id: str):
    """Get the full state of a review."""
    if _store is None:
        raise HTTPException(status_code=503, detail="Review store not initialized")

    review = _store.get(review_id)
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    return review


# ── Health check ──────────────────────────────────────────────────


@router.get("/api/health")
async def health_check():
    """System health check."""
    return {
        "status": "healthy",
        "pipeline_ready": _pipeline is not None,
        "active_reviews": len(_background),
    }
