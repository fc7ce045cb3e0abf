"""Tests for the HTTP routes.

Covers:
- Webhook signature verification (and dev mode without a secret)
- Which pull_request actions start a review
- Review lookup and the health endpoint

The real lifespan builds cloud clients, so a bare app is built around the
router with fakes injected through ``set_dependencies``.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from orchestrator.api.routes import router, set_dependencies
from orchestrator.api.webhook import SIGNATURE_HEADER, compute_signature, verify_signature
from orchestrator.models.review import Review


def _event(action: str = "opened") -> dict:
    return {
        "action": action,
        "repository": {"id": 42, "full_name": "acme/webapp", "private": True},
        "pull_request": {
            "number": 7,
            "title": "Dark mode",
            "body": None,
            "head": {"ref": "feature", "sha": "abc1234", "repo": {"full_name": "fork/webapp"}},
            "base": {"ref": "main"},
        },
    }


@pytest.fixture
def pipeline():
    mock = MagicMock()
    mock.run_review = AsyncMock()
    return mock


@pytest.fixture
def store():
    return MagicMock()


@pytest.fixture
def client(pipeline, store):
    app = FastAPI()
    app.include_router(router)
    set_dependencies(pipeline, store)
    with patch("orchestrator.api.webhook.get_settings") as mock_settings:
        mock_settings.return_value = MagicMock(github_webhook_secret="")
        with TestClient(app) as test_client:
            yield test_client
    set_dependencies(None, None)


def _post(client, payload, event="pull_request", headers=None):
    return client.post(
        "/webhooks/github",
        content=json.dumps(payload).encode(),
        headers={"X-GitHub-Event": event, "Content-Type": "application/json", **(headers or {})},
    )


class TestSignature:
    def test_round_trip(self):
        body = b'{"zen": "Keep it logically awesome."}'
        assert verify_signature("s3cret", body, compute_signature("s3cret", body))

    def test_wrong_secret_or_missing(self):
        body = b"{}"
        assert not verify_signature("s3cret", body, compute_signature("other", body))
        assert not verify_signature("s3cret", body, None)

    def test_webhook_rejects_bad_signature(self, client, pipeline):
        with patch("orchestrator.api.webhook.get_settings") as mock_settings:
            mock_settings.return_value = MagicMock(github_webhook_secret="s3cret")
            resp = _post(client, _event(), headers={SIGNATURE_HEADER: "sha256=deadbeef"})

        assert resp.status_code == 401
        pipeline.run_review.assert_not_called()

    def test_webhook_accepts_valid_signature(self, client, pipeline):
        body = json.dumps(_event()).encode()
        with patch("orchestrator.api.webhook.get_settings") as mock_settings:
            mock_settings.return_value = MagicMock(github_webhook_secret="s3cret")
            resp = client.post(
                "/webhooks/github",
                content=body,
                headers={"X-GitHub-Event": "pull_request", SIGNATURE_HEADER: compute_signature("s3cret", body)},
            )

        assert resp.status_code == 202
        assert resp.json()["status"] == "accepted"


class TestWebhook:
    @pytest.mark.parametrize("action", ["opened", "synchronize", "reopened"])
    def test_review_actions_start_review(self, client, pipeline, action):
        resp = _post(client, _event(action))

        assert resp.status_code == 202
        assert resp.json() == {
            "status": "accepted",
            "repo": "acme/webapp",
            "pr_number": 7,
            "commit_sha": "abc1234",
        }
        repo, pr = pipeline.run_review.call_args.args
        assert repo.id == 42
        assert repo.private is True
        assert pr.head_repo == "fork/webapp"
        assert pr.body == ""

    @pytest.mark.parametrize("action", ["closed", "labeled", "edited"])
    def test_other_actions_ignored(self, client, pipeline, action):
        resp = _post(client, _event(action))

        assert resp.json()["status"] == "ignored"
        pipeline.run_review.assert_not_called()

    def test_ping(self, client):
        assert _post(client, {"zen": "hi"}, event="ping").json() == {"status": "pong"}

    def test_other_events_ignored(self, client, pipeline):
        resp = _post(client, {"ref": "refs/heads/main"}, event="push")
        assert resp.json()["status"] == "ignored"
        pipeline.run_review.assert_not_called()

    def test_malformed_payload(self, client, pipeline):
        resp = _post(client, {"action": "opened", "repository": {"id": 1}})
        assert resp.status_code == 400
        pipeline.run_review.assert_not_called()

    def test_not_initialized(self, client):
        set_dependencies(None, None)
        assert _post(client, _event()).status_code == 503


class TestReviews:
    def test_get_review(self, client, store):
        review = Review(repo_id=42, repo_full_name="acme/webapp", pr_number=7, commit_sha="abc1234")
        store.get.return_value = review

        resp = client.get(f"/api/reviews/{review.id}")

        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == review.id
        assert data["generate"]["status"] == "pending"
        store.get.assert_called_once_with(review.id)

    def test_unknown_review(self, client, store):
        store.get.return_value = None
        assert client.get("/api/reviews/nope").status_code == 404

    def test_health(self, client):
        data = client.get("/api/health").json()
        assert data["status"] == "healthy"
        assert data["pipeline_ready"] is True
        assert isinstance(data["active_reviews"], int)
