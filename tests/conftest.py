"""Shared test fixtures for the prpilot test suite."""

from __future__ import annotations

import json
from typing import Optional

import pytest

from agent_runner.runner import AgentRunResult
from git_integration.providers.base import ChangedFile, CodeHost, PullRequest, RepoVariable
from orchestrator.models.responses import GenerateResponse, GeneratedTest
from orchestrator.models.review import RepoRef, TimestampedStep, ToolCall
from orchestrator.services.config import Settings
from orchestrator.services.generate import TestPlan
from vm_provisioner.backends.base import CommandResult

# ---------------------------------------------------------------------------
# Code host
# ---------------------------------------------------------------------------


class FakeCodeHost(CodeHost):
    """An in-memory code host that keeps every comment it was asked to write."""

    def __init__(
        self,
        files: Optional[list[ChangedFile]] = None,
        contents: Optional[dict[str, str]] = None,
        variables: Optional[list[RepoVariable]] = None,
        tree: str = "src/\n  app.tsx\n  theme.ts\npackage.json",
    ):
        self.files = files or []
        self.contents = contents or {}
        self.variables = variables or []
        self.tree = tree
        self.comments: dict[int, str] = {}
        self.comment_history: list[str] = []
        self.post_calls = 0
        self.edit_calls = 0
        self.fail_post = False
        self.fail_edit = False
        self.variables_error: Optional[Exception] = None
        self.pull_requests: dict[int, PullRequest] = {}

    async def get_pull_request(self, repo, pr_number):
        return self.pull_requests[pr_number]

    async def list_pr_files(self, repo, pr_number):
        return list(self.files)

    async def get_file_content(self, repo, path, ref=None):
        return self.contents.get(path)

    async def get_tree(self, repo, ref=None, max_depth=3):
        return self.tree

    async def list_variables(self, repo):
        if self.variables_error is not None:
            raise self.variables_error
        return list(self.variables)

    async def post_comment(self, repo, pr_number, body):
        self.post_calls += 1
        if self.fail_post:
            raise RuntimeError("comment API unavailable")
        comment_id = 1000 + len(self.comments)
        self.comments[comment_id] = body
        self.comment_history.append(body)
        return comment_id

    async def edit_comment(self, repo, comment_id, body):
        self.edit_calls += 1
        if self.fail_edit:
            raise RuntimeError("comment API unavailable")
        self.comments[comment_id] = body
        self.comment_history.append(body)
        return True

    def clone_url(self, repo):
        return f"https://github.com/{repo}.git"

    def clone_auth_header(self):
        return "Authorization: Basic c2VjcmV0LXRva2Vu"


# ---------------------------------------------------------------------------
# Completion gateway
# ---------------------------------------------------------------------------


class FakeGateway:
    """Returns scripted completions in order and records every request."""

    def __init__(self, responses: Optional[list] = None):
        self.responses = list(responses or [])
        self.calls: list[dict] = []

    async def complete(self, provider, model, system_prompt, prompt):
        self.calls.append(
            {"provider": provider, "model": model, "system_prompt": system_prompt, "prompt": prompt}
        )
        if not self.responses:
            raise AssertionError("FakeGateway ran out of scripted responses")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(system_prompt, prompt)
        if isinstance(response, (dict, list)):
            return json.dumps(response)
        return response

    async def close(self):
        pass


# ---------------------------------------------------------------------------
# VM
# ---------------------------------------------------------------------------


class FakeHandle:
    """A VM handle that records commands and counts stop() calls."""

    def __init__(self, handle_id: str = "droplet-1", stream_url: str = "http://203.0.113.7:6080/vnc.html"):
        self.id = handle_id
        self.stream_url = stream_url
        self.commands: list[str] = []
        self.files: dict[str, str] = {}
        self.env: dict[str, str] = {}
        self.stop_calls = 0
        self.failing_commands: dict[str, CommandResult] = {}

    async def bash(self, command, timeout=None):
        self.commands.append(command)
        for fragment, result in self.failing_commands.items():
            if fragment in command:
                return result
        return CommandResult(0, "", "")

    async def set_env(self, variables):
        self.env.update(variables)

    async def write_file(self, path, content):
        self.files[path] = content

    async def stop(self):
        self.stop_calls += 1


class FakeProvisioner:
    def __init__(self, handle: Optional[FakeHandle] = None, error: Optional[Exception] = None):
        self.handle = handle or FakeHandle()
        self.error = error
        self.provision_calls = 0

    async def provision(self, review_id):
        self.provision_calls += 1
        if self.error is not None:
            raise self.error
        return self.handle


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


def agent_step(text: str, tool: str = "bash", args=None) -> TimestampedStep:
    return TimestampedStep(text=text, tool_calls=[ToolCall(name=tool, args=args or {"command": "ls"})])


class FakeAgentRunner:
    """Plays back scripted runs; each script entry is (steps, result) or an exception."""

    def __init__(self, script: Optional[list] = None):
        self.script = list(script or [])
        self.calls: list[dict] = []

    async def run(self, system_prompt, user_prompt, handle, on_step=None, outcome_schema=None):
        self.calls.append(
            {"system_prompt": system_prompt, "user_prompt": user_prompt, "schema": outcome_schema}
        )
        if not self.script:
            return AgentRunResult(success=True)
        entry = self.script.pop(0)
        if isinstance(entry, BaseException):
            raise entry
        steps, result = entry
        for step in steps:
            result.steps.append(step)
            if on_step is not None:
                await on_step(step)
        return result


class FakeGenerator:
    def __init__(self, plan: Optional[TestPlan] = None, error: Optional[Exception] = None):
        self.plan = plan
        self.error = error
        self.calls = 0

    async def generate(self, repo, pr):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.plan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path):
    """Settings pointing the review store at a temp file."""
    return Settings(
        store_path=str(tmp_path / "reviews.json"),
        vm_repo_path="/home/prpilot/repo",
        generate_provider="google-ai-studio",
        generate_model="gemini-2.5-flash",
    )


@pytest.fixture
def repo():
    return RepoRef(id=42, full_name="acme/webapp")


@pytest.fixture
def pull_request():
    return PullRequest(
        number=7,
        title="Add dark mode toggle",
        body="Adds a toggle to the header that switches the theme.",
        head_ref="feature/dark-mode",
        head_sha="abc1234def5678900000000000000000000000000",
        head_repo="acme/webapp",
        base_ref="main",
    )


@pytest.fixture
def changed_files():
    return [
        ChangedFile("src/app.tsx", "modified", 20, 3, 23, "@@ -1 +1 @@\n-old\n+new"),
        ChangedFile("src/theme.ts", "added", 40, 0, 40, "@@ +1,40 @@\n+export const dark = {}"),
    ]


def make_generate_response(test_count: int = 2, setup_instructions: Optional[str] = "1. npm install\n2. npm run dev") -> GenerateResponse:
    return GenerateResponse(
        codebase_summary="A React web app with a settings page.",
        pr_changes="Adds a dark mode toggle to the header.",
        tests=[
            GeneratedTest(
                name=f"Toggle scenario {i}",
                description=f"Checks theme behaviour {i}",
                prerequisites=["App is running"],
                steps=["Open the app", "Click the theme toggle"],
                expected_result="The page switches theme",
                priority="High" if i == 1 else "low",
            )
            for i in range(1, test_count + 1)
        ],
        setup_instructions=setup_instructions,
    )


def make_plan(test_count: int = 2, setup_config=None, setup_config_content=None) -> TestPlan:
    return TestPlan(
        response=make_generate_response(test_count),
        setup_config=setup_config,
        setup_config_content=setup_config_content,
    )
