"""Tests for test plan generation."""

from __future__ import annotations

import pytest

from conftest import FakeCodeHost, FakeGateway, make_generate_response
from git_integration.providers.base import ChangedFile
from orchestrator.models.responses import SetupStepType
from orchestrator.services import prompts
from orchestrator.services.errors import ValidationError
from orchestrator.services.generate import MAX_PATCH_CHARS, TestPlanGenerator, format_file_changes

ANALYSIS = {"files": [{"path": "/src/app.tsx", "reason": "entry"}, {"path": "src/missing.ts", "reason": "?"}]}


def _plan_reply(**kwargs) -> dict:
    return make_generate_response(**kwargs).model_dump(mode="json")


class TestGenerate:
    @pytest.mark.asyncio
    async def test_call_order_and_prompt_context(self, settings, pull_request, changed_files):
        host = FakeCodeHost(
            files=changed_files,
            contents={"src/app.tsx": "export const App = () => null", "README.md": "# Webapp\nnpm run dev"},
        )
        gateway = FakeGateway([ANALYSIS, "Root component.", _plan_reply(test_count=3)])

        plan = await TestPlanGenerator(host, gateway, settings).generate("acme/webapp", pull_request)

        assert len(plan.response.tests) == 3
        assert plan.setup_config is None
        assert plan.changed_files == changed_files

        analyze, summarize, generate = gateway.calls
        assert "src/\n  app.tsx" in analyze["prompt"]
        assert "export const App" in summarize["prompt"]
        assert generate["system_prompt"] == prompts.GENERATE_TESTS_SYSTEM_PROMPT
        assert "src/app.tsx: Root component." in generate["prompt"]
        assert "# Webapp" in generate["prompt"]
        assert "Add dark mode toggle" in generate["prompt"]
        assert "+export const dark = {}" in generate["prompt"]
        assert "must also generate setup_instructions" in generate["prompt"]
        assert all(c["provider"] == "google-ai-studio" for c in gateway.calls)

    @pytest.mark.asyncio
    async def test_setup_config_read_at_head_commit(self, settings, pull_request):
        config_yaml = "steps:\n  - type: bash\n    command: npm ci\n"
        host = FakeCodeHost(contents={".prpilot.yaml": config_yaml})
        gateway = FakeGateway([{"files": []}, _plan_reply(setup_instructions=None)])

        plan = await TestPlanGenerator(host, gateway, settings).generate("acme/webapp", pull_request)

        assert plan.setup_config.steps[0].type == SetupStepType.BASH
        assert plan.setup_config_content == config_yaml
        assert "already handles these setup steps" in gateway.calls[-1]["prompt"]
        assert "command: npm ci" in gateway.calls[-1]["prompt"]

    @pytest.mark.asyncio
    async def test_malformed_setup_config_fails(self, settings, pull_request):
        host = FakeCodeHost(contents={".prpilot.yaml": "steps:\n  - type: bash\n"})
        gateway = FakeGateway([{"files": []}, _plan_reply()])

        with pytest.raises(ValidationError, match="Setup config is malformed"):
            await TestPlanGenerator(host, gateway, settings).generate("acme/webapp", pull_request)

    @pytest.mark.asyncio
    async def test_unparseable_plan_fails(self, settings, pull_request):
        gateway = FakeGateway([{"files": []}, "Here are some great tests!"])

        with pytest.raises(ValidationError, match="GenerateResponse"):
            await TestPlanGenerator(FakeCodeHost(), gateway, settings).generate("acme/webapp", pull_request)

    @pytest.mark.asyncio
    async def test_important_files_capped(self, settings):
        settings.max_important_files = 2
        gateway = FakeGateway([{"files": [{"path": f"f{i}.ts"} for i in range(5)]}])

        files = await TestPlanGenerator(FakeCodeHost(), gateway, settings).find_important_files("tree")

        assert files == ["f0.ts", "f1.ts"]
        assert "at most 2" in gateway.calls[0]["system_prompt"]


class TestFileChanges:
    def test_long_patches_truncated(self):
        big = ChangedFile("src/big.ts", "modified", 500, 0, 500, "+" * (MAX_PATCH_CHARS + 50))
        text = format_file_changes([big, ChangedFile("logo.png", "added", 0, 0, 0)])

        assert text.startswith("src/big.ts (modified, +500 -0)")
        assert text.count("+" * 10) > 0
        assert "\n...\n\nlogo.png (added, +0 -0)" in text
