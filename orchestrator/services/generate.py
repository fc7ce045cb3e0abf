"""
Generate phase: turn a PR into a UI test plan.

    changed files ─┐
    file tree ─────┼─▶ important files ─▶ per-file summaries ─┐
    README ────────┤                                           ├─▶ test plan
    setup config ──┘───────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional

import structlog

from completion_gateway.gateway import CompletionGateway
from git_integration.providers.base import ChangedFile, CodeHost, PullRequest
from orchestrator.models.responses import (
    FileAnalysisResponse,
    GenerateResponse,
    SetupConfig,
    parse_model_json,
    parse_setup_config,
)
from orchestrator.services import prompts
from orchestrator.services.config import Settings

logger = structlog.get_logger()

README_CANDIDATES = ("README.md", "readme.md", "README.rst", "README")
MAX_PATCH_CHARS = 3000


@dataclass
class TestPlan:
    """Everything the generate phase produces."""

    response: GenerateResponse
    changed_files: list[ChangedFile] = field(default_factory=list)
    setup_config: Optional[SetupConfig] = None
    setup_config_content: Optional[str] = None


def format_file_changes(files: list[ChangedFile]) -> str:
    chunks = []
    for f in files:
        header = f"{f.filename} ({f.status}, +{f.additions} -{f.deletions})"
        if f.patch:
            patch = f.patch if len(f.patch) <= MAX_PATCH_CHARS else f.patch[:MAX_PATCH_CHARS] + "\n..."
            chunks.append(f"{header}\n{patch}")
        else:
            chunks.append(header)
    return "\n\n".join(chunks)


class TestPlanGenerator:
    """Asks the completion gateway for a test plan grounded in the repository."""

    def __init__(self, code_host: CodeHost, gateway: CompletionGateway, settings: Settings):
        self.code_host = code_host
        self.gateway = gateway
        self.settings = settings

    async def _complete(self, system_prompt: str, prompt: str) -> str:
        return await self.gateway.complete(
            self.settings.generate_provider, self.settings.generate_model, system_prompt, prompt
        )

    async def generate(self, repo: str, pr: PullRequest) -> TestPlan:
        changed_files = await self.code_host.list_pr_files(repo, pr.number)
        file_tree = await self.code_host.get_tree(repo, pr.head_sha, self.settings.tree_max_depth)
        await logger.ainfo(
            "Collected PR context", repo=repo, pr_number=pr.number, changed_files=len(changed_files)
        )

        important = await self.find_important_files(file_tree)
        summaries = await asyncio.gather(*(self.summarize_file(repo, path, pr.head_sha) for path in important))
        codebase_context = "\n".join(s for s in summaries if s)

        readme = await self.read_readme(repo, pr.head_sha)
        setup_config_content = await self.code_host.get_file_content(
            repo, self.settings.setup_config_path, pr.head_sha
        )
        setup_config = parse_setup_config(setup_config_content) if setup_config_content else None

        prompt = prompts.generate_tests_user_prompt(
            pr_title=pr.title,
            pr_description=pr.body,
            readme=readme,
            codebase_context=codebase_context,
            file_tree=file_tree,
            file_changes=format_file_changes(changed_files),
            setup_config=setup_config.model_dump(mode="json", exclude_none=True) if setup_config else None,
        )
        response = parse_model_json(
            await self._complete(prompts.GENERATE_TESTS_SYSTEM_PROMPT, prompt), GenerateResponse
        )
        await logger.ainfo(
            "Test plan generated",
            repo=repo,
            pr_number=pr.number,
            tests=len(response.tests),
            declarative_setup=setup_config is not None,
        )
        return TestPlan(
            response=response,
            changed_files=changed_files,
            setup_config=setup_config,
            setup_config_content=setup_config_content,
        )

    async def find_important_files(self, file_tree: str) -> list[str]:
        reply = await self._complete(
            prompts.ANALYZE_FILES_SYSTEM_PROMPT.format(max_files=self.settings.max_important_files),
            prompts.ANALYZE_FILES_USER_PROMPT.format(file_tree=file_tree),
        )
        analysis = parse_model_json(reply, FileAnalysisResponse)
        return [f.path.lstrip("/") for f in analysis.files[: self.settings.max_important_files]]

    async def summarize_file(self, repo: str, path: str, ref: str) -> Optional[str]:
        try:
            content = await self.code_host.get_file_content(repo, path, ref)
        except Exception as e:
            await logger.awarning("Could not read file for summary", path=path, error=str(e))
            return None
        if content is None:
            await logger.awarning("File listed as important does not exist", path=path)
            return None

        content = content[: self.settings.file_content_limit]
        summary = await self._complete(
            prompts.SUMMARIZE_FILE_SYSTEM_PROMPT,
            prompts.SUMMARIZE_FILE_USER_PROMPT.format(path=path, content=content),
        )
        return f"{path}: {summary.strip()}"

    async def read_readme(self, repo: str, ref: str) -> Optional[str]:
        for name in README_CANDIDATES:
            try:
                content = await self.code_host.get_file_content(repo, name, ref)
            except Exception as e:
                await logger.awarning("Could not read README", path=name, error=str(e))
                return None
            if content is not None:
                return content[: self.settings.file_content_limit]
        return None
