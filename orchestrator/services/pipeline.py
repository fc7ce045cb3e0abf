"""
Review Pipeline — the state machine that turns a PR commit into a UI test run.

    webhook
       │
       ▼
    ┌──────────┐     ┌──────────────────────────┐     ┌─────────────┐
    │ GENERATE │────▶│ SETUP                    │────▶│ EXECUTE     │
    │ test plan│     │ provision → clone → env  │     │ test 1..N   │
    └──────────┘     │ → config steps | agent   │     │ (same VM)   │
                     └──────────────────────────┘     └─────────────┘
                                  │                          │
                                  └────── VM stop() ◀────────┘  (always, once)

Every phase transition and every recorded step is persisted and rendered
into the PR status comment before work continues. A failed phase ends the
review; later phases stay pending.
"""

from __future__ import annotations

import asyncio
import json
import shlex
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

import structlog

from agent_runner.runner import AgentRunner
from completion_gateway.gateway import CompletionGateway
from git_integration.providers.base import CodeHost, PullRequest
from orchestrator.models.responses import (
    SetupConfig,
    SetupOutcome,
    SetupStepType,
    TestOutcome,
    parse_setup_config,
)
from orchestrator.models.review import (
    PhaseStatus,
    RepoRef,
    Review,
    ReviewStatus,
    TestCase,
    TestResult,
    TimestampedStep,
    ToolCall,
)
from orchestrator.services import prompts
from orchestrator.services.comments import render_review
from orchestrator.services.config import Settings
from orchestrator.services.errors import PhaseError, StoreError
from orchestrator.services.generate import TestPlanGenerator
from orchestrator.services.progress import ProgressReporter
from vm_provisioner.provisioner import VMHandle, VMProvisioner

logger = structlog.get_logger()

NO_SETUP_INSTRUCTIONS = (
    "No setup instructions were generated. Inspect the repository (README, package "
    "manifests, scripts), install what it needs, start the app and open it in Chromium."
)


class ReviewStore:
    """File-backed review persistence.

    Writes every review to one JSON file so progress survives restarts and
    incomplete reviews can be resumed.
    """

    def __init__(self, path: str = "/tmp/prpilot-reviews.json"):
        self._path = Path(path)
        self._reviews: dict[str, Review] = {}
        self._load()

    def _load(self) -> None:
        if self._path.exists():
            try:
                data = json.loads(self._path.read_text())
                for item in data:
                    review = Review(**item)
                    self._reviews[review.id] = review
                logger.info("Loaded reviews from disk", count=len(self._reviews))
            except Exception as e:
                logger.warning("Failed to load review store", error=str(e))

    def save(self, review: Review) -> None:
        self._reviews[review.id] = review
        self._flush()

    def get(self, review_id: str) -> Optional[Review]:
        return self._reviews.get(review_id)

    def find(self, repo_id: int, pr_number: int, commit_sha: str) -> Optional[Review]:
        """Most recent review for this exact commit, if any."""
        matches = [
            r
            for r in self._reviews.values()
            if r.repo_id == repo_id and r.pr_number == pr_number and r.commit_sha == commit_sha
        ]
        return max(matches, key=lambda r: r.started_at) if matches else None

    def incomplete(self) -> list[Review]:
        return [r for r in self._reviews.values() if not r.is_terminal]

    def all_reviews(self) -> dict[str, Review]:
        return self._reviews

    def _flush(self) -> None:
        """Write all reviews to disk. Raises ``StoreError`` if the write fails."""
        try:
            data = [r.model_dump(mode="json") for r in self._reviews.values()]
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp.write_text(json.dumps(data, default=str))
            tmp.replace(self._path)
        except OSError as e:
            logger.warning("Failed to flush review store", path=str(self._path), error=str(e))
            raise StoreError(f"Failed to persist review state: {e}") from e


@dataclass
class ReviewRun:
    """Mutable state of one in-flight review."""

    review: Review
    repo: RepoRef
    pr: PullRequest
    reporter: ProgressReporter
    handle: Optional[VMHandle] = None
    setup_config: Optional[SetupConfig] = None
    running_test: Optional[tuple[int, TestCase, list[TimestampedStep]]] = None
    variable_names: list[str] = field(default_factory=list)


class ReviewPipeline:
    """
    Runs reviews end-to-end.

    Responsible for:
    1. Generating a test plan from the PR
    2. Provisioning a VM and preparing the app on it
    3. Running every test on that VM, in order
    4. Keeping the stored review and the PR comment current
    5. Tearing the VM down on every exit path
    """

    def __init__(
        self,
        code_host: CodeHost,
        gateway: CompletionGateway,
        provisioner: VMProvisioner,
        agent_runner: AgentRunner,
        store: ReviewStore,
        settings: Settings,
        generator: Optional[TestPlanGenerator] = None,
    ):
        self.code_host = code_host
        self.gateway = gateway
        self.provisioner = provisioner
        self.agent_runner = agent_runner
        self.store = store
        self.settings = settings
        self.generator = generator or TestPlanGenerator(code_host, gateway, settings)
        self._active: set[tuple[int, int, str]] = set()

    # ── Entry points ──────────────────────────────────────────────

    async def run_review(self, repo: RepoRef, pr: PullRequest, force: bool = False) -> Review:
        """Run (or resume) the review for ``pr``'s head commit and return its final state."""
        key = (repo.id, pr.number, pr.head_sha)
        existing = self.store.find(*key)

        if key in self._active and existing is not None:
            await logger.ainfo("Review already running", review_id=existing.id, pr_number=pr.number)
            return existing
        if existing is not None and existing.status == ReviewStatus.COMPLETE:
            await logger.ainfo("Review already complete", review_id=existing.id, pr_number=pr.number)
            return existing
        if existing is not None and existing.status == ReviewStatus.FAILED and not force:
            await logger.ainfo("Review previously failed; not retrying", review_id=existing.id)
            return existing

        resuming = existing is not None and not existing.is_terminal
        if resuming:
            review = existing
            self._prepare_resume(review)
        else:
            review = Review(
                repo_id=repo.id,
                repo_full_name=repo.full_name,
                pr_number=pr.number,
                commit_sha=pr.head_sha,
                head_ref=pr.head_ref,
            )
        # Registered before the first await so duplicate webhooks see it
        self._active.add(key)

        try:
            self.store.save(review)
            await logger.ainfo(
                "Resuming review" if resuming else "Starting review",
                review_id=review.id,
                repo=repo.full_name,
                pr_number=pr.number,
            )
            return await self._run(ReviewRun(
                review=review,
                repo=repo,
                pr=pr,
                reporter=ProgressReporter(self.code_host, repo.full_name, pr.number, review.comment_id),
            ))
        finally:
            self._active.discard(key)

    async def resume_incomplete(self) -> list[Review]:
        """Resume every stored review that never reached a terminal state."""
        pending = self.store.incomplete()
        if not pending:
            return []
        await logger.ainfo("Resuming incomplete reviews", count=len(pending))

        async def _resume(review: Review) -> Review:
            pr = await self.code_host.get_pull_request(review.repo_full_name, review.pr_number)
            # Test the commit the review was created for, even if the PR has moved on
            pr = replace(pr, head_sha=review.commit_sha, head_ref=review.head_ref or pr.head_ref)
            return await self.run_review(RepoRef(id=review.repo_id, full_name=review.repo_full_name), pr)

        results = await asyncio.gather(*(_resume(r) for r in pending), return_exceptions=True)
        resumed = []
        for review, outcome in zip(pending, results):
            if isinstance(outcome, BaseException):
                await logger.aerror("Failed to resume review", review_id=review.id, error=str(outcome))
            else:
                resumed.append(outcome)
        return resumed

    # ── Orchestration ─────────────────────────────────────────────

    def _prepare_resume(self, review: Review) -> None:
        # Setup and execute share one VM lifetime, so both start over
        if review.generate.status != PhaseStatus.COMPLETE:
            review.generate.reset()
        review.setup.reset()
        review.execute.reset()
        review.status = ReviewStatus.PENDING
        review.instance_id = None
        review.stream_url = None
        review.warnings = []
        review.passed_tests = 0 if review.total_tests is not None else None

    async def _run(self, run: ReviewRun) -> Review:
        review = run.review
        try:
            review.comment_id = await run.reporter.start(render_review(review))
            self.store.save(review)

            await self._generate_phase(run)
            await self._setup_phase(run)
            await self._execute_phase(run)

        except PhaseError as e:
            await logger.aerror("Review phase failed", review_id=review.id, phase=e.phase, error=e.message)
        except asyncio.CancelledError:
            self._fail_running_phase(review, "Review cancelled")
            await logger.awarning("Review cancelled", review_id=review.id)
            raise
        except Exception as e:
            self._fail_running_phase(review, str(e))
            await logger.aerror("Review pipeline error", review_id=review.id, error=str(e))
        finally:
            if run.handle is not None:
                try:
                    await run.handle.stop()
                except Exception as e:
                    await logger.awarning("VM stop failed", review_id=review.id, error=str(e))
            run.running_test = None
            review.sync_status()
            try:
                self.store.save(review)
            except StoreError as e:
                await logger.aerror("Final review state not persisted", review_id=review.id, error=str(e))
            await run.reporter.update(render_review(review))

        await logger.ainfo(
            "Review finished",
            review_id=review.id,
            status=review.status.value,
            passed=review.passed_tests,
            total=review.total_tests,
        )
        return review

    @staticmethod
    def _fail_running_phase(review: Review, error: str) -> None:
        """Record ``error`` on the running phase, or on the next one if between phases."""
        phases = list(review.phases.values())
        for phase in phases:
            if phase.status == PhaseStatus.IN_PROGRESS:
                phase.fail(error)
                return
        if any(p.status == PhaseStatus.FAILED for p in phases):
            return
        for phase in phases:
            if phase.status == PhaseStatus.PENDING:
                phase.fail(error)
                return

    async def _checkpoint(self, run: ReviewRun) -> None:
        """Persist the review, then refresh the status comment."""
        run.review.sync_status()
        self.store.save(run.review)
        await run.reporter.update(render_review(run.review, run.running_test))

    @asynccontextmanager
    async def _phase(self, run: ReviewRun, name: str):
        phase = run.review.phases[name]
        phase.start()
        await self._checkpoint(run)
        await logger.ainfo("Phase started", review_id=run.review.id, phase=name)
        try:
            yield phase
        except PhaseError as e:
            phase.fail(e.message)
            await self._checkpoint(run)
            raise
        except Exception as e:
            phase.fail(str(e))
            await self._checkpoint(run)
            raise PhaseError(name, str(e)) from e
        else:
            phase.complete()
            await self._checkpoint(run)
            await logger.ainfo("Phase complete", review_id=run.review.id, phase=name)

    # ── Generate ──────────────────────────────────────────────────

    async def _generate_phase(self, run: ReviewRun) -> None:
        review = run.review
        generate = review.generate
        if generate.status == PhaseStatus.COMPLETE:
            # Resumed review: reuse the plan
            if generate.setup_config_content:
                run.setup_config = parse_setup_config(generate.setup_config_content)
            return

        async with self._phase(run, "generate"):
            plan = await self.generator.generate(run.repo.full_name, run.pr)
            generate.codebase_summary = plan.response.codebase_summary
            generate.pr_changes_summary = plan.response.pr_changes
            generate.generated_tests = [t.to_test_case() for t in plan.response.tests]
            generate.auto_setup_instructions = plan.response.setup_instructions
            generate.setup_config_content = plan.setup_config_content
            run.setup_config = plan.setup_config
            review.total_tests = len(generate.generated_tests)
            review.passed_tests = 0

    # ── Setup ─────────────────────────────────────────────────────

    async def _setup_phase(self, run: ReviewRun) -> None:
        review = run.review
        async with self._phase(run, "setup"):
            run.handle = await self.provisioner.provision(review.id)
            review.instance_id = run.handle.id
            review.stream_url = run.handle.stream_url
            await self._checkpoint(run)

            await self._clone(run)
            await self._load_variables(run)

            if run.setup_config is not None:
                await self._declarative_setup(run, run.setup_config)
            else:
                await self._auto_setup(run)

    async def _record_setup_step(self, run: ReviewRun, step: TimestampedStep) -> None:
        run.review.setup.append_step(step)
        await self._checkpoint(run)

    async def _clone(self, run: ReviewRun) -> None:
        repo_path = self.settings.vm_repo_path
        url = self.code_host.clone_url(run.pr.head_repo)
        auth = self.code_host.clone_auth_header()
        auth_arg = f"-c http.extraHeader={shlex.quote(auth)} " if auth else ""
        command = (
            f"rm -rf {repo_path} && mkdir -p {repo_path} && cd {repo_path} && git init -q && "
            f"git remote add origin {url} && "
            f"git {auth_arg}fetch -q --depth 1 origin {run.pr.head_sha} && "
            f"git checkout -q FETCH_HEAD"
        )
        result = await run.handle.bash(command)
        await self._record_setup_step(
            run,
            TimestampedStep(
                text=f"Cloned {run.pr.head_repo}@{run.pr.head_sha[:7]} into {repo_path}",
                tool_calls=[ToolCall(name="bash", args=f"git fetch {url} {run.pr.head_sha}")],
                action="clone",
            ),
        )
        if not result.ok:
            raise PhaseError("setup", f"Failed to clone repository: {result.stderr.strip()[-1000:]}")

    async def _load_variables(self, run: ReviewRun) -> None:
        try:
            variables = await self.code_host.list_variables(run.repo.full_name)
        except Exception as e:
            run.review.warnings.append(f"Error fetching repository variables, continuing setup: {e}")
            await logger.awarning("Failed to fetch repository variables", review_id=run.review.id, error=str(e))
            await self._checkpoint(run)
            return

        env = {v.name: v.value for v in variables}
        run.variable_names = sorted(env)
        if env:
            try:
                await run.handle.set_env(env)
            except OSError as e:
                raise PhaseError("setup", f"Failed to export repository variables: {e}") from e
            await self._record_setup_step(
                run,
                TimestampedStep(
                    text=f"Exported {len(env)} repository variables: {', '.join(run.variable_names)}",
                    action="set_env",
                ),
            )

    async def _declarative_setup(self, run: ReviewRun, config: SetupConfig) -> None:
        repo_path = self.settings.vm_repo_path
        for number, step in enumerate(config.steps, 1):
            if step.type == SetupStepType.BASH:
                result = await run.handle.bash(f"cd {repo_path} && {step.command}")
                await self._record_setup_step(
                    run,
                    TimestampedStep(
                        text=f"Setup step {number}: {step.command}",
                        tool_calls=[ToolCall(name="bash", args=step.command)],
                        action="bash",
                    ),
                )
                if not result.ok:
                    output = (result.stderr.strip() or result.stdout.strip())[-1000:]
                    raise PhaseError(
                        "setup",
                        f"Setup step {number} exited with code {result.exit_code}: {step.command}\n{output}",
                    )

            elif step.type == SetupStepType.CREATE_ENV:
                await run.handle.write_file(f"{repo_path}/.env", step.text)
                await self._record_setup_step(
                    run,
                    TimestampedStep(text=f"Setup step {number}: wrote {repo_path}/.env", action="create-env"),
                )

            elif step.type == SetupStepType.INSTRUCTION:
                result = await self.agent_runner.run(
                    prompts.instruction_setup_system_prompt(run.review.generate.codebase_summary or ""),
                    prompts.instruction_setup_user_prompt(step.text, repo_path),
                    run.handle,
                    on_step=lambda s: self._record_setup_step(run, s),
                    outcome_schema=SetupOutcome,
                )
                if not result.success:
                    raise PhaseError("setup", f"Setup step {number} failed: {result.error}")

            elif step.type == SetupStepType.WAIT:
                await self._record_setup_step(
                    run,
                    TimestampedStep(text=f"Setup step {number}: waiting {step.seconds:g}s", action="wait"),
                )
                await asyncio.sleep(step.seconds)

    async def _auto_setup(self, run: ReviewRun) -> None:
        generate = run.review.generate
        result = await self.agent_runner.run(
            prompts.auto_setup_system_prompt(generate.codebase_summary or ""),
            prompts.auto_setup_user_prompt(
                generate.auto_setup_instructions or NO_SETUP_INSTRUCTIONS,
                run.variable_names,
                self.settings.vm_repo_path,
            ),
            run.handle,
            on_step=lambda s: self._record_setup_step(run, s),
            outcome_schema=SetupOutcome,
        )
        if not result.success:
            raise PhaseError("setup", result.error or "Setup failed")

    # ── Execute ───────────────────────────────────────────────────

    async def _execute_phase(self, run: ReviewRun) -> None:
        review = run.review
        async with self._phase(run, "execute"):
            tests = review.generate.generated_tests
            review.total_tests = len(tests)
            review.passed_tests = 0
            system_prompt = prompts.execute_test_system_prompt(review.generate.codebase_summary or "")

            for number, test in enumerate(tests, 1):
                result = await self._run_test(run, number, test, system_prompt)
                run.running_test = None
                review.record_test_result(result)
                await self._checkpoint(run)
                await logger.ainfo(
                    "Test finished",
                    review_id=review.id,
                    test_number=number,
                    success=result.success,
                )

    async def _run_test(self, run: ReviewRun, number: int, test: TestCase, system_prompt: str) -> TestResult:
        live_steps: list[TimestampedStep] = []
        run.running_test = (number, test, live_steps)
        await self._checkpoint(run)

        async def on_step(step: TimestampedStep) -> None:
            live_steps.append(step)
            await self._checkpoint(run)

        try:
            outcome = await self.agent_runner.run(
                system_prompt,
                prompts.execute_test_user_prompt(test),
                run.handle,
                on_step=on_step,
                outcome_schema=TestOutcome,
            )
        except Exception as e:
            await logger.aerror("Test run raised", review_id=run.review.id, test_number=number, error=str(e))
            return TestResult(
                test_number=number,
                test_name=test.name,
                success=False,
                error=str(e),
                steps=list(live_steps),
            )

        return TestResult(
            test_number=number,
            test_name=test.name,
            success=outcome.success,
            error=outcome.error or None,
            notes=outcome.notes,
            steps=outcome.steps,
        )
