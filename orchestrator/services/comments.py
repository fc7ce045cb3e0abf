"""
Markdown rendering of the PR status comment.

The comment is always rendered from the whole ``Review``, never patched
incrementally, so editing it with the latest render is idempotent.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

from orchestrator.models.review import (
    EDITOR_TOOL_NAME,
    REDACTED,
    PhaseStatus,
    Review,
    TestCase,
    TestPriority,
    TestResult,
    TimestampedStep,
    ToolCall,
)

MAX_ERROR_CHARS = 1500
MAX_ARGS_CHARS = 300

_LEADING_MARKER_RE = re.compile(r"^\s*(?:[-*•]\s+)?(?:\d+[.)]\s+)?")

_PHASE_ICONS = {
    PhaseStatus.PENDING: "⏳",
    PhaseStatus.IN_PROGRESS: "🔄",
    PhaseStatus.COMPLETE: "✅",
    PhaseStatus.FAILED: "❌",
}

_PRIORITY_ICONS = {
    TestPriority.HIGH: "🔴",
    TestPriority.MEDIUM: "🟡",
    TestPriority.LOW: "🟢",
}


def _fence_safe(text: str) -> str:
    return text.replace("```", "'''")


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "…"


def format_tool_call(call: ToolCall) -> str:
    if call.name == EDITOR_TOOL_NAME:
        args: Any = REDACTED
    elif isinstance(call.args, str):
        args = call.args
    else:
        args = json.dumps(call.args, default=str, ensure_ascii=False)
    return f"{call.name}: {_truncate(str(args), MAX_ARGS_CHARS)}"


def format_step_text(text: Optional[str]) -> str:
    if not text or not text.strip():
        return ""
    return _LEADING_MARKER_RE.sub("", text.strip(), count=1)


def format_steps(steps: list[TimestampedStep]) -> str:
    """Render each non-empty step as its own code block."""
    blocks = []
    for step in steps:
        lines = []
        text = format_step_text(step.text)
        if text:
            lines.append(text)
        lines.extend(format_tool_call(c) for c in step.tool_calls)
        if lines:
            blocks.append("```\n" + _fence_safe("\n".join(lines)) + "\n```")
    return "\n".join(blocks)


def _details(summary: str, steps: list[TimestampedStep]) -> str:
    body = format_steps(steps)
    if not body:
        return ""
    return f"<details>\n<summary>{summary}</summary>\n\n{body}\n</details>"


def error_block(error: Optional[str]) -> str:
    return f"```\n{_fence_safe(_truncate(error or 'unknown error', MAX_ERROR_CHARS))}\n```"


def render_phase_table(review: Review) -> str:
    rows = ["| Phase | Status |", "|---|---|"]
    for name, phase in review.phases.items():
        rows.append(f"| {name.capitalize()} | {_PHASE_ICONS[phase.status]} {phase.status.value} |")
    return "\n".join(rows)


def render_test_plan(tests: list[TestCase]) -> str:
    lines = ["### 📋 Test plan", ""]
    for i, test in enumerate(tests, 1):
        lines.append(f"{i}. {_PRIORITY_ICONS[test.priority]} **{test.name}**: {test.description}")
    return "\n".join(lines)


def render_setup(review: Review) -> str:
    setup = review.setup
    if setup.status == PhaseStatus.PENDING:
        return ""
    if setup.status == PhaseStatus.IN_PROGRESS:
        header = "🔧 Setting up test environment..."
    elif setup.status == PhaseStatus.COMPLETE:
        header = "✅ Setup complete!"
    else:
        header = f"❌ Error setting up test environment:\n\n{error_block(setup.error)}"
    details = _details("Agent Steps", setup.steps)
    return "\n\n".join(part for part in ("### 🔧 Environment setup", header, details) if part)


def render_test_result(result: TestResult) -> str:
    status = "✅ Passed" if result.success else "❌ Failed"
    lines = [f"{status}: Test {result.test_number}: {result.test_name}"]
    if result.error:
        lines.append(f"Error: {_truncate(result.error, MAX_ERROR_CHARS)}")
    if result.notes:
        lines.append(result.notes)
    details = _details("Agent Steps", result.steps)
    return "\n".join(lines) + (f"\n\n{details}" if details else "")


def render_running_test(test_number: int, test: TestCase, steps: list[TimestampedStep]) -> str:
    header = f"🧪 Running test {test_number}: {test.name}..."
    details = _details("Agent Steps", steps)
    return header + (f"\n\n{details}" if details else "")


def render_summary(passed: int, total: int) -> str:
    status = (
        "🎉 All tests passed!"
        if passed == total
        else "⚠️ Some tests failed. Please check the individual test results above for details."
    )
    return f"## 📊 Test results\n\n{passed}/{total} tests passed\n{status}"


def render_review(
    review: Review,
    running_test: Optional[tuple[int, TestCase, list[TimestampedStep]]] = None,
) -> str:
    """Render the complete status comment for ``review``."""
    sections = [
        f"## 🧪 prpilot UI tests\n\nPR #{review.pr_number} at commit `{review.commit_sha[:7]}`",
        render_phase_table(review),
    ]

    if review.generate.status == PhaseStatus.IN_PROGRESS:
        sections.append("🔍 Analyzing the pull request and generating tests...")

    if review.stream_url:
        sections.append(f'🚀 Test VM started: <a href="{review.stream_url}">Interactive stream</a>')

    for warning in review.warnings:
        sections.append(f"⚠️ {warning}")

    generate = review.generate
    if generate.status == PhaseStatus.COMPLETE:
        setup_source = (
            "from the repository's setup config"
            if generate.setup_config_content
            else "generated by the agent"
        )
        sections.append(
            f"<details>\n<summary>Codebase and PR summary</summary>\n\n"
            f"**Codebase:** {generate.codebase_summary or '-'}\n\n"
            f"**Changes:** {generate.pr_changes_summary or '-'}\n\n"
            f"**Setup:** {setup_source}\n</details>"
        )

    tests = generate.generated_tests
    if tests:
        sections.append(render_test_plan(tests))

    setup = render_setup(review)
    if setup:
        sections.append(setup)

    results = [render_test_result(r) for r in review.execute.test_results]
    if running_test is not None:
        results.append(render_running_test(*running_test))
    if results:
        sections.append("### 🧪 Tests\n\n" + "\n\n".join(results))

    if review.execute.status == PhaseStatus.COMPLETE and review.total_tests is not None:
        sections.append(render_summary(review.passed_tests or 0, review.total_tests))

    # Setup errors are already shown in their own section
    if review.generate.status == PhaseStatus.FAILED:
        sections.append(f"❌ Something went wrong while generating tests:\n{error_block(review.generate.error)}")
    elif review.execute.status == PhaseStatus.FAILED:
        sections.append(f"❌ Something went wrong while running tests:\n{error_block(review.execute.error)}")

    return "\n\n".join(sections)
