"""Tests for the review model and the parsers for untrusted input."""

from __future__ import annotations

import pytest

from orchestrator.models.responses import (
    FileAnalysisResponse,
    GenerateResponse,
    SetupOutcome,
    SetupStepType,
    TestOutcome,
    parse_model_json,
    parse_setup_config,
    strip_code_fence,
)
from orchestrator.models.review import (
    REDACTED,
    PhaseStatus,
    Review,
    ReviewStatus,
    TestPriority,
    TestResult,
    TimestampedStep,
    ToolCall,
)
from orchestrator.services.errors import ValidationError


def _review() -> Review:
    return Review(repo_id=1, repo_full_name="acme/webapp", pr_number=3, commit_sha="deadbeef")


class TestReviewStatus:
    def test_new_review_is_pending(self):
        review = _review()
        assert review.sync_status() == ReviewStatus.PENDING
        assert all(p.status == PhaseStatus.PENDING for p in review.phases.values())

    def test_started_phase_means_in_progress(self):
        review = _review()
        review.generate.start()
        assert review.sync_status() == ReviewStatus.IN_PROGRESS

    def test_complete_only_when_every_phase_complete(self):
        review = _review()
        for phase in review.phases.values():
            phase.start()
            phase.complete()
            if phase is not review.execute:
                assert review.sync_status() == ReviewStatus.IN_PROGRESS
        assert review.sync_status() == ReviewStatus.COMPLETE
        assert review.completed_at is not None

    def test_any_failed_phase_fails_review(self):
        review = _review()
        review.generate.start()
        review.generate.complete()
        review.setup.start()
        review.setup.fail("boom")
        assert review.sync_status() == ReviewStatus.FAILED
        assert review.error == "boom"
        assert review.execute.status == PhaseStatus.PENDING

    def test_terminal_status_never_regresses(self):
        review = _review()
        review.generate.start()
        review.generate.fail("nope")
        review.sync_status()
        review.generate.reset()
        assert review.sync_status() == ReviewStatus.FAILED


class TestPhaseTransitions:
    def test_cannot_start_twice(self):
        review = _review()
        review.setup.start()
        with pytest.raises(ValueError):
            review.setup.start()

    def test_cannot_complete_pending_phase(self):
        with pytest.raises(ValueError):
            _review().execute.complete()

    def test_cannot_fail_terminal_phase(self):
        review = _review()
        review.setup.start()
        review.setup.complete()
        with pytest.raises(ValueError):
            review.setup.fail("late")

    def test_pending_phase_can_fail(self):
        review = _review()
        review.execute.fail("never started")
        assert review.execute.status == PhaseStatus.FAILED

    def test_reset_clears_steps_and_results(self):
        review = _review()
        review.setup.start()
        review.setup.append_step(TimestampedStep(text="npm ci"))
        review.execute.start()
        review.record_test_result(TestResult(test_number=1, test_name="a", success=True))

        review.setup.reset()
        review.execute.reset()

        assert review.setup.steps == []
        assert review.execute.test_results == []
        assert review.setup.started_at is None


class TestStepsAndResults:
    def test_editor_args_are_redacted(self):
        call = ToolCall(name="str_replace_editor", args={"command": "create", "file_text": "TOKEN=abc"})
        assert call.args == REDACTED

    def test_other_tools_keep_args(self):
        call = ToolCall(name="bash", args={"command": "npm test"})
        assert call.args == {"command": "npm test"}

    def test_redaction_survives_round_trip(self):
        step = TimestampedStep(text="edit", tool_calls=[ToolCall(name="str_replace_editor", args="x")])
        restored = TimestampedStep.model_validate(step.model_dump(mode="json"))
        assert restored.tool_calls[0].args == REDACTED

    def test_empty_step(self):
        assert TimestampedStep(text="  ").is_empty
        assert not TimestampedStep(text="Clicked").is_empty
        assert not TimestampedStep(tool_calls=[ToolCall(name="bash")]).is_empty

    def test_passed_tests_counts_successes(self):
        review = _review()
        review.record_test_result(TestResult(test_number=1, test_name="a", success=True))
        review.record_test_result(TestResult(test_number=2, test_name="b", success=False, error="x"))
        review.record_test_result(TestResult(test_number=3, test_name="c", success=True))
        assert review.passed_tests == 2
        assert [r.test_number for r in review.execute.test_results] == [1, 2, 3]


class TestModelJson:
    def test_strips_json_fence(self):
        assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_strips_bare_fence(self):
        assert strip_code_fence('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_text_untouched(self):
        assert strip_code_fence('  {"a": 1} ') == '{"a": 1}'

    def test_parses_fenced_response(self):
        reply = '```json\n{"files": [{"path": "src/app.tsx", "reason": "entry"}]}\n```'
        parsed = parse_model_json(reply, FileAnalysisResponse)
        assert parsed.files[0].path == "src/app.tsx"

    def test_invalid_json_raises(self):
        with pytest.raises(ValidationError, match="not valid JSON"):
            parse_model_json("Sure! Here are the files.", FileAnalysisResponse)

    def test_missing_fields_raise(self):
        with pytest.raises(ValidationError, match="GenerateResponse"):
            parse_model_json('{"codebase_summary": "x"}', GenerateResponse)

    def test_priority_normalized(self):
        reply = """{
            "codebase_summary": "app",
            "pr_changes": "toggle",
            "tests": [{"name": "t", "description": "d", "steps": ["s"],
                       "expected_result": "e", "priority": " High "}]
        }"""
        parsed = parse_model_json(reply, GenerateResponse)
        assert parsed.tests[0].priority == TestPriority.HIGH
        assert parsed.tests[0].to_test_case().priority == TestPriority.HIGH

    def test_unknown_priority_rejected(self):
        reply = """{"codebase_summary": "a", "pr_changes": "b", "tests": [
            {"name": "t", "description": "d", "steps": [], "expected_result": "e", "priority": "urgent"}]}"""
        with pytest.raises(ValidationError):
            parse_model_json(reply, GenerateResponse)

    def test_outcomes(self):
        setup = parse_model_json('{"setup_success": false, "setup_error": "port busy"}', SetupOutcome)
        test = parse_model_json('{"test_success": true, "notes": "fast"}', TestOutcome)
        assert setup.succeeded is False
        assert setup.error_message == "port busy"
        assert test.succeeded is True
        assert test.notes == "fast"


class TestSetupConfig:
    def test_parses_every_step_type(self):
        config = parse_setup_config(
            "steps:\n"
            "  - type: bash\n    command: npm ci\n"
            "  - type: create-env\n    text: A=1\n"
            "  - type: instruction\n    text: Log in as admin\n"
            "  - type: wait\n    seconds: 2.5\n"
        )
        assert [s.type for s in config.steps] == [
            SetupStepType.BASH,
            SetupStepType.CREATE_ENV,
            SetupStepType.INSTRUCTION,
            SetupStepType.WAIT,
        ]
        assert config.steps[3].seconds == 2.5

    @pytest.mark.parametrize(
        "yaml_text",
        [
            "steps:\n  - type: bash\n",
            "steps:\n  - type: create-env\n",
            "steps:\n  - type: instruction\n    command: x\n",
            "steps:\n  - type: wait\n    seconds: -1\n",
            "steps:\n  - type: reboot\n",
            "setup: []\n",
        ],
    )
    def test_malformed_config_rejected(self, yaml_text):
        with pytest.raises(ValidationError, match="malformed"):
            parse_setup_config(yaml_text)

    def test_invalid_yaml_rejected(self):
        with pytest.raises(ValidationError, match="not valid YAML"):
            parse_setup_config("steps: [unclosed")
