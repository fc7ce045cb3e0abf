"""Review model: one tracked UI test run for a specific PR commit."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

# Tool whose arguments may carry file contents such as .env secrets.
EDITOR_TOOL_NAME = "str_replace_editor"
REDACTED = "[REDACTED]"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PhaseStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"


class ReviewStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"


class TestPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ToolCall(BaseModel):
    """A single tool invocation made by the agent."""

    name: str
    args: Any = None

    @model_validator(mode="after")
    def _redact_editor_args(self) -> "ToolCall":
        if self.name == EDITOR_TOOL_NAME:
            self.args = REDACTED
        return self


class TimestampedStep(BaseModel):
    """One entry of the append-only agent activity log."""

    text: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)
    tool_calls: list[ToolCall] = Field(default_factory=list)
    screenshot: Optional[str] = None
    action: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.text and self.text.strip()) and not self.tool_calls


class TestCase(BaseModel):
    """A generated UI test. Immutable once generated."""

    model_config = {"frozen": True}

    name: str
    description: str
    prerequisites: list[str] = Field(default_factory=list)
    steps: list[str] = Field(default_factory=list)
    expected_result: str
    priority: TestPriority = TestPriority.MEDIUM


class TestResult(BaseModel):
    test_number: int
    test_name: str
    success: bool = False
    error: Optional[str] = None
    notes: Optional[str] = None
    steps: list[TimestampedStep] = Field(default_factory=list)


class ReviewPhase(BaseModel):
    """Shared status/timestamp bookkeeping for the three phases."""

    status: PhaseStatus = PhaseStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (PhaseStatus.COMPLETE, PhaseStatus.FAILED)

    def start(self) -> None:
        if self.status != PhaseStatus.PENDING:
            raise ValueError(f"Cannot start a phase that is {self.status.value}")
        self.status = PhaseStatus.IN_PROGRESS
        self.started_at = _now()

    def complete(self) -> None:
        if self.status != PhaseStatus.IN_PROGRESS:
            raise ValueError(f"Cannot complete a phase that is {self.status.value}")
        self.status = PhaseStatus.COMPLETE
        self.completed_at = _now()

    def fail(self, error: str) -> None:
        if self.is_terminal:
            raise ValueError(f"Cannot fail a phase that is {self.status.value}")
        self.status = PhaseStatus.FAILED
        self.error = error
        self.completed_at = _now()

    def reset(self) -> None:
        """Return to pending so a resumed review can redo this phase."""
        self.status = PhaseStatus.PENDING
        self.started_at = None
        self.completed_at = None
        self.error = None


class GeneratePhase(ReviewPhase):
    codebase_summary: Optional[str] = None
    pr_changes_summary: Optional[str] = None
    generated_tests: list[TestCase] = Field(default_factory=list)
    auto_setup_instructions: Optional[str] = None
    setup_config_content: Optional[str] = None


class SetupPhase(ReviewPhase):
    steps: list[TimestampedStep] = Field(default_factory=list)

    def append_step(self, step: TimestampedStep) -> None:
        self.steps.append(step)

    def reset(self) -> None:
        super().reset()
        self.steps = []


class ExecutePhase(ReviewPhase):
    test_results: list[TestResult] = Field(default_factory=list)

    def append_result(self, result: TestResult) -> None:
        self.test_results.append(result)

    def reset(self) -> None:
        super().reset()
        self.test_results = []


class RepoRef(BaseModel):
    """The repository a review runs against."""

    id: int
    full_name: str  # "owner/name"
    private: bool = False

    @property
    def owner(self) -> str:
        return self.full_name.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.full_name.split("/", 1)[1]


class Review(BaseModel):
    """Full review record, persisted after every phase transition."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    repo_id: int
    repo_full_name: str
    pr_number: int
    commit_sha: str
    head_ref: str = ""
    status: ReviewStatus = ReviewStatus.PENDING
    started_at: datetime = Field(default_factory=_now)
    completed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=_now)

    # Runtime fields
    instance_id: Optional[str] = None
    stream_url: Optional[str] = None
    comment_id: Optional[int] = None
    total_tests: Optional[int] = None
    passed_tests: Optional[int] = None
    warnings: list[str] = Field(default_factory=list)

    generate: GeneratePhase = Field(default_factory=GeneratePhase)
    setup: SetupPhase = Field(default_factory=SetupPhase)
    execute: ExecutePhase = Field(default_factory=ExecutePhase)

    @property
    def phases(self) -> dict[str, ReviewPhase]:
        return {"generate": self.generate, "setup": self.setup, "execute": self.execute}

    @property
    def is_terminal(self) -> bool:
        return self.status in (ReviewStatus.COMPLETE, ReviewStatus.FAILED)

    @property
    def error(self) -> Optional[str]:
        for phase in self.phases.values():
            if phase.status == PhaseStatus.FAILED:
                return phase.error
        return None

    def sync_status(self) -> ReviewStatus:
        """Derive the overall status from the phases. Terminal states never regress."""
        now = _now()
        self.updated_at = now
        if self.is_terminal:
            return self.status

        statuses = [phase.status for phase in self.phases.values()]
        if PhaseStatus.FAILED in statuses:
            self.status = ReviewStatus.FAILED
        elif all(s == PhaseStatus.COMPLETE for s in statuses):
            self.status = ReviewStatus.COMPLETE
        elif any(s != PhaseStatus.PENDING for s in statuses):
            self.status = ReviewStatus.IN_PROGRESS
        else:
            self.status = ReviewStatus.PENDING

        if self.is_terminal:
            self.completed_at = now
        return self.status

    def record_test_result(self, result: TestResult) -> None:
        self.execute.append_result(result)
        self.passed_tests = sum(1 for r in self.execute.test_results if r.success)
