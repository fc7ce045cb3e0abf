"""Schemas for untrusted input: model responses and the declarative setup config.

Everything a language model returns, and the setup config checked into the
reviewed repository, is parsed through these models. A structural mismatch
raises ``ValidationError`` rather than letting partially-shaped data through.
"""

from __future__ import annotations

import json
import re
from enum import Enum
from typing import Any, Optional, TypeVar

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from orchestrator.models.review import TestCase, TestPriority
from orchestrator.services.errors import ValidationError

SchemaT = TypeVar("SchemaT", bound=BaseModel)

_FENCE_RE = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*\n(.*?)\n?```\s*$", re.DOTALL)


# ── Generate phase ────────────────────────────────────────────────


class ImportantFile(BaseModel):
    path: str
    reason: str = ""


class FileAnalysisResponse(BaseModel):
    files: list[ImportantFile]


class GeneratedTest(BaseModel):
    name: str
    description: str
    prerequisites: list[str] = Field(default_factory=list)
    steps: list[str]
    expected_result: str
    priority: TestPriority = TestPriority.MEDIUM

    @field_validator("priority", mode="before")
    @classmethod
    def _normalize_priority(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    def to_test_case(self) -> TestCase:
        return TestCase(**self.model_dump())


class GenerateResponse(BaseModel):
    codebase_summary: str
    pr_changes: str
    tests: list[GeneratedTest]
    setup_instructions: Optional[str] = None


# ── Agent outcomes ────────────────────────────────────────────────


class SetupOutcome(BaseModel):
    setup_success: bool
    setup_error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.setup_success

    @property
    def error_message(self) -> Optional[str]:
        return self.setup_error

    @property
    def notes(self) -> Optional[str]:
        return None


class TestOutcome(BaseModel):
    test_success: bool
    test_error: Optional[str] = None
    notes: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.test_success

    @property
    def error_message(self) -> Optional[str]:
        return self.test_error


# ── Declarative setup config ──────────────────────────────────────


class SetupStepType(str, Enum):
    BASH = "bash"
    CREATE_ENV = "create-env"
    INSTRUCTION = "instruction"
    WAIT = "wait"


class SetupConfigStep(BaseModel):
    type: SetupStepType
    command: Optional[str] = None
    text: Optional[str] = None
    seconds: Optional[float] = None

    @model_validator(mode="after")
    def _check_required_field(self) -> "SetupConfigStep":
        if self.type == SetupStepType.BASH and not self.command:
            raise ValueError("bash steps require 'command'")
        if self.type in (SetupStepType.CREATE_ENV, SetupStepType.INSTRUCTION) and self.text is None:
            raise ValueError(f"{self.type.value} steps require 'text'")
        if self.type == SetupStepType.WAIT and (self.seconds is None or self.seconds < 0):
            raise ValueError("wait steps require a non-negative 'seconds'")
        return self


class SetupConfig(BaseModel):
    steps: list[SetupConfigStep]


# ── Parsing helpers ───────────────────────────────────────────────


def strip_code_fence(text: str) -> str:
    """Remove a surrounding Markdown code fence, if any."""
    match = _FENCE_RE.match(text)
    return match.group(1) if match else text.strip()


def parse_model_json(text: str, schema: type[SchemaT]) -> SchemaT:
    """Parse a model's text response as JSON and validate it against ``schema``."""
    body = strip_code_fence(text or "")
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise ValidationError(
            f"{schema.__name__}: response is not valid JSON ({e.msg} at pos {e.pos})"
        ) from e
    try:
        return schema.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"{schema.__name__}: {e}") from e


def parse_setup_config(text: str) -> SetupConfig:
    """Parse the YAML setup config checked into a repository."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ValidationError(f"Setup config is not valid YAML: {e}") from e
    try:
        return SetupConfig.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Setup config is malformed: {e}") from e
