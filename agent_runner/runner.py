"""
Agent Runner — the bounded model → tools → observation loop.

    ┌──────────────────────────────────────────────────────────┐
    │  1. COMPLETE: send system prompt + transcript to model   │
    │  2. PARSE: validate the reply as an AgentTurn (JSON)     │
    │  3. ACT: run each tool call on the VM                    │
    │  4. RECORD: append a TimestampedStep, await on_step      │
    │  5. If the turn carries a result → validate and stop     │
    │     else feed observations back and goto 1               │
    └──────────────────────────────────────────────────────────┘

The loop runs at most ``max_steps`` iterations. Running out of steps, an
upstream error or an unparseable reply all end the run as a failed
``AgentRunResult``; the steps recorded so far are kept either way.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from agent_runner.tools import TOOL_DESCRIPTIONS, VMTools
from completion_gateway.gateway import CompletionGateway
from orchestrator.models.responses import SetupOutcome, TestOutcome, parse_model_json
from orchestrator.models.review import TimestampedStep, ToolCall
from orchestrator.services.errors import AgentExhaustedError, PRPilotError, ValidationError

logger = structlog.get_logger()

StepCallback = Callable[[TimestampedStep], Awaitable[None]]
OutcomeSchema = type[SetupOutcome] | type[TestOutcome]

PROTOCOL_PROMPT = """
<TOOLS>
{tools}
</TOOLS>

<RESPONSE_FORMAT>
Reply with a single JSON object and nothing else:
{{"text": "<what you are doing and why>",
  "tool_calls": [{{"name": "<tool>", "args": {{...}}}}],
  "result": null}}
Tool results are returned to you in the next message. When you are finished,
reply with no tool_calls and set "result" to:
{result_format}
</RESPONSE_FORMAT>"""

RESULT_FORMATS = {
    SetupOutcome: '{"setup_success": true | false, "setup_error": "<error if unsuccessful>"}',
    TestOutcome: (
        '{"test_success": true | false, "test_error": "<error if unsuccessful>", '
        '"notes": "<anything worth reporting>"}'
    ),
}


class ToolCallRequest(BaseModel):
    name: str
    args: Any = Field(default_factory=dict)


class AgentTurn(BaseModel):
    """One model reply."""

    text: Optional[str] = None
    tool_calls: list[ToolCallRequest] = Field(default_factory=list)
    result: Optional[dict[str, Any]] = None


@dataclass
class AgentRunResult:
    """Final result of an agent run."""

    success: bool
    error: str = ""
    notes: Optional[str] = None
    steps: list[TimestampedStep] = field(default_factory=list)
    duration_seconds: float = 0.0


class AgentRunner:
    """Drives one model through a task on a VM until it reports an outcome."""

    def __init__(
        self,
        gateway: CompletionGateway,
        provider: str,
        model: str,
        max_steps: int = 40,
        tools: Optional[VMTools] = None,
    ):
        self.gateway = gateway
        self.provider = provider
        self.model = model
        self.max_steps = max_steps
        self.tools = tools or VMTools()

    async def run(
        self,
        system_prompt: str,
        user_prompt: str,
        handle,
        on_step: Optional[StepCallback] = None,
        outcome_schema: OutcomeSchema = TestOutcome,
    ) -> AgentRunResult:
        start = time.monotonic()
        result = AgentRunResult(success=False)
        system = system_prompt + PROTOCOL_PROMPT.format(
            tools=TOOL_DESCRIPTIONS, result_format=RESULT_FORMATS[outcome_schema]
        )
        transcript: list[str] = [f"[USER]\n{user_prompt}"]

        try:
            for step_number in range(1, self.max_steps + 1):
                reply = await self.gateway.complete(
                    self.provider, self.model, system, "\n\n".join(transcript)
                )
                turn = parse_model_json(reply, AgentTurn)

                step = TimestampedStep(
                    text=turn.text,
                    tool_calls=[ToolCall(name=c.name, args=c.args) for c in turn.tool_calls],
                )
                observations: list[str] = []
                for call in turn.tool_calls:
                    outcome = await self.tools.execute(handle, call.name, call.args)
                    observations.append(f"[{call.name}] {outcome.observation}")
                    if outcome.screenshot:
                        step.screenshot = outcome.screenshot
                    if outcome.action:
                        step.action = outcome.action

                if not step.is_empty:
                    result.steps.append(step)
                    await self._notify(on_step, step)

                if turn.result is not None:
                    outcome = self._parse_outcome(turn.result, outcome_schema)
                    result.success = outcome.succeeded
                    result.notes = outcome.notes
                    if not outcome.succeeded:
                        result.error = outcome.error_message or "Agent reported failure"
                    await logger.ainfo(
                        "Agent finished",
                        success=result.success,
                        steps=step_number,
                        model=self.model,
                    )
                    return result

                transcript.append(f"[ASSISTANT]\n{reply.strip()}")
                transcript.append(
                    "[OBSERVATIONS]\n" + ("\n".join(observations) or "(no tool calls were made)")
                )

            raise AgentExhaustedError(self.max_steps, result.steps)

        except AgentExhaustedError as e:
            result.error = str(e)
            await logger.awarning("Agent step budget exhausted", max_steps=self.max_steps)
        except PRPilotError as e:
            result.error = str(e)
            await logger.aerror("Agent run failed", error=str(e), model=self.model)
        except Exception as e:
            result.error = f"Unexpected agent error: {e}"
            await logger.aerror("Agent run crashed", error=str(e), model=self.model)
        finally:
            result.duration_seconds = time.monotonic() - start

        return result

    @staticmethod
    def _parse_outcome(data: dict, schema: OutcomeSchema):
        try:
            return schema.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"{schema.__name__}: {e}") from e

    async def _notify(self, on_step: Optional[StepCallback], step: TimestampedStep) -> None:
        if on_step is None:
            return
        try:
            await on_step(step)
        except Exception as e:
            await logger.awarning("Step callback failed", error=str(e))
