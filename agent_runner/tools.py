"""
Tools the agent can call on the review VM.

    bash                — run a shell command
    str_replace_editor  — view / create / str_replace a file
    computer            — drive the desktop (xdotool + scrot on DISPLAY=:1)
    wait                — sleep, for slow installs and page loads

Every tool returns a ``ToolOutcome``. Bad arguments, unknown tools and failing
commands come back as observations for the model to react to; only
cancellation propagates.
"""

from __future__ import annotations

import asyncio
import shlex
import time
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import structlog

from orchestrator.models.review import EDITOR_TOOL_NAME
from vm_provisioner.backends.base import CommandResult

logger = structlog.get_logger()

# Observations are fed back to the model; keep them bounded.
MAX_OBSERVATION_CHARS = 4000
MAX_WAIT_SECONDS = 120
DISPLAY = ":1"
SCREENSHOT_DIR = "/tmp/prpilot/screenshots"

TOOL_DESCRIPTIONS = f"""\
- bash: {{"command": "<shell command>"}}
  Runs a command in a login shell on the VM and returns exit code, stdout and stderr.
- {EDITOR_TOOL_NAME}: {{"command": "view" | "create" | "str_replace", "path": "<absolute path>",
    "file_text": "<content for create>", "old_str": "<exact text>", "new_str": "<replacement>"}}
  Views, creates or edits a file. old_str must occur exactly once.
- computer: {{"action": "screenshot" | "click" | "double_click" | "type" | "key" | "scroll" | "open_url",
    "x": <int>, "y": <int>, "text": "<text to type>", "key": "<xdotool key, e.g. Return or ctrl+l>",
    "direction": "up" | "down", "amount": <int>, "url": "<url>"}}
  Drives the desktop. Every action reports the focused window title afterwards.
- wait: {{"seconds": <number, max {MAX_WAIT_SECONDS}>}}
  Sleeps before the next step."""


class CommandTarget(Protocol):
    async def bash(self, command: str, timeout: Optional[int] = None) -> CommandResult: ...

    async def write_file(self, path: str, content: str) -> None: ...


@dataclass
class ToolOutcome:
    observation: str
    screenshot: Optional[str] = None
    action: Optional[str] = None


class ToolError(Exception):
    """A tool call could not be carried out; reported back to the model."""


def _truncate(text: str, limit: int = MAX_OBSERVATION_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n... [truncated {len(text) - limit} chars]"


def _format_result(result: CommandResult) -> str:
    parts = [f"exit_code: {result.exit_code}"]
    if result.stdout.strip():
        parts.append(f"stdout:\n{result.stdout.strip()}")
    if result.stderr.strip():
        parts.append(f"stderr:\n{result.stderr.strip()}")
    return _truncate("\n".join(parts))


def _require(args: dict, key: str) -> Any:
    if key not in args or args[key] in (None, ""):
        raise ToolError(f"missing required argument {key!r}")
    return args[key]


class VMTools:
    """Dispatches agent tool calls to a VM handle."""

    def __init__(self, screenshot_dir: str = SCREENSHOT_DIR):
        self.screenshot_dir = screenshot_dir
        self._handlers = {
            "bash": self._bash,
            EDITOR_TOOL_NAME: self._editor,
            "computer": self._computer,
            "wait": self._wait,
        }

    @property
    def names(self) -> list[str]:
        return list(self._handlers)

    async def execute(self, target: CommandTarget, name: str, args: Any) -> ToolOutcome:
        handler = self._handlers.get(name)
        if handler is None:
            return ToolOutcome(f"error: unknown tool {name!r}; available: {', '.join(self.names)}")
        if not isinstance(args, dict):
            return ToolOutcome(f"error: arguments for {name!r} must be a JSON object")
        try:
            return await handler(target, args)
        except ToolError as e:
            return ToolOutcome(f"error: {e}")
        except Exception as e:
            await logger.awarning("Tool call failed", tool=name, error=str(e))
            return ToolOutcome(f"error: {name} failed: {e}")

    # ── bash ──────────────────────────────────────────────────────

    async def _bash(self, target: CommandTarget, args: dict) -> ToolOutcome:
        command = _require(args, "command")
        result = await target.bash(command)
        return ToolOutcome(_format_result(result), action=f"bash: {command[:200]}")

    # ── editor ────────────────────────────────────────────────────

    async def _editor(self, target: CommandTarget, args: dict) -> ToolOutcome:
        command = _require(args, "command")
        path = _require(args, "path")

        if command == "view":
            result = await target.bash(f"cat -n {shlex.quote(path)}")
            return ToolOutcome(_format_result(result))

        if command == "create":
            await target.write_file(path, args.get("file_text") or "")
            return ToolOutcome(f"created {path}")

        if command == "str_replace":
            old = _require(args, "old_str")
            new = args.get("new_str") or ""
            result = await target.bash(f"cat {shlex.quote(path)}")
            if not result.ok:
                raise ToolError(f"cannot read {path}: {result.stderr.strip()}")
            occurrences = result.stdout.count(old)
            if occurrences != 1:
                raise ToolError(f"old_str must occur exactly once in {path}, found {occurrences}")
            await target.write_file(path, result.stdout.replace(old, new, 1))
            return ToolOutcome(f"edited {path}")

        raise ToolError(f"unknown editor command {command!r}")

    # ── computer ──────────────────────────────────────────────────

    async def _xdotool(self, target: CommandTarget, xdotool_args: str) -> CommandResult:
        return await target.bash(f"DISPLAY={DISPLAY} xdotool {xdotool_args}", timeout=30)

    async def _window_title(self, target: CommandTarget) -> str:
        result = await self._xdotool(target, "getactivewindow getwindowname")
        return result.stdout.strip() if result.ok else "(no focused window)"

    async def _computer(self, target: CommandTarget, args: dict) -> ToolOutcome:
        action = _require(args, "action")
        screenshot = None

        if action == "screenshot":
            path = f"{self.screenshot_dir}/{int(time.time() * 1000)}.png"
            result = await target.bash(
                f"mkdir -p {self.screenshot_dir} && DISPLAY={DISPLAY} scrot -o {shlex.quote(path)}",
                timeout=30,
            )
            if not result.ok:
                raise ToolError(f"screenshot failed: {result.stderr.strip()}")
            screenshot = path
        elif action in ("click", "double_click"):
            x, y = int(_require(args, "x")), int(_require(args, "y"))
            repeat = "--repeat 2 " if action == "double_click" else ""
            result = await self._xdotool(target, f"mousemove {x} {y} click {repeat}1")
        elif action == "type":
            text = _require(args, "text")
            result = await self._xdotool(target, f"type --delay 20 -- {shlex.quote(text)}")
        elif action == "key":
            key = _require(args, "key")
            result = await self._xdotool(target, f"key -- {shlex.quote(key)}")
        elif action == "scroll":
            button = 4 if args.get("direction", "down") == "up" else 5
            amount = int(args.get("amount") or 3)
            result = await self._xdotool(target, f"click --repeat {amount} {button}")
        elif action == "open_url":
            url = _require(args, "url")
            result = await target.bash(
                f"DISPLAY={DISPLAY} nohup chromium-browser --no-first-run {shlex.quote(url)} "
                ">/dev/null 2>&1 &",
                timeout=30,
            )
        else:
            raise ToolError(f"unknown computer action {action!r}")

        if action != "screenshot" and not result.ok:
            raise ToolError(f"{action} failed: {result.stderr.strip() or result.exit_code}")

        title = await self._window_title(target)
        observation = f"{action} done; focused window: {title}"
        if screenshot:
            observation += f"; saved {screenshot}"
        return ToolOutcome(observation, screenshot=screenshot, action=action)

    # ── wait ──────────────────────────────────────────────────────

    async def _wait(self, target: CommandTarget, args: dict) -> ToolOutcome:
        try:
            seconds = float(args.get("seconds", 5))
        except (TypeError, ValueError):
            raise ToolError("seconds must be a number")
        seconds = max(0.0, min(seconds, MAX_WAIT_SECONDS))
        await asyncio.sleep(seconds)
        return ToolOutcome(f"waited {seconds:g}s", action="wait")
