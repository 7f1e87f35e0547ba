from __future__ import annotations

import json
from typing import Any

from vigil.config import EngineConfig
from vigil.engine.base import EngineResponse, child_env
from vigil.engine.errors import (
    EngineCommandError,
    EngineResponseError,
    EngineTimeoutError,
)
from vigil.engine.process import ProcessState, run_polled
from vigil.logging_setup import get_logger


def _as_float(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    return 0.0


def parse_claude_response(stdout: str) -> EngineResponse:
    """Accept either one result object or the event array emitted when hooks are active."""
    try:
        loaded = json.loads(stdout)
    except json.JSONDecodeError as exc:
        raise EngineResponseError(str(exc)) from exc

    if isinstance(loaded, dict):
        result = loaded.get("result")
        session_id = loaded.get("session_id")
        if not isinstance(result, str) or not isinstance(session_id, str):
            raise EngineResponseError("response object is missing 'result' or 'session_id'")
        return EngineResponse(
            result=result,
            session_id=session_id,
            cost_usd=_as_float(loaded.get("total_cost_usd")),
        )

    if isinstance(loaded, list):
        for entry in reversed(loaded):
            if not isinstance(entry, dict) or entry.get("type") != "result":
                continue
            result = entry.get("result")
            if not isinstance(result, str) or not result:
                continue
            session_id = entry.get("session_id")
            return EngineResponse(
                result=result,
                session_id=session_id if isinstance(session_id, str) else "",
                cost_usd=_as_float(entry.get("total_cost_usd")),
            )
        raise EngineCommandError(
            "Claude response array contains no valid 'result' entry "
            "(missing or empty result field)"
        )

    raise EngineResponseError(f"unexpected JSON payload type {type(loaded).__name__}")


def _failure_message(stdout: str, stderr: str) -> str:
    # Errors are reported as JSON on stdout with the message in "result".
    try:
        loaded = json.loads(stdout)
    except json.JSONDecodeError:
        loaded = None
    if isinstance(loaded, dict) and isinstance(loaded.get("result"), str):
        return loaded["result"]
    return stderr.strip() or stdout.strip()


class ClaudeEngine:
    name = "claude"

    def __init__(self, config: EngineConfig) -> None:
        self.config = config
        self.logger = get_logger(__name__)

    def build_command(self, system_prompt: str, message: str) -> list[str]:
        command = [
            self.config.claude_executable,
            "-p",
            "--output-format",
            "json",
            "--tools",
            ",".join(self.config.tools),
            "--system-prompt",
            system_prompt,
        ]
        if self.config.model:
            command.extend(["--model", self.config.model])
        # Each review is isolated; continuity comes from the carryover block.
        command.append("--no-session-persistence")
        command.append(message)
        return command

    def invoke(self, system_prompt: str, message: str) -> EngineResponse:
        timeout_seconds = self.config.timeout_ms / 1000
        outcome = run_polled(
            self.build_command(system_prompt, message),
            timeout_seconds=timeout_seconds,
            poll_interval_seconds=self.config.poll_interval_ms / 1000,
            env=child_env(),
        )
        if outcome.state == ProcessState.KILLED:
            raise EngineTimeoutError(timeout_seconds)
        if not outcome.succeeded:
            raise EngineCommandError(_failure_message(outcome.stdout, outcome.stderr))
        response = parse_claude_response(outcome.stdout)
        self.logger.info(
            "Claude responded in %.1fs cost=$%.4f",
            outcome.elapsed_seconds,
            response.cost_usd,
        )
        return response
