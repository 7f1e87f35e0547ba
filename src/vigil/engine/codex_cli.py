from __future__ import annotations

import json
import re
import subprocess

from vigil.config import EngineConfig
from vigil.engine.base import EngineResponse, child_env
from vigil.engine.errors import (
    EngineCommandError,
    EngineRateLimitedError,
    EngineResponseError,
    EngineTimeoutError,
    EngineUnavailableError,
)
from vigil.engine.process import ProcessState, run_polled
from vigil.logging_setup import get_logger

RESETS_IN_RE = re.compile(r'resets_in_seconds"\s*:\s*(\d+)')
RATE_LIMIT_MARKERS = ("429", "usage_limit_reached")
RESPONSE_INSTRUCTION = (
    "Respond with DECISION: ALLOW or DECISION: BLOCK followed by your feedback."
)


def combine_prompt(system_prompt: str, message: str) -> str:
    # codex exec has no separate system prompt flag.
    return f"{system_prompt}\n\n---\n\n{message}\n\n---\n\n{RESPONSE_INSTRUCTION}"


def rate_limit_from_stderr(stderr: str) -> EngineRateLimitedError | None:
    if not any(marker in stderr for marker in RATE_LIMIT_MARKERS):
        return None
    match = RESETS_IN_RE.search(stderr)
    return EngineRateLimitedError(int(match.group(1)) if match else None)


def parse_codex_output(output: str) -> EngineResponse:
    result_text = ""
    thread_id = ""
    total_tokens = 0
    for line in output.splitlines():
        if not line.strip():
            continue
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(event, dict):
            continue
        if isinstance(event.get("thread_id"), str):
            thread_id = event["thread_id"]
        if event.get("type") == "item.completed":
            item = event.get("item")
            if (
                isinstance(item, dict)
                and item.get("type") == "agent_message"
                and isinstance(item.get("text"), str)
            ):
                result_text = item["text"]
        usage = event.get("usage")
        if isinstance(usage, dict):
            total_tokens = int(usage.get("input_tokens") or 0) + int(
                usage.get("output_tokens") or 0
            )
    if not result_text:
        raise EngineResponseError("No agent_message found in output")
    return EngineResponse(result=result_text, session_id=thread_id, total_tokens=total_tokens)


class CodexEngine:
    name = "codex"

    def __init__(self, config: EngineConfig) -> None:
        self.config = config
        self.logger = get_logger(__name__)

    def is_available(self) -> bool:
        try:
            completed = subprocess.run(
                [self.config.codex_executable, "--version"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=False,
            )
        except OSError:
            return False
        return completed.returncode == 0

    def invoke(self, system_prompt: str, message: str) -> EngineResponse:
        if not self.is_available():
            raise EngineUnavailableError(self.config.codex_executable)
        timeout_seconds = self.config.codex_timeout_ms / 1000
        # The prompt goes through stdin to stay clear of argument length limits.
        outcome = run_polled(
            [self.config.codex_executable, "exec", "--json", "--skip-git-repo-check", "-"],
            timeout_seconds=timeout_seconds,
            poll_interval_seconds=self.config.poll_interval_ms / 1000,
            input_text=combine_prompt(system_prompt, message),
            env=child_env(),
        )
        if outcome.state == ProcessState.KILLED:
            raise EngineTimeoutError(timeout_seconds)
        if not outcome.succeeded:
            rate_limited = rate_limit_from_stderr(outcome.stderr)
            if rate_limited is not None:
                raise rate_limited
            raise EngineCommandError(outcome.stderr.strip() or outcome.stdout.strip())
        response = parse_codex_output(outcome.stdout)
        self.logger.info(
            "Codex responded in %.1fs tokens=%d",
            outcome.elapsed_seconds,
            response.total_tokens,
        )
        return response
