"""Reader for Codex CLI rollout session files (``~/.codex/sessions/YYYY/MM/DD/rollout-*.jsonl``)."""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from vigil.logging_setup import get_logger
from vigil.transcript.reader import render_payload

TRUNCATION_SUFFIX = "... [truncated]"
FORMAT_PROBE_LINES = 5

logger = get_logger(__name__)


def _texts(blocks: Any, accepted: set[str]) -> str | None:
    if not isinstance(blocks, list):
        return None
    texts = [
        block["text"]
        for block in blocks
        if isinstance(block, dict)
        and block.get("type") in accepted
        and isinstance(block.get("text"), str)
    ]
    return "\n".join(texts) if texts else None


@dataclass(frozen=True)
class CodexEntry:
    entry_type: str
    timestamp: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def payload_type(self) -> str | None:
        value = self.payload.get("type")
        return value if isinstance(value, str) else None

    def is_user_message(self) -> bool:
        if self.entry_type == "response_item":
            return self.payload.get("role") == "user"
        if self.entry_type == "event_msg":
            return self.payload_type == "user_message"
        return False

    def is_reasoning(self) -> bool:
        if self.entry_type == "event_msg":
            return self.payload_type == "agent_reasoning"
        if self.entry_type == "response_item":
            return self.payload_type == "reasoning"
        return False

    def is_function_call(self) -> bool:
        return self.entry_type == "response_item" and self.payload_type == "function_call"

    def is_function_output(self) -> bool:
        return (
            self.entry_type == "response_item"
            and self.payload_type == "function_call_output"
        )

    def is_agent_message(self) -> bool:
        return (
            self.entry_type == "response_item"
            and self.payload_type == "message"
            and self.payload.get("role") == "assistant"
        )

    def user_text(self) -> str | None:
        if self.entry_type == "event_msg":
            message = self.payload.get("message")
            return message if isinstance(message, str) else None
        if self.entry_type == "response_item":
            return _texts(self.payload.get("content"), {"input_text", "text"})
        return None

    def agent_text(self) -> str | None:
        if not self.is_agent_message():
            return None
        return _texts(self.payload.get("content"), {"output_text", "text"})

    def reasoning_text(self) -> str | None:
        if self.entry_type == "event_msg":
            text = self.payload.get("text")
            return text if isinstance(text, str) else None
        if self.entry_type == "response_item":
            summary = self.payload.get("summary")
            if isinstance(summary, list):
                texts = [
                    item["text"]
                    for item in summary
                    if isinstance(item, dict) and isinstance(item.get("text"), str)
                ]
                return "\n".join(texts) if texts else None
        return None

    def function_call(self) -> tuple[str, str] | None:
        if not self.is_function_call():
            return None
        name = self.payload.get("name")
        if not isinstance(name, str):
            return None
        arguments = self.payload.get("arguments")
        return name, arguments if isinstance(arguments, str) else ""

    def function_output(self) -> str | None:
        if not self.is_function_output() or "output" not in self.payload:
            return None
        return render_payload(self.payload["output"])


def read_codex_transcript(path: str | Path) -> list[CodexEntry]:
    entries: list[CodexEntry] = []
    with Path(path).open("r", encoding="utf-8", errors="replace") as f:
        for line_num, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as exc:
                logger.warning(
                    "Skipping malformed Codex line %d in transcript %s: %s",
                    line_num,
                    path,
                    exc,
                )
                continue
            if not isinstance(record, dict) or not isinstance(record.get("type"), str):
                logger.warning(
                    "Skipping malformed Codex line %d in transcript %s: missing type",
                    line_num,
                    path,
                )
                continue
            payload = record.get("payload")
            timestamp = record.get("timestamp")
            entries.append(
                CodexEntry(
                    entry_type=record["type"],
                    timestamp=timestamp if isinstance(timestamp, str) else None,
                    payload=payload if isinstance(payload, dict) else {},
                )
            )
    return entries


def _truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + TRUNCATION_SUFFIX


def format_codex_context(
    entries: Sequence[CodexEntry],
    *,
    text_max_chars: int = 2000,
    output_max_chars: int = 500,
) -> str:
    lines: list[str] = []
    seen_user_msg: str | None = None

    for entry in entries:
        # The same user turn is logged as both event_msg and response_item.
        if entry.is_user_message():
            text = entry.user_text()
            if entry.entry_type == "response_item":
                seen_user_msg = text
            elif text is not None and text != seen_user_msg:
                lines.append(f"USER: {_truncate(text, text_max_chars)}\n\n")

        if entry.is_reasoning():
            text = entry.reasoning_text()
            if text is not None:
                lines.append(f"THINKING: {text}\n\n")

        call = entry.function_call()
        if call is not None:
            name, arguments = call
            line = f"TOOL: {name}"
            if name == "shell":
                try:
                    parsed = json.loads(arguments)
                except json.JSONDecodeError:
                    parsed = None
                if isinstance(parsed, dict) and "command" in parsed:
                    line += " " + json.dumps(parsed["command"], ensure_ascii=False)
            lines.append(line + "\n")

        output = entry.function_output()
        if output is not None:
            lines.append(f"OUTPUT: {_truncate(output, output_max_chars)}\n\n")

        text = entry.agent_text()
        if text is not None:
            lines.append(f"ASSISTANT: {_truncate(text, text_max_chars)}\n\n")

    return "".join(lines)


def is_codex_format(path: str | Path) -> bool:
    path_str = Path(path).as_posix()
    if ".codex/sessions/" in path_str or "rollout-" in Path(path).name:
        return True
    try:
        with Path(path).open("r", encoding="utf-8", errors="replace") as f:
            for _ in range(FORMAT_PROBE_LINES):
                line = f.readline()
                if not line:
                    break
                try:
                    record = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if not isinstance(record, dict):
                    continue
                if record.get("type") in {"session_meta", "response_item", "event_msg", "turn_context"}:
                    return True
                if record.get("type") in {"user", "assistant", "summary"}:
                    return False
    except OSError:
        return False
    return False


def find_latest_codex_session(sessions_root: str | Path | None = None) -> Path | None:
    root = Path(sessions_root) if sessions_root else Path.home() / ".codex" / "sessions"
    if not root.is_dir():
        return None
    candidates = [path for path in root.rglob("rollout-*.jsonl") if path.is_file()]
    if not candidates:
        return None
    return max(candidates, key=lambda path: path.stat().st_mtime)
