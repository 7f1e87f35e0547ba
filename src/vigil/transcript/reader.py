from __future__ import annotations

import json
import re
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

from vigil.logging_setup import get_logger
from vigil.transcript.models import (
    AssistantEntry,
    MalformedRecordError,
    SummaryEntry,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    TranscriptEntry,
    UserEntry,
    as_utc,
    entry_from_record,
)

REMINDER_RE = re.compile(r"<system-reminder>.*?</system-reminder>", re.DOTALL)
TRUNCATION_SUFFIX = "...[truncated]"

FILE_PATH_TOOLS = {"Read", "Write", "Edit", "MultiEdit", "NotebookEdit"}
COMMAND_TOOLS = {"Bash"}
PATTERN_TOOLS = {"Glob", "Grep"}

logger = get_logger(__name__)


def read_transcript(path: str | Path) -> list[TranscriptEntry]:
    entries: list[TranscriptEntry] = []
    with Path(path).open("r", encoding="utf-8", errors="replace") as f:
        for line_num, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                entries.append(entry_from_record(json.loads(line)))
            except (json.JSONDecodeError, MalformedRecordError) as exc:
                logger.warning(
                    "Skipping malformed line %d in transcript %s: %s",
                    line_num,
                    path,
                    exc,
                )
    return entries


def is_message(entry: TranscriptEntry) -> bool:
    return isinstance(entry, (UserEntry, AssistantEntry))


def is_summary(entry: TranscriptEntry) -> bool:
    return isinstance(entry, SummaryEntry)


def entry_session_id(entry: TranscriptEntry) -> str | None:
    if isinstance(entry, (UserEntry, AssistantEntry)):
        return entry.session_id
    return None


def entry_timestamp(entry: TranscriptEntry) -> datetime | None:
    if isinstance(entry, (UserEntry, AssistantEntry)):
        return entry.timestamp
    return None


def _joined(parts: list[str]) -> str | None:
    if not parts:
        return None
    return "\n".join(parts)


def user_text(entry: TranscriptEntry) -> str | None:
    if not isinstance(entry, UserEntry):
        return None
    return _joined([b.text for b in entry.content if isinstance(b, TextBlock)])


def assistant_text(entry: TranscriptEntry) -> str | None:
    if not isinstance(entry, AssistantEntry):
        return None
    return _joined([b.text for b in entry.content if isinstance(b, TextBlock)])


def assistant_thinking(entry: TranscriptEntry) -> str | None:
    if not isinstance(entry, AssistantEntry):
        return None
    return _joined([b.thinking for b in entry.content if isinstance(b, ThinkingBlock)])


def tool_uses(entry: TranscriptEntry) -> list[tuple[str, Any]]:
    if not isinstance(entry, AssistantEntry):
        return []
    return [(b.name, b.input) for b in entry.content if isinstance(b, ToolUseBlock)]


def render_payload(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def tool_results(entry: TranscriptEntry) -> list[tuple[str | None, str]]:
    if not isinstance(entry, UserEntry):
        return []
    return [
        (b.tool_use_id, render_payload(b.content))
        for b in entry.content
        if isinstance(b, ToolResultBlock) and b.content is not None
    ]


def dedupe_reminders(text: str) -> str:
    """Keep only the last ``<system-reminder>`` block; earlier ones are stale."""
    matches = list(REMINDER_RE.finditer(text))
    if len(matches) <= 1:
        return text.strip()
    parts: list[str] = []
    cursor = 0
    for match in matches[:-1]:
        parts.append(text[cursor : match.start()])
        cursor = match.end()
    parts.append(text[cursor:])
    return "".join(parts).strip()


def _matches_session(entry: TranscriptEntry, session_filter: str | None) -> bool:
    if session_filter is None or is_summary(entry):
        return True
    return entry_session_id(entry) == session_filter


def select_new(
    entries: Sequence[TranscriptEntry],
    cursor: datetime | None,
    session_filter: str | None = None,
) -> list[TranscriptEntry]:
    if cursor is not None:
        cursor = as_utc(cursor)
    selected: list[TranscriptEntry] = []
    for entry in entries:
        if not (is_message(entry) or is_summary(entry)):
            continue
        if not _matches_session(entry, session_filter):
            continue
        if cursor is not None:
            timestamp = entry_timestamp(entry)
            # Untimed entries (summaries) cannot be time-filtered and always pass.
            if timestamp is not None and timestamp <= cursor:
                continue
        selected.append(entry)
    return selected


def messages_in_window(
    entries: Sequence[TranscriptEntry],
    start: datetime,
    end: datetime,
    session_filter: str | None = None,
) -> list[TranscriptEntry]:
    start, end = as_utc(start), as_utc(end)
    selected: list[TranscriptEntry] = []
    for entry in entries:
        if not is_message(entry) or not _matches_session(entry, session_filter):
            continue
        timestamp = entry_timestamp(entry)
        if timestamp is not None and start <= timestamp <= end:
            selected.append(entry)
    return selected


def tool_summary(name: str, tool_input: Any) -> str:
    if not isinstance(tool_input, dict):
        return ""
    if name in FILE_PATH_TOOLS:
        key = "file_path"
    elif name in COMMAND_TOOLS:
        key = "command"
    elif name in PATTERN_TOOLS:
        key = "pattern"
    else:
        return ""
    value = tool_input.get(key)
    return value if isinstance(value, str) else ""


def _truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + TRUNCATION_SUFFIX


def format_context(
    entries: Sequence[TranscriptEntry], *, tool_result_max_chars: int = 500
) -> str:
    lines: list[str] = []
    for entry in entries:
        if isinstance(entry, SummaryEntry):
            lines.append(f"SUMMARY: {entry.text}\n\n")
        elif isinstance(entry, UserEntry):
            for _tool_use_id, content in tool_results(entry):
                lines.append(f"TOOL_RESULT: {_truncate(content, tool_result_max_chars)}\n\n")
            text = user_text(entry)
            if text is not None:
                cleaned = dedupe_reminders(text)
                if cleaned:
                    lines.append(f"USER: {cleaned}\n\n")
        elif isinstance(entry, AssistantEntry):
            thinking = assistant_thinking(entry)
            if thinking is not None:
                lines.append(f"THINKING: {thinking}\n\n")
            uses = tool_uses(entry)
            if uses:
                rendered = []
                for name, tool_input in uses:
                    summary = tool_summary(name, tool_input)
                    rendered.append(f"{name}({summary})" if summary else name)
                lines.append("TOOLS: " + " ".join(rendered) + "\n")
            text = assistant_text(entry)
            if text is not None:
                lines.append(f"ASSISTANT: {text}\n\n")
            elif uses:
                lines.append("\n")
    return "".join(lines)
