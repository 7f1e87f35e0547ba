from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from vigil.transcript.codex import (
    find_latest_codex_session,
    format_codex_context,
    is_codex_format,
    read_codex_transcript,
)


def _write(path: Path, records: list[Any]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def _session_records() -> list[dict[str, Any]]:
    return [
        {"type": "session_meta", "timestamp": "2025-01-01T10:00:00Z", "payload": {"id": "x"}},
        {
            "type": "response_item",
            "payload": {
                "type": "message",
                "role": "user",
                "content": [{"type": "input_text", "text": "List the files"}],
            },
        },
        {"type": "event_msg", "payload": {"type": "user_message", "message": "List the files"}},
        {"type": "event_msg", "payload": {"type": "agent_reasoning", "text": "Use ls"}},
        {
            "type": "response_item",
            "payload": {
                "type": "function_call",
                "name": "shell",
                "arguments": json.dumps({"command": ["ls", "-la"]}),
            },
        },
        {
            "type": "response_item",
            "payload": {"type": "function_call_output", "output": "a.py\nb.py"},
        },
        {
            "type": "response_item",
            "payload": {
                "type": "message",
                "role": "assistant",
                "content": [{"type": "output_text", "text": "Two files."}],
            },
        },
    ]


def test_read_codex_transcript_skips_malformed_lines(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "rollout-1.jsonl",
        [{"type": "event_msg", "payload": {}}, "garbage", {"no_type": True}],
    )
    entries = read_codex_transcript(path)
    assert len(entries) == 1
    assert entries[0].entry_type == "event_msg"


def test_format_codex_context_dedupes_user_turns(tmp_path: Path) -> None:
    path = _write(tmp_path / "rollout-1.jsonl", _session_records())

    rendered = format_codex_context(read_codex_transcript(path))

    assert rendered == (
        "THINKING: Use ls\n\n"
        'TOOL: shell ["ls", "-la"]\n'
        "OUTPUT: a.py\nb.py\n\n"
        "ASSISTANT: Two files.\n\n"
    )


def test_format_codex_context_shows_new_user_event_and_truncates(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "rollout-2.jsonl",
        [
            {"type": "event_msg", "payload": {"type": "user_message", "message": "x" * 12}},
            {"type": "response_item", "payload": {"type": "function_call_output", "output": "y" * 12}},
        ],
    )

    rendered = format_codex_context(
        read_codex_transcript(path), text_max_chars=5, output_max_chars=4
    )

    assert rendered == "USER: xxxxx... [truncated]\n\nOUTPUT: yyyy... [truncated]\n\n"


def test_is_codex_format_by_name_and_content(tmp_path: Path) -> None:
    assert is_codex_format(tmp_path / "rollout-2025.jsonl") is True

    codex = _write(tmp_path / "session.jsonl", [{"type": "session_meta", "payload": {}}])
    claude = _write(
        tmp_path / "transcript.jsonl",
        [{"type": "user", "uuid": "u", "message": {"content": "hi"}}],
    )
    assert is_codex_format(codex) is True
    assert is_codex_format(claude) is False
    assert is_codex_format(tmp_path / "missing.jsonl") is False


def test_find_latest_codex_session_picks_newest(tmp_path: Path) -> None:
    older = _write(tmp_path / "2025" / "01" / "01" / "rollout-a.jsonl", [])
    newer = _write(tmp_path / "2025" / "01" / "02" / "rollout-b.jsonl", [])
    _write(tmp_path / "2025" / "01" / "03" / "notes.jsonl", [])
    os.utime(older, (1_000_000, 1_000_000))
    os.utime(newer, (2_000_000, 2_000_000))

    assert find_latest_codex_session(tmp_path) == newer
    assert find_latest_codex_session(tmp_path / "missing") is None
