from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from vigil.config import AppConfig
from vigil.evaluation.context import ContextWindowBuilder
from vigil.state.journal import Decision, DecisionJournal
from vigil.transcript.models import entry_from_record
from vigil.transcript.reader import select_new


def _user(uuid: str, ts: str, text: str, session: str = "s1") -> dict[str, Any]:
    return {
        "type": "user",
        "uuid": uuid,
        "sessionId": session,
        "timestamp": ts,
        "message": {"role": "user", "content": text},
    }


def _utc(hour: int, minute: int, second: int = 0) -> datetime:
    return datetime(2025, 1, 1, hour, minute, second, tzinfo=timezone.utc)


def _builder(tmp_path: Path, config: AppConfig | None = None) -> ContextWindowBuilder:
    return ContextWindowBuilder(
        config=config or AppConfig(), journal=DecisionJournal(tmp_path)
    )


def test_carryover_is_empty_without_cursor_or_decisions(tmp_path: Path) -> None:
    entries = [entry_from_record(_user("u1", "2025-01-01T10:00:00Z", "hi"))]
    assert _builder(tmp_path).carryover(entries, None) == ""


def test_carryover_lists_recent_decisions_oldest_first(tmp_path: Path) -> None:
    journal = DecisionJournal(tmp_path)
    for minute, text in ((1, "first"), (2, "second"), (3, "third")):
        journal.write(Decision.feedback_delivered("s1", text, timestamp=_utc(9, minute)))

    carryover = _builder(tmp_path).carryover([], None)

    assert carryover == (
        "--- PREVIOUS CONTEXT ---\n"
        "Recent decisions:\n"
        "- [09:02:00]: second\n"
        "- [09:03:00]: third\n"
        "\n"
        "--- END PREVIOUS CONTEXT ---\n\n"
    )


def test_carryover_includes_recent_activity_before_cursor(tmp_path: Path) -> None:
    entries = [
        entry_from_record(_user("u0", "2025-01-01T09:50:00Z", "outside window")),
        entry_from_record(_user("u1", "2025-01-01T09:58:00Z", "inside window")),
        entry_from_record(_user("u2", "2025-01-01T10:03:00Z", "after cursor")),
    ]

    carryover = _builder(tmp_path).carryover(entries, _utc(10, 0))

    assert carryover == (
        "--- PREVIOUS CONTEXT ---\n"
        "Recent activity (before current evaluation window):\n"
        "USER: inside window\n\n"
        "\n--- END PREVIOUS CONTEXT ---\n\n"
    )


def test_carryover_respects_configured_counts(tmp_path: Path) -> None:
    config = AppConfig.model_validate({"carryover": {"decision_count": 0, "window_minutes": 0}})
    journal = DecisionJournal(tmp_path)
    journal.write(Decision.feedback_delivered("s1", "old", timestamp=_utc(9, 0)))
    entries = [entry_from_record(_user("u1", "2025-01-01T09:58:00Z", "earlier"))]

    assert _builder(tmp_path, config).carryover(entries, _utc(10, 0)) == ""


def test_carryover_filters_activity_by_session(tmp_path: Path) -> None:
    entries = [
        entry_from_record(_user("u1", "2025-01-01T09:58:00Z", "mine", session="s1")),
        entry_from_record(_user("u2", "2025-01-01T09:59:00Z", "theirs", session="s2")),
    ]
    carryover = _builder(tmp_path).carryover(entries, _utc(10, 0), "s1")
    assert "USER: mine" in carryover
    assert "theirs" not in carryover


def test_message_written_during_evaluation_is_picked_up_next_cycle(tmp_path: Path) -> None:
    # Cycle 1 reads at 10:00:05 and sees only the 10:00:00 message.
    first = entry_from_record(_user("u1", "2025-01-01T10:00:00Z", "before read"))
    read_at = _utc(10, 0, 5)
    assert [e.uuid for e in select_new([first], None)] == ["u1"]  # type: ignore[union-attr]

    # A message lands at 10:00:10 while the engine call is still running;
    # the watermark stores the read instant, not the completion time.
    late = entry_from_record(_user("u2", "2025-01-01T10:00:10Z", "during evaluation"))
    second_cycle = select_new([first, late], read_at)

    assert [e.uuid for e in second_cycle] == ["u2"]  # type: ignore[union-attr]


def test_compose_message_wraps_sections() -> None:
    message = ContextWindowBuilder.compose_message(
        "USER: hi\n\n",
        carryover="--- PREVIOUS CONTEXT ---\nx\n--- END PREVIOUS CONTEXT ---\n\n",
        pending_change="edit main.py",
    )

    assert message.startswith(
        "Review the following Claude Code conversation and provide feedback.\n\n"
        "--- PREVIOUS CONTEXT ---\n"
    )
    assert "--- CONVERSATION ---\nUSER: hi\n\n\n--- END CONVERSATION ---" in message
    assert message.endswith(
        "--- PENDING CHANGE (evaluate this!) ---\nedit main.py\n--- END PENDING CHANGE ---\n"
    )


def test_compose_message_skips_blank_pending_change() -> None:
    message = ContextWindowBuilder.compose_message("USER: hi\n\n", pending_change="  \n")
    assert "PENDING CHANGE" not in message
    assert message.endswith("--- END CONVERSATION ---")
