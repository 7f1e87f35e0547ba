from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta

from vigil.config import AppConfig
from vigil.state.journal import DecisionJournal, DecisionType
from vigil.transcript.models import TranscriptEntry
from vigil.transcript.reader import format_context, messages_in_window

PREVIOUS_CONTEXT_OPEN = "--- PREVIOUS CONTEXT ---"
PREVIOUS_CONTEXT_CLOSE = "--- END PREVIOUS CONTEXT ---"
RECENT_DECISIONS_HEADER = "Recent decisions:"
RECENT_ACTIVITY_HEADER = "Recent activity (before current evaluation window):"


class ContextWindowBuilder:
    def __init__(self, *, config: AppConfig, journal: DecisionJournal) -> None:
        self.config = config
        self.journal = journal

    def format_window(self, entries: Sequence[TranscriptEntry]) -> str:
        return format_context(
            entries, tool_result_max_chars=self.config.context.tool_result_max_chars
        )

    def _recent_decisions(self) -> list[str]:
        decisions = self.journal.recent(
            DecisionType.FEEDBACK_DELIVERED, self.config.carryover.decision_count
        )
        if not decisions:
            return []
        lines = [RECENT_DECISIONS_HEADER]
        for decision in decisions:
            feedback = decision.context or "(no context)"
            lines.append(f"- [{decision.timestamp.strftime('%H:%M:%S')}]: {feedback}")
        lines.append("")
        return lines

    def _recent_activity(
        self,
        entries: Sequence[TranscriptEntry],
        cursor: datetime | None,
        session_filter: str | None,
    ) -> list[str]:
        if cursor is None:
            return []
        window_start = cursor - timedelta(minutes=self.config.carryover.window_minutes)
        recent = messages_in_window(entries, window_start, cursor, session_filter)
        if not recent:
            return []
        return [RECENT_ACTIVITY_HEADER, self.format_window(recent)]

    def carryover(
        self,
        entries: Sequence[TranscriptEntry],
        cursor: datetime | None,
        session_filter: str | None = None,
    ) -> str:
        parts = self._recent_decisions() + self._recent_activity(
            entries, cursor, session_filter
        )
        if not parts:
            return ""
        body = "\n".join(parts)
        return f"{PREVIOUS_CONTEXT_OPEN}\n{body}\n{PREVIOUS_CONTEXT_CLOSE}\n\n"

    @staticmethod
    def compose_message(
        conversation: str,
        *,
        carryover: str = "",
        pending_change: str = "",
        source: str = "Claude Code",
    ) -> str:
        sections = [
            f"Review the following {source} conversation and provide feedback.\n\n",
            carryover,
            "--- CONVERSATION ---\n",
            conversation,
            "\n--- END CONVERSATION ---",
        ]
        if pending_change.strip():
            sections.append(
                "\n--- PENDING CHANGE (evaluate this!) ---\n"
                f"{pending_change}\n"
                "--- END PENDING CHANGE ---\n"
            )
        return "".join(sections)
