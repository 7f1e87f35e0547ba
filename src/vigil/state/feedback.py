from __future__ import annotations

from pathlib import Path

from vigil.logging_setup import get_logger

FEEDBACK_FILENAME = "feedback"


class FeedbackMailbox:
    """Single-slot hand-off of the latest blocking verdict; a newer write replaces an unread one."""

    def __init__(self, session_dir: str | Path) -> None:
        self.feedback_path = Path(session_dir) / FEEDBACK_FILENAME
        self.logger = get_logger(__name__)

    def has_pending(self) -> bool:
        try:
            return self.feedback_path.stat().st_size > 0
        except OSError:
            return False

    def write(self, message: str) -> None:
        self.feedback_path.parent.mkdir(parents=True, exist_ok=True)
        self.feedback_path.write_text(message, encoding="utf-8")

    def take(self) -> str | None:
        if not self.has_pending():
            return None
        try:
            content = self.feedback_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            self.feedback_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            self.logger.warning(
                "Could not clear feedback file %s: %s",
                self.feedback_path,
                exc.__class__.__name__,
            )
        return content
