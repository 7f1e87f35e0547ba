from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from vigil.logging_setup import get_logger

DECISIONS_DIRNAME = "decisions"
SESSIONS_DIRNAME = "sessions"
FILENAME_FORMAT = "%Y-%m-%dT%H-%M-%SZ.json"


class DecisionType(str, Enum):
    FEEDBACK_DELIVERED = "feedback_delivered"
    OVERRIDE_GRANTED = "override_granted"
    PRECOMPACT_SNAPSHOT = "precompact_snapshot"


class Decision(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    timestamp: datetime
    session_id: str | None = None
    decision_type: DecisionType = Field(alias="type")
    context: str | None = None
    trigger: str | None = None

    @classmethod
    def feedback_delivered(
        cls,
        session_id: str | None,
        feedback: str,
        *,
        timestamp: datetime | None = None,
    ) -> "Decision":
        return cls(
            timestamp=timestamp or datetime.now(timezone.utc),
            session_id=session_id,
            decision_type=DecisionType.FEEDBACK_DELIVERED,
            context=feedback,
        )


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class DecisionJournal:
    def __init__(self, session_dir: str | Path) -> None:
        self.decisions_dir = Path(session_dir) / DECISIONS_DIRNAME
        self.logger = get_logger(__name__)

    def write(self, decision: Decision) -> Path:
        self.decisions_dir.mkdir(parents=True, exist_ok=True)
        path = self.decisions_dir / _utc(decision.timestamp).strftime(FILENAME_FORMAT)
        payload = decision.model_dump(mode="json", by_alias=True)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        self.logger.debug(
            "Decision recorded type=%s path=%s",
            decision.decision_type.value,
            path,
        )
        return path

    def read_all(self) -> list[Decision]:
        if not self.decisions_dir.is_dir():
            return []
        decisions: list[Decision] = []
        for path in sorted(self.decisions_dir.glob("*.json")):
            try:
                decisions.append(
                    Decision.model_validate_json(path.read_text(encoding="utf-8"))
                )
            except (ValidationError, UnicodeDecodeError, OSError) as exc:
                self.logger.warning(
                    "Skipping malformed decision file %s: %s",
                    path,
                    exc.__class__.__name__,
                )
        decisions.sort(key=lambda d: _utc(d.timestamp))
        return decisions

    def recent(self, decision_type: DecisionType, limit: int) -> list[Decision]:
        if limit <= 0:
            return []
        matching = [d for d in reversed(self.read_all()) if d.decision_type == decision_type]
        return list(reversed(matching[:limit]))


def read_all_sessions(state_root: str | Path) -> list[Decision]:
    root = Path(state_root)
    decisions = DecisionJournal(root).read_all()
    sessions_dir = root / SESSIONS_DIRNAME
    if sessions_dir.is_dir():
        for session_dir in sorted(sessions_dir.iterdir()):
            if session_dir.is_dir():
                decisions.extend(DecisionJournal(session_dir).read_all())
    decisions.sort(key=lambda d: _utc(d.timestamp))
    return decisions
