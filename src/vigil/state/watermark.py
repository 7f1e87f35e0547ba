from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pydantic import BaseModel, ValidationError

from vigil.logging_setup import get_logger

STATE_FILENAME = "state.json"


class WatermarkError(ValueError):
    pass


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Watermark(BaseModel):
    last_evaluated: datetime | None = None
    disabled: bool = False

    def mark_evaluated_at(self, timestamp: datetime) -> None:
        # Callers pass the instant the transcript was read, never the
        # completion time of the engine call. The cursor never moves back.
        timestamp = _utc(timestamp)
        if self.last_evaluated is not None and timestamp < _utc(self.last_evaluated):
            return
        self.last_evaluated = timestamp


class WatermarkManager:
    def __init__(self, session_dir: str | Path) -> None:
        self.session_dir = Path(session_dir)
        self.state_path = self.session_dir / STATE_FILENAME
        self.logger = get_logger(__name__)

    def load(self) -> Watermark:
        if not self.state_path.exists():
            return Watermark()
        try:
            return Watermark.model_validate_json(
                self.state_path.read_text(encoding="utf-8")
            )
        except (ValidationError, UnicodeDecodeError) as exc:
            raise WatermarkError(f"Unreadable watermark file {self.state_path}: {exc}") from exc

    def save(self, watermark: Watermark) -> None:
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        payload = watermark.model_dump(mode="json")
        self.state_path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")

    def update(self, mutator: Callable[[Watermark], None]) -> Watermark:
        watermark = self.load()
        mutator(watermark)
        self.save(watermark)
        self.logger.debug(
            "Watermark updated path=%s last_evaluated=%s disabled=%s",
            self.state_path,
            watermark.last_evaluated,
            watermark.disabled,
        )
        return watermark


def should_evaluate(
    session_dir: str | Path,
    *,
    interval_minutes: int,
    now: datetime | None = None,
) -> bool:
    try:
        watermark = WatermarkManager(session_dir).load()
    except (OSError, WatermarkError):
        return True
    if watermark.last_evaluated is None:
        return True
    current = now or datetime.now(timezone.utc)
    return _utc(current) - _utc(watermark.last_evaluated) >= timedelta(minutes=interval_minutes)
