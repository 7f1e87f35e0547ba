from __future__ import annotations

import time
from datetime import datetime, timezone
from pathlib import Path

from vigil.logging_setup import get_logger


class EvaluationLock:
    """Advisory lock file guarded by an age-based staleness timeout.

    Only the Codex evaluation path takes this lock. It is not a mutual
    exclusion primitive: two processes racing between the existence check
    and the write can both proceed.
    """

    def __init__(self, lock_path: str | Path, *, stale_after_seconds: float) -> None:
        self.lock_path = Path(lock_path)
        self.stale_after_seconds = stale_after_seconds
        self.held = False
        self.logger = get_logger(__name__)

    def _age_seconds(self) -> float | None:
        try:
            return max(0.0, time.time() - self.lock_path.stat().st_mtime)
        except FileNotFoundError:
            return None

    def acquire(self) -> bool:
        age = self._age_seconds()
        if age is not None:
            if age < self.stale_after_seconds:
                return False
            self.logger.info("Removing stale lock %s (age %.0fs)", self.lock_path, age)
            self.lock_path.unlink(missing_ok=True)
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            self.lock_path.write_text(datetime.now(timezone.utc).isoformat(), encoding="utf-8")
        except OSError as exc:
            self.logger.warning(
                "Could not create lock file %s: %s", self.lock_path, exc.__class__.__name__
            )
        self.held = True
        return True

    def release(self) -> None:
        if not self.held:
            return
        self.lock_path.unlink(missing_ok=True)
        self.held = False

    def __enter__(self) -> "EvaluationLock":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
