from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from vigil.config import AppConfig
from vigil.engine.base import EngineResponse, ReasoningEngine
from vigil.engine.claude_cli import ClaudeEngine
from vigil.engine.codex_cli import CodexEngine
from vigil.engine.errors import EngineRateLimitedError
from vigil.evaluation.context import ContextWindowBuilder
from vigil.evaluation.response_parser import (
    Confidence,
    ParsedVerdict,
    parse_decision_response,
)
from vigil.logging_setup import get_logger
from vigil.prompts.manager import PromptManager
from vigil.state.feedback import FeedbackMailbox
from vigil.state.journal import SESSIONS_DIRNAME, Decision, DecisionJournal
from vigil.state.lock import EvaluationLock
from vigil.state.watermark import Watermark, WatermarkError, WatermarkManager
from vigil.transcript.codex import (
    find_latest_codex_session,
    format_codex_context,
    is_codex_format,
    read_codex_transcript,
)
from vigil.transcript.reader import read_transcript, select_new

NO_CONCERNS = "No concerns."
PENDING_CHANGE_FILENAME = "pending_change.txt"
CODEX_LOCK_FILENAME = "codex.lock"


@dataclass(frozen=True)
class EvaluationResult:
    feedback: str
    blocks: bool
    confidence: Confidence | None = None
    cost_usd: float = 0.0
    skipped: bool = False
    skip_reason: str | None = None

    @classmethod
    def no_concerns(cls) -> "EvaluationResult":
        return cls(feedback=NO_CONCERNS, blocks=False)

    @classmethod
    def skip(cls, reason: str) -> "EvaluationResult":
        return cls(feedback=NO_CONCERNS, blocks=False, skipped=True, skip_reason=reason)


def _safe_path_part(value: str) -> str:
    normalized = re.sub(r"[^A-Za-z0-9_.-]+", "-", value.strip()).strip("-.")
    return normalized or "anonymous"


def session_dir_for(state_root: str | Path, session_id: str | None) -> Path:
    root = Path(state_root)
    if not session_id:
        return root
    return root / SESSIONS_DIRNAME / _safe_path_part(session_id)


def build_engine(config: AppConfig) -> ReasoningEngine:
    if config.engine.backend == "codex":
        return CodexEngine(config.engine)
    return ClaudeEngine(config.engine)


def feedback_with_confidence(verdict: ParsedVerdict) -> str:
    if verdict.confidence is None:
        return verdict.feedback
    return f"CONFIDENCE: {verdict.confidence.value}\n\n{verdict.feedback}"


class EvaluationPipeline:
    def __init__(
        self,
        *,
        config: AppConfig,
        state_root: str | Path,
        engine: ReasoningEngine | None = None,
        prompt_manager: PromptManager | None = None,
    ) -> None:
        self.config = config
        self.state_root = Path(state_root)
        self.engine = engine or build_engine(config)
        self.prompt_manager = prompt_manager or PromptManager(self.state_root)
        self.logger = get_logger(__name__)

    def session_dir(self, session_id: str | None) -> Path:
        return session_dir_for(self.state_root, session_id)

    def _load_watermark(self, manager: WatermarkManager) -> Watermark:
        try:
            return manager.load()
        except WatermarkError as exc:
            self.logger.warning("Starting from an empty watermark: %s", exc)
            return Watermark()

    @staticmethod
    def _pending_change(session_dir: Path) -> str:
        path = session_dir / PENDING_CHANGE_FILENAME
        if not path.is_file():
            return ""
        return path.read_text(encoding="utf-8", errors="replace")

    def evaluate(
        self,
        transcript_path: str | Path,
        session_id: str | None = None,
        *,
        now: datetime | None = None,
    ) -> EvaluationResult:
        session_dir = self.session_dir(session_id)
        session_dir.mkdir(parents=True, exist_ok=True)
        watermarks = WatermarkManager(session_dir)
        watermark = self._load_watermark(watermarks)
        if watermark.disabled:
            self.logger.info("Review disabled for session dir %s", session_dir)
            return EvaluationResult.skip("disabled")

        # Everything appended after this instant belongs to the next cycle,
        # however long the engine call below takes.
        read_at = now or datetime.now(timezone.utc)
        journal = DecisionJournal(session_dir)
        builder = ContextWindowBuilder(config=self.config, journal=journal)

        if is_codex_format(transcript_path):
            codex_entries = read_codex_transcript(transcript_path)
            if not codex_entries:
                return EvaluationResult.no_concerns()
            conversation = format_codex_context(
                codex_entries,
                text_max_chars=self.config.context.codex_text_max_chars,
                output_max_chars=self.config.context.tool_result_max_chars,
            )
            carryover = builder.carryover([], watermark.last_evaluated, session_id)
            source = "Codex"
        else:
            entries = read_transcript(transcript_path)
            cursor = watermark.last_evaluated
            new_entries = select_new(entries, cursor, session_id)
            if not new_entries:
                self.logger.debug("Nothing new since %s", cursor)
                return EvaluationResult.no_concerns()
            conversation = builder.format_window(new_entries)
            carryover = builder.carryover(entries, cursor, session_id)
            source = "Claude Code"

        message = builder.compose_message(
            conversation,
            carryover=carryover,
            pending_change=self._pending_change(session_dir),
            source=source,
        )
        self.logger.debug(
            "Calling %s engine context_chars=%d carryover_chars=%d",
            self.engine.name,
            len(conversation),
            len(carryover),
        )
        response = self.engine.invoke(self.prompt_manager.system_prompt(), message)
        verdict = parse_decision_response(response.result.strip())

        try:
            watermarks.update(lambda w: w.mark_evaluated_at(read_at))
        except WatermarkError:
            watermark.mark_evaluated_at(read_at)
            watermarks.save(watermark)

        if verdict.blocks:
            self._record_block(
                session_dir=session_dir,
                session_id=session_id,
                verdict=verdict,
                response=response,
            )
        return EvaluationResult(
            feedback=verdict.feedback,
            blocks=verdict.blocks,
            confidence=verdict.confidence,
            cost_usd=response.cost_usd,
        )

    def _record_block(
        self,
        *,
        session_dir: Path,
        session_id: str | None,
        verdict: ParsedVerdict,
        response: EngineResponse,
    ) -> None:
        # Each write is useful on its own; a failure in one never undoes the other.
        message = feedback_with_confidence(verdict)
        try:
            FeedbackMailbox(session_dir).write(message)
        except OSError as exc:
            self.logger.error(
                "Failed to write feedback file in %s: %s\nFeedback content:\n%s",
                session_dir,
                exc,
                message,
            )
        decision = Decision.feedback_delivered(
            session_id or response.session_id or None, verdict.feedback
        )
        try:
            DecisionJournal(session_dir).write(decision)
        except OSError as exc:
            self.logger.warning("Failed to write decision journal: %s", exc)

    def evaluate_codex(self, session_path: str | Path | None = None) -> EvaluationResult:
        lock = EvaluationLock(
            self.state_root / CODEX_LOCK_FILENAME,
            stale_after_seconds=self.config.lock.stale_after_seconds,
        )
        if not lock.acquire():
            self.logger.info("Another evaluation in progress (lock file exists); skipping.")
            return EvaluationResult.skip("already-running")
        with lock:
            path = Path(session_path) if session_path else find_latest_codex_session()
            if path is None:
                raise FileNotFoundError("No Codex sessions found in ~/.codex/sessions/")
            self.logger.info("Evaluating Codex session %s", path.name)

            entries = read_codex_transcript(path)
            if not entries:
                return EvaluationResult.no_concerns()
            conversation = format_codex_context(
                entries,
                text_max_chars=self.config.context.codex_text_max_chars,
                output_max_chars=self.config.context.tool_result_max_chars,
            )
            self.logger.info(
                "Codex context: %d entries, %dKB", len(entries), len(conversation) // 1024
            )
            message = ContextWindowBuilder.compose_message(conversation, source="Codex")
            try:
                response = self.engine.invoke(self.prompt_manager.system_prompt(), message)
            except EngineRateLimitedError as exc:
                self.logger.warning("Skipping Codex evaluation: %s", exc)
                return EvaluationResult.skip("rate-limited")

            verdict = parse_decision_response(response.result.strip())
            if verdict.blocks:
                self.logger.info("BLOCK - concerns found")
            else:
                self.logger.info("ALLOW - no concerns")
            return EvaluationResult(
                feedback=verdict.feedback,
                blocks=verdict.blocks,
                confidence=verdict.confidence,
                cost_usd=response.cost_usd,
            )
