from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

from vigil import __version__
from vigil.config import AppConfig, LoggingConfig, load_config, resolve_state_root
from vigil.engine.base import RECURSION_GUARD_ENV
from vigil.engine.errors import EngineError
from vigil.evaluation.pipeline import EvaluationPipeline, session_dir_for
from vigil.logging_setup import setup_logging
from vigil.state.feedback import FeedbackMailbox
from vigil.state.journal import read_all_sessions
from vigil.state.watermark import WatermarkError, should_evaluate
from vigil.transcript.reader import REMINDER_RE

HISTORY_CONTEXT_PREVIEW_CHARS = 200


def _state_root(args: argparse.Namespace) -> Path:
    return resolve_state_root(getattr(args, "state_dir", None))


def _load_app_config(args: argparse.Namespace) -> AppConfig:
    return load_config(getattr(args, "config_path", None), state_root=_state_root(args))


def _session_dir(args: argparse.Namespace) -> Path:
    return session_dir_for(_state_root(args), getattr(args, "session_id", None))


def _logging_config(args: argparse.Namespace, config: AppConfig) -> LoggingConfig:
    directory = config.logging.directory
    if directory.is_absolute():
        return config.logging
    return config.logging.model_copy(update={"directory": _state_root(args) / directory})


def _recursion_guard_active() -> bool:
    return os.getenv(RECURSION_GUARD_ENV, "").strip() == "1"


def _build_pipeline(args: argparse.Namespace, config: AppConfig) -> EvaluationPipeline:
    return EvaluationPipeline(config=config, state_root=_state_root(args))


def _cmd_version() -> int:
    print(f"vigil {__version__}")
    return 0


def _cmd_evaluate(args: argparse.Namespace) -> int:
    if _recursion_guard_active():
        return 0
    try:
        config = _load_app_config(args)
    except Exception as exc:
        print(f"Config load failed: {exc.__class__.__name__}: {exc}", file=sys.stderr)
        return 1
    logger = setup_logging(_logging_config(args, config))
    pipeline = _build_pipeline(args, config)
    try:
        result = pipeline.evaluate(args.transcript_path, args.session_id)
    except (EngineError, OSError, WatermarkError) as exc:
        logger.error("Evaluation failed: %s", exc)
        print(f"Evaluation failed: {exc}", file=sys.stderr)
        return 1

    print(json.dumps({"has_concerns": result.blocks, "cost_usd": result.cost_usd}))
    if result.blocks:
        print(result.feedback, file=sys.stderr)
    return 0


def _cmd_evaluate_codex(args: argparse.Namespace) -> int:
    if _recursion_guard_active():
        return 0
    try:
        config = _load_app_config(args)
    except Exception as exc:
        print(f"Config load failed: {exc.__class__.__name__}: {exc}", file=sys.stderr)
        return 1
    logger = setup_logging(_logging_config(args, config))
    pipeline = _build_pipeline(args, config)
    try:
        result = pipeline.evaluate_codex(getattr(args, "session_path", None))
    except (EngineError, OSError) as exc:
        logger.error("Codex evaluation failed: %s", exc)
        print(f"Evaluation failed: {exc}", file=sys.stderr)
        return 1

    if result.skipped:
        print(json.dumps({"skipped": True, "reason": result.skip_reason}))
        return 0
    print(json.dumps({"has_concerns": result.blocks, "cost_usd": result.cost_usd}))
    if result.blocks:
        print(result.feedback, file=sys.stderr)
    return 0


def _cmd_should_eval(args: argparse.Namespace) -> int:
    try:
        config = _load_app_config(args)
    except Exception as exc:
        print(f"Config load failed: {exc.__class__.__name__}: {exc}", file=sys.stderr)
        return 1
    due = should_evaluate(
        _session_dir(args), interval_minutes=config.review.eval_interval_minutes
    )
    print("yes" if due else "no")
    return 0 if due else 1


def _cmd_has_feedback(args: argparse.Namespace) -> int:
    return 0 if FeedbackMailbox(_session_dir(args)).has_pending() else 1


def _cmd_get_feedback(args: argparse.Namespace) -> int:
    content = FeedbackMailbox(_session_dir(args)).take()
    if content is None:
        print("No pending feedback.")
        return 0
    print(content)
    return 0


def _history_preview(text: str) -> str:
    cleaned = " ".join(REMINDER_RE.sub("", text).split())
    if len(cleaned) <= HISTORY_CONTEXT_PREVIEW_CHARS:
        return cleaned
    return cleaned[:HISTORY_CONTEXT_PREVIEW_CHARS] + "..."


def _cmd_history(args: argparse.Namespace) -> int:
    decisions = read_all_sessions(_state_root(args))
    if not decisions:
        print("No decisions recorded.")
        return 0
    limit = max(0, int(args.limit))
    selected = decisions[-limit:] if limit else []
    for decision in selected:
        stamp = decision.timestamp.strftime("%Y-%m-%d %H:%M:%S")
        session = decision.session_id or "-"
        print(f"[{stamp}] {decision.decision_type.value} session={session}")
        if decision.context:
            print(f"    {_history_preview(decision.context)}")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vigil")
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--state-dir",
        dest="state_dir",
        default=None,
        help="State directory (default: $VIGIL_STATE_DIR or .vigil)",
    )
    parser.add_argument("--config", dest="config_path", default=None)
    subparsers = parser.add_subparsers(dest="command")

    evaluate_parser = subparsers.add_parser(
        "evaluate", help="Review new transcript activity since the last evaluation"
    )
    evaluate_parser.add_argument("--transcript-path", required=True)
    evaluate_parser.add_argument("--session-id", default=None)

    codex_parser = subparsers.add_parser(
        "evaluate-codex", help="Review a Codex session (newest one by default)"
    )
    codex_parser.add_argument("--session", dest="session_path", default=None)

    should_eval_parser = subparsers.add_parser(
        "should-eval", help="Print yes/no: is a periodic review due?"
    )
    should_eval_parser.add_argument("--session-id", default=None)

    has_feedback_parser = subparsers.add_parser(
        "has-feedback", help="Exit 0 when unread feedback is pending"
    )
    has_feedback_parser.add_argument("--session-id", default=None)

    get_feedback_parser = subparsers.add_parser(
        "get-feedback", help="Print and clear pending feedback"
    )
    get_feedback_parser.add_argument("--session-id", default=None)

    history_parser = subparsers.add_parser(
        "history", help="Show recent decisions across all sessions"
    )
    history_parser.add_argument("--limit", type=int, default=10)

    subparsers.add_parser("version", help="Print vigil version")
    return parser


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    command = args.command

    if command == "version":
        raise SystemExit(_cmd_version())
    if command == "evaluate":
        raise SystemExit(_cmd_evaluate(args))
    if command == "evaluate-codex":
        raise SystemExit(_cmd_evaluate_codex(args))
    if command == "should-eval":
        raise SystemExit(_cmd_should_eval(args))
    if command == "has-feedback":
        raise SystemExit(_cmd_has_feedback(args))
    if command == "get-feedback":
        raise SystemExit(_cmd_get_feedback(args))
    if command == "history":
        raise SystemExit(_cmd_history(args))

    parser.print_help()
    raise SystemExit(2)


if __name__ == "__main__":
    main()
