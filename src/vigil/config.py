from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

ENV_REF_PATTERN = re.compile(r"^\$\{ENV:([A-Z0-9_]+)\}$")
DEFAULT_STATE_DIR = Path(".vigil")
CONFIG_FILENAME = "config.yaml"


class StrictConfigModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ReviewConfig(StrictConfigModel):
    eval_interval_minutes: int = Field(default=5, ge=0)


class CarryoverConfig(StrictConfigModel):
    decision_count: int = Field(default=2, ge=0)
    window_minutes: int = Field(default=5, ge=0)


class ContextConfig(StrictConfigModel):
    tool_result_max_chars: int = Field(default=500, gt=0)
    codex_text_max_chars: int = Field(default=2000, gt=0)


class EngineConfig(StrictConfigModel):
    backend: Literal["claude", "codex"] = "claude"
    model: str | None = None
    timeout_ms: int = Field(default=300_000, gt=0)
    codex_timeout_ms: int = Field(default=180_000, gt=0)
    poll_interval_ms: int = Field(default=100, gt=0)
    claude_executable: str = "claude"
    codex_executable: str = "codex"
    tools: list[str] = Field(default_factory=lambda: ["Bash", "Read", "Glob", "Grep"])

    @field_validator("model")
    @classmethod
    def _model_non_empty(cls, value: str | None) -> str | None:
        if value is None:
            return None
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("engine.model must not be empty when provided.")
        return trimmed

    @field_validator("claude_executable", "codex_executable")
    @classmethod
    def _executable_non_empty(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Executable name must not be empty.")
        return trimmed


class LockConfig(StrictConfigModel):
    stale_after_seconds: int = Field(default=300, gt=0)


class LoggingConfig(StrictConfigModel):
    level: Literal["ERROR", "WARNING", "INFO", "DEBUG", "TRACE"] = "INFO"
    output: Literal["console", "file", "both"] = "console"
    directory: Path = Path("logs")
    filename: str = "vigil.log"
    daily_rotation: bool = True
    retention_days: int = Field(default=14, ge=0)
    utc: bool = True


class AppConfig(StrictConfigModel):
    review: ReviewConfig = Field(default_factory=ReviewConfig)
    carryover: CarryoverConfig = Field(default_factory=CarryoverConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    lock: LockConfig = Field(default_factory=LockConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _expand_env_refs(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _expand_env_refs(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env_refs(v) for v in value]
    if isinstance(value, str):
        match = ENV_REF_PATTERN.match(value.strip())
        if match:
            return os.getenv(match.group(1))
    return value


def _maybe_load_dotenv() -> None:
    disabled = os.getenv("VIGIL_DISABLE_DOTENV", "").strip().lower() in {
        "1",
        "true",
        "yes",
        "on",
    }
    if disabled:
        return
    dotenv_path = Path(os.getenv("VIGIL_DOTENV_PATH", ".env"))
    if dotenv_path.exists():
        load_dotenv(dotenv_path=dotenv_path, override=False)


def resolve_state_root(state_dir: str | Path | None = None) -> Path:
    if state_dir:
        return Path(state_dir)
    env_state_dir = os.getenv("VIGIL_STATE_DIR", "").strip()
    if env_state_dir:
        return Path(env_state_dir)
    return DEFAULT_STATE_DIR


def resolve_config_path(
    config_path: str | Path | None = None, *, state_root: str | Path | None = None
) -> Path:
    if config_path:
        return Path(config_path)
    env_config = os.getenv("VIGIL_CONFIG", "").strip()
    if env_config:
        return Path(env_config)
    return resolve_state_root(state_root) / CONFIG_FILENAME


def load_config(
    config_path: str | Path | None = None, *, state_root: str | Path | None = None
) -> AppConfig:
    _maybe_load_dotenv()
    path = resolve_config_path(config_path, state_root=state_root)
    if not path.exists():
        return AppConfig()
    with path.open("r", encoding="utf-8") as f:
        loaded = yaml.safe_load(f)
    if loaded is None:
        return AppConfig()
    if not isinstance(loaded, dict):
        raise TypeError(f"Config root must be a YAML mapping/object: {path}")

    raw: dict[str, Any] = loaded
    return AppConfig.model_validate(_expand_env_refs(raw))
