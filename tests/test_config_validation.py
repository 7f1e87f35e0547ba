from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError
import yaml

from vigil.config import (
    AppConfig,
    load_config,
    resolve_config_path,
    resolve_state_root,
)


def _valid_config() -> dict:
    return {
        "review": {"eval_interval_minutes": 10},
        "carryover": {"decision_count": 3, "window_minutes": 7},
        "context": {"tool_result_max_chars": 800, "codex_text_max_chars": 1500},
        "engine": {
            "backend": "claude",
            "model": "sonnet",
            "timeout_ms": 120000,
            "tools": ["Read", "Grep"],
        },
        "lock": {"stale_after_seconds": 120},
        "logging": {"level": "DEBUG", "output": "console"},
    }


@pytest.fixture(autouse=True)
def _no_dotenv(monkeypatch) -> None:
    monkeypatch.setenv("VIGIL_DISABLE_DOTENV", "1")
    monkeypatch.delenv("VIGIL_CONFIG", raising=False)
    monkeypatch.delenv("VIGIL_STATE_DIR", raising=False)


def test_defaults_without_config_file(tmp_path: Path) -> None:
    config = load_config(tmp_path / "missing.yaml")
    assert config == AppConfig()
    assert config.carryover.decision_count == 2
    assert config.carryover.window_minutes == 5
    assert config.review.eval_interval_minutes == 5
    assert config.engine.backend == "claude"
    assert config.lock.stale_after_seconds == 300


def test_load_config_reads_yaml(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(yaml.safe_dump(_valid_config(), sort_keys=False), encoding="utf-8")

    config = load_config(cfg_path)

    assert config.review.eval_interval_minutes == 10
    assert config.carryover.decision_count == 3
    assert config.engine.model == "sonnet"
    assert config.engine.tools == ["Read", "Grep"]
    assert config.logging.level == "DEBUG"


def test_empty_yaml_uses_defaults(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("", encoding="utf-8")
    assert load_config(cfg_path) == AppConfig()


def test_non_mapping_root_is_rejected(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(TypeError):
        load_config(cfg_path)


def test_unknown_keys_are_rejected() -> None:
    payload = _valid_config()
    payload["engine"]["temperature"] = 0.2
    with pytest.raises(ValidationError):
        AppConfig.model_validate(payload)


def test_blank_model_is_rejected() -> None:
    payload = _valid_config()
    payload["engine"]["model"] = "   "
    with pytest.raises(ValidationError):
        AppConfig.model_validate(payload)


def test_negative_carryover_is_rejected() -> None:
    payload = _valid_config()
    payload["carryover"]["decision_count"] = -1
    with pytest.raises(ValidationError):
        AppConfig.model_validate(payload)


def test_unknown_backend_is_rejected() -> None:
    payload = _valid_config()
    payload["engine"]["backend"] = "gpt"
    with pytest.raises(ValidationError):
        AppConfig.model_validate(payload)


def test_env_references_are_expanded(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("VIGIL_MODEL", "opus")
    payload = _valid_config()
    payload["engine"]["model"] = "${ENV:VIGIL_MODEL}"
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(yaml.safe_dump(payload), encoding="utf-8")

    assert load_config(cfg_path).engine.model == "opus"


def test_dotenv_file_feeds_env_references(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("VIGIL_DISABLE_DOTENV", raising=False)
    # Registered first so teardown removes the value load_dotenv exports.
    monkeypatch.setenv("VIGIL_TEST_MODEL", "")
    monkeypatch.delenv("VIGIL_TEST_MODEL")
    env_path = tmp_path / "vigil.env"
    env_path.write_text("VIGIL_TEST_MODEL=haiku\n", encoding="utf-8")
    monkeypatch.setenv("VIGIL_DOTENV_PATH", str(env_path))
    payload = _valid_config()
    payload["engine"]["model"] = "${ENV:VIGIL_TEST_MODEL}"
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(yaml.safe_dump(payload), encoding="utf-8")

    assert load_config(cfg_path).engine.model == "haiku"


def test_state_root_and_config_path_resolution(tmp_path: Path, monkeypatch) -> None:
    assert resolve_state_root() == Path(".vigil")
    assert resolve_state_root(tmp_path) == tmp_path
    assert resolve_config_path(state_root=tmp_path) == tmp_path / "config.yaml"

    monkeypatch.setenv("VIGIL_STATE_DIR", str(tmp_path / "elsewhere"))
    assert resolve_state_root() == tmp_path / "elsewhere"

    monkeypatch.setenv("VIGIL_CONFIG", str(tmp_path / "custom.yaml"))
    assert resolve_config_path(state_root=tmp_path) == tmp_path / "custom.yaml"
    assert resolve_config_path(tmp_path / "explicit.yaml") == tmp_path / "explicit.yaml"


def test_load_config_finds_file_in_state_root(tmp_path: Path) -> None:
    (tmp_path / "config.yaml").write_text(
        yaml.safe_dump({"review": {"eval_interval_minutes": 1}}), encoding="utf-8"
    )
    assert load_config(state_root=tmp_path).review.eval_interval_minutes == 1
