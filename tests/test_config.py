from __future__ import annotations

import json
from pathlib import Path

from config import DictationConfig, JsonConfigStore, default_socket_path, state_dir


def test_config_read_write(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    store = JsonConfigStore(path=path)

    config = store.load()
    assert config.target_model == "openai/whisper-base.en"
    assert config.draft_k == 4
    assert config.decode_budget_s == 600.0

    config.draft_model = "openai/whisper-tiny.en"
    config.prompt = "rust tokio serde"
    store.save(config)

    reloaded = JsonConfigStore(path=path).load()
    assert reloaded.draft_model == "openai/whisper-tiny.en"
    assert reloaded.prompt == "rust tokio serde"


def test_config_invalid_json_fallback(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{invalid", encoding="utf-8")

    config = JsonConfigStore(path=path).load()
    assert config.target_model == DictationConfig().target_model


def test_unknown_keys_are_ignored(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"api_key": "abc", "timeout_s": 60}), encoding="utf-8")

    config = JsonConfigStore(path=path).load()
    assert config.timeout_s == 60
    assert not hasattr(config, "api_key")


def test_negative_draft_k_disables_drafting() -> None:
    assert DictationConfig.from_dict({"draft_k": -3}).draft_k == 0


def test_reset_restores_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    store = JsonConfigStore(path=path)
    store.save(DictationConfig(prompt="custom"))

    assert store.reset().prompt == ""
    assert JsonConfigStore(path=path).load().prompt == ""


def test_paths_follow_xdg_variables(monkeypatch, tmp_path: Path) -> None:  # noqa: ANN001
    monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path / "state"))
    monkeypatch.setenv("XDG_RUNTIME_DIR", str(tmp_path / "run"))

    assert state_dir() == tmp_path / "state" / "dev-voice"
    assert default_socket_path() == str(tmp_path / "run" / "dev-voice.sock")
    assert DictationConfig().marker_path == str(tmp_path / "state" / "dev-voice" / "session.json")


def test_socket_falls_back_to_state_dir(monkeypatch, tmp_path: Path) -> None:  # noqa: ANN001
    monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path / "state"))
    monkeypatch.delenv("XDG_RUNTIME_DIR", raising=False)

    assert default_socket_path() == str(tmp_path / "state" / "dev-voice" / "daemon.sock")
