from __future__ import annotations

from pathlib import Path

from log_setup import _env_int, resolve_log_dir


def test_log_dir_follows_env(monkeypatch, tmp_path: Path) -> None:  # noqa: ANN001
    monkeypatch.setenv("DEV_VOICE_LOG_DIR", str(tmp_path / "logs"))

    assert resolve_log_dir() == tmp_path / "logs"
    assert (tmp_path / "logs").is_dir()


def test_log_dir_defaults_to_state_dir(monkeypatch, tmp_path: Path) -> None:  # noqa: ANN001
    monkeypatch.delenv("DEV_VOICE_LOG_DIR", raising=False)
    monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path))

    assert resolve_log_dir() == tmp_path / "dev-voice" / "logs"


def test_bad_rotation_setting_uses_default(monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setenv("DEV_VOICE_LOG_BACKUP_COUNT", "lots")
    assert _env_int("DEV_VOICE_LOG_BACKUP_COUNT", 5) == 5

    monkeypatch.setenv("DEV_VOICE_LOG_BACKUP_COUNT", "2")
    assert _env_int("DEV_VOICE_LOG_BACKUP_COUNT", 5) == 2
