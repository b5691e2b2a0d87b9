"""Simple JSON-based config store."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path

logger = logging.getLogger(__name__)

APP_NAME = "dev-voice"


def state_dir() -> Path:
    base = os.environ.get("XDG_STATE_HOME") or str(Path.home() / ".local" / "state")
    return Path(base) / APP_NAME


def default_socket_path() -> str:
    runtime = os.environ.get("XDG_RUNTIME_DIR")
    if runtime:
        return str(Path(runtime) / f"{APP_NAME}.sock")
    return str(state_dir() / "daemon.sock")


@dataclass
class DictationConfig:
    target_model: str = "openai/whisper-base.en"
    draft_model: str = ""
    prompt: str = ""
    draft_k: int = 4
    timeout_s: float = 300.0
    sample_rate: int = 16000
    max_tokens: int = 224
    decode_budget_s: float = 600.0
    language: str = "en"
    device: str = "auto"
    output_mode: str = "type"
    notify: bool = True
    refresh_command: str = ""
    socket_path: str = field(default_factory=default_socket_path)
    marker_path: str = field(default_factory=lambda: str(state_dir() / "session.json"))

    @classmethod
    def from_dict(cls, data: dict) -> "DictationConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
        config = cls(**{k: v for k, v in data.items() if k in known})
        if config.draft_k < 0:
            logger.warning("draft_k must not be negative, disabling speculative decoding")
            config.draft_k = 0
        return config


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / APP_NAME / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> DictationConfig:
        try:
            return DictationConfig.from_dict(self._read_all())
        except TypeError as exc:
            logger.warning("Invalid config %s, using defaults: %s", self._path, exc)
            return DictationConfig()

    def save(self, config: DictationConfig) -> None:
        self._write_all(asdict(config))

    def reset(self) -> DictationConfig:
        config = DictationConfig()
        self.save(config)
        return config

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
