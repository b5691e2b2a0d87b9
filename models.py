"""Core data models for the dictation daemon."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from audio_buffer import AudioFrameBuffer


class SessionState(str, Enum):
    IDLE = "IDLE"
    RECORDING = "RECORDING"
    TRANSCRIBING = "TRANSCRIBING"
    ERROR = "ERROR"


class OutputMode(str, Enum):
    TYPE = "type"
    CLIPBOARD = "clipboard"

    @classmethod
    def parse(cls, value: str) -> Optional["OutputMode"]:
        low = value.strip().lower()
        if low in ("type", "inject"):
            return cls.TYPE
        if low in ("clipboard", "copy"):
            return cls.CLIPBOARD
        return None


@dataclass
class AudioFrame:
    pcm16_bytes: bytes
    sample_rate: int = 16000
    channels: int = 1
    timestamp_ms: int = 0


@dataclass
class RecordingSession:
    session_id: str
    owner_pid: int
    started_at: float
    deadline: float
    buffer: "AudioFrameBuffer"
    state: SessionState = SessionState.RECORDING


@dataclass
class SessionMarker:
    """On-disk record naming the process that owns the active session."""

    session_id: str
    pid: int
    started_at: float
    state: str = "recording"

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "pid": self.pid,
            "started_at": self.started_at,
            "state": self.state,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionMarker":
        return cls(
            session_id=str(data["session_id"]),
            pid=int(data["pid"]),
            started_at=float(data["started_at"]),
            state=str(data.get("state", "recording")),
        )


@dataclass
class SpeculativeDecodeState:
    accepted_tokens: list[int] = field(default_factory=list)
    draft_proposal: list[int] = field(default_factory=list)
    position: int = 0
    proposed_count: int = 0
    accepted_draft_count: int = 0
    target_passes: int = 0
    rounds: int = 0


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    token_count: int = 0
    draft_acceptance_rate: float = 0.0
    wall_clock_duration: float = 0.0
    target_passes: int = 0
    speculative: bool = False


@dataclass
class DeliveryResult:
    success: bool
    reason: str
    mode: OutputMode = OutputMode.TYPE
