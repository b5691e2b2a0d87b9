"""Shared error codes, user-facing messages and typed errors."""

from __future__ import annotations

SESSION_BUSY = "SESSION_BUSY"
NO_ACTIVE_SESSION = "NO_ACTIVE_SESSION"
STALE_SESSION_RECOVERED = "STALE_SESSION_RECOVERED"
AUDIO_CAPTURE_ERROR = "AUDIO_CAPTURE_ERROR"
MODEL_LOAD_ERROR = "MODEL_LOAD_ERROR"
DECODE_ERROR = "DECODE_ERROR"
OUTPUT_FAILED = "OUTPUT_FAILED"
PROTOCOL_ERROR = "PROTOCOL_ERROR"

ERROR_MESSAGES = {
    SESSION_BUSY: "A transcription is already in progress.",
    NO_ACTIVE_SESSION: "No recording in progress.",
    STALE_SESSION_RECOVERED: "Discarded a session left behind by a dead process.",
    AUDIO_CAPTURE_ERROR: "Microphone capture failed.",
    MODEL_LOAD_ERROR: "Speech model is unavailable.",
    DECODE_ERROR: "Transcription failed.",
    OUTPUT_FAILED: "Could not deliver text, check the clipboard.",
    PROTOCOL_ERROR: "Daemon message is invalid.",
}


class DictationError(Exception):
    code = DECODE_ERROR
    retryable = False

    def __init__(self, message: str = "") -> None:
        super().__init__(message or ERROR_MESSAGES.get(self.code, self.code))
        self.message = str(self)


class SessionBusy(DictationError):
    code = SESSION_BUSY
    retryable = True


class NoActiveSession(DictationError):
    code = NO_ACTIVE_SESSION


class AudioCaptureError(DictationError):
    code = AUDIO_CAPTURE_ERROR


class ModelLoadError(DictationError):
    """Raised when a model cannot be loaded.

    Fatal at daemon startup; a per-session occurrence is reported as a
    retryable "model unavailable".
    """

    code = MODEL_LOAD_ERROR
    retryable = True


class DecodeError(DictationError):
    code = DECODE_ERROR

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ProtocolError(DictationError):
    code = PROTOCOL_ERROR
