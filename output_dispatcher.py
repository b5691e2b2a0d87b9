"""Hands finished transcriptions to the keyboard or clipboard."""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from typing import Optional

from errors import OUTPUT_FAILED
from interfaces import TextOutput
from models import DeliveryResult, OutputMode, TranscriptionResult

try:
    import pyperclip
except Exception:  # pragma: no cover
    pyperclip = None  # type: ignore

try:
    from pynput.keyboard import Controller
except Exception:  # pragma: no cover
    Controller = None  # type: ignore

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 80


def preview(text: str, limit: int = PREVIEW_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


class KeyboardTextOutput:
    """Types text at the cursor with pynput or copies it with pyperclip."""

    def write_text(self, text: str, mode: OutputMode) -> None:
        if mode is OutputMode.CLIPBOARD:
            if pyperclip is None:
                raise RuntimeError("pyperclip is not installed")
            pyperclip.copy(text)
            return
        if Controller is None:
            raise RuntimeError("pynput is not installed")
        Controller().type(text)


class DesktopNotifier:
    def __init__(self, app_name: str = "dev-voice") -> None:
        self._app_name = app_name

    def notify(self, title: str, body: str, urgency: str = "normal") -> None:
        if shutil.which("notify-send") is None:
            return
        try:
            subprocess.Popen(
                ["notify-send", "-a", self._app_name, "-i", "audio-input-microphone", "-u", urgency, title, body],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            logger.debug("notify-send failed: %s", exc)


class StatusRefresher:
    """Runs a user command (e.g. ``pkill -RTMIN+8 waybar``) on state changes."""

    def __init__(self, command: str) -> None:
        self._argv = shlex.split(command) if command.strip() else []

    def __call__(self, *_states: object) -> None:
        if not self._argv:
            return
        try:
            subprocess.Popen(self._argv, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as exc:
            logger.warning("Refresh command %s failed: %s", self._argv[0], exc)


class OutputDispatcher:
    def __init__(self, text_output: TextOutput, notifier: Optional[DesktopNotifier] = None) -> None:
        self._text_output = text_output
        self._notifier = notifier

    def deliver(self, result: TranscriptionResult, mode: OutputMode) -> DeliveryResult:
        text = result.text.strip()
        if not text:
            logger.info("No speech detected")
            return DeliveryResult(success=False, reason="empty text", mode=mode)
        try:
            self._text_output.write_text(text, mode)
        except Exception as exc:
            logger.error("Text output via %s failed: %s", mode.value, exc)
            return DeliveryResult(success=False, reason=f"{OUTPUT_FAILED}: {exc}", mode=mode)
        logger.info("Delivered %d chars via %s", len(text), mode.value)
        if self._notifier is not None:
            self._notifier.notify("Transcription Complete", preview(text))
        return DeliveryResult(success=True, reason="ok", mode=mode)
