"""Microphone recorder adapter."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Optional

from errors import AudioCaptureError
from models import AudioFrame

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)


class SoundDeviceRecorder:
    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_ms: int = 100,
        device: Optional[str] = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_ms = chunk_ms
        self.device = device
        self._stream: Any = None
        self._running = False
        self._lock = threading.Lock()
        self._on_frame: Optional[Callable[[AudioFrame], None]] = None
        self.status_warnings = 0

    @property
    def running(self) -> bool:
        return self._running

    def start(self, on_frame: Callable[[AudioFrame], None]) -> None:
        with self._lock:
            if self._running:
                return
            if sd is None:
                raise AudioCaptureError("sounddevice is not installed")
            self._on_frame = on_frame
            blocksize = int(self.sample_rate * (self.chunk_ms / 1000.0))
            try:
                self._stream = sd.InputStream(
                    samplerate=self.sample_rate,
                    channels=self.channels,
                    dtype="int16",
                    blocksize=blocksize,
                    device=self.device,
                    callback=self._on_audio,
                )
                self._stream.start()
            except Exception as exc:
                self._stream = None
                raise AudioCaptureError(f"could not open microphone: {exc}") from exc
            self._running = True
            logger.debug("Capture started at %d Hz, %d ms blocks", self.sample_rate, self.chunk_ms)

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            stream, self._stream = self._stream, None
            if stream is not None:
                stream.stop()
                stream.close()
            logger.debug("Capture stopped")

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if not self._running or self._on_frame is None:
            return
        if np is None:
            return
        if status:
            self.status_warnings += 1
            logger.debug("Capture status: %s", status)
        payload = np.asarray(indata, dtype=np.int16).tobytes()
        self._on_frame(
            AudioFrame(
                pcm16_bytes=payload,
                sample_rate=self.sample_rate,
                channels=self.channels,
                timestamp_ms=int(time.time() * 1000),
            )
        )
