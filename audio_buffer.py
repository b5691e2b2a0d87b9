"""Bounded, append-only PCM buffer owned by one recording session."""

from __future__ import annotations

import threading
import time

import numpy as np

from errors import AudioCaptureError
from models import AudioFrame

INT16_SCALE = 32767.0


def pcm16_to_float32(pcm: bytes) -> np.ndarray:
    """Convert little-endian int16 PCM to float32 samples in [-1.0, 1.0]."""
    samples = np.frombuffer(pcm, dtype="<i2").astype(np.float32)
    return np.clip(samples / INT16_SCALE, -1.0, 1.0)


def downmix_to_mono(samples: np.ndarray, channels: int) -> np.ndarray:
    if channels <= 1:
        return samples
    usable = len(samples) - (len(samples) % channels)
    if usable == 0:
        return samples[:0]
    return samples[:usable].reshape(-1, channels).mean(axis=1).astype(np.float32)


class AudioFrameBuffer:
    def __init__(self, sample_rate: int = 16000, max_duration_s: float = 300.0) -> None:
        self.sample_rate = sample_rate
        self.max_samples = int(sample_rate * max_duration_s)
        self.created_at = time.monotonic()
        self._chunks: list[np.ndarray] = []
        self._sample_count = 0
        self._frozen = False
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def sample_count(self) -> int:
        return self._sample_count

    @property
    def total_duration(self) -> float:
        return self._sample_count / float(self.sample_rate)

    def append(self, frame: AudioFrame) -> bool:
        """Append a captured frame. Returns False when the frame is dropped."""
        if frame.sample_rate != self.sample_rate:
            raise AudioCaptureError(
                f"frame sample rate {frame.sample_rate} != buffer rate {self.sample_rate}"
            )
        chunk = downmix_to_mono(pcm16_to_float32(frame.pcm16_bytes), frame.channels)
        with self._lock:
            if self._frozen:
                return False
            if self._sample_count + len(chunk) > self.max_samples:
                return False
            self._chunks.append(chunk)
            self._sample_count += len(chunk)
            return True

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    def samples(self) -> np.ndarray:
        with self._lock:
            if not self._frozen:
                raise RuntimeError("audio buffer must be frozen before it is read")
            if not self._chunks:
                return np.zeros(0, dtype=np.float32)
            return np.concatenate(self._chunks)
