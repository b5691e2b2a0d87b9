from __future__ import annotations

import threading

import numpy as np
import pytest

from audio_buffer import AudioFrameBuffer, downmix_to_mono, pcm16_to_float32
from errors import AudioCaptureError
from fake_models import make_frame


def test_pcm16_conversion_is_normalised() -> None:
    pcm = np.array([0, 32767, -32768], dtype="<i2").tobytes()
    converted = pcm16_to_float32(pcm)

    assert converted.dtype == np.float32
    assert converted[0] == pytest.approx(0.0)
    assert converted[1] == pytest.approx(1.0, abs=1e-3)
    assert converted[2] == pytest.approx(-1.0, abs=1e-2)


def test_stereo_is_averaged_to_mono() -> None:
    stereo = np.array([0.5, 0.3, 0.8, 0.2], dtype=np.float32)
    mono = downmix_to_mono(stereo, channels=2)

    assert len(mono) == 2
    assert mono[0] == pytest.approx(0.4)
    assert mono[1] == pytest.approx(0.5)


def test_append_tracks_duration() -> None:
    buffer = AudioFrameBuffer(sample_rate=16000)
    assert buffer.append(make_frame(1600)) is True
    assert buffer.append(make_frame(1600, channels=2)) is True

    assert buffer.sample_count == 3200
    assert buffer.total_duration == pytest.approx(0.2)


def test_freeze_rejects_further_appends() -> None:
    buffer = AudioFrameBuffer()
    buffer.append(make_frame(1600, amplitude=100))
    buffer.freeze()
    buffer.freeze()

    assert buffer.frozen is True
    assert buffer.append(make_frame(1600)) is False
    assert len(buffer.samples()) == 1600


def test_reading_before_freeze_raises() -> None:
    buffer = AudioFrameBuffer()
    buffer.append(make_frame(160))
    with pytest.raises(RuntimeError, match="frozen"):
        buffer.samples()


def test_bound_drops_overflowing_frames() -> None:
    buffer = AudioFrameBuffer(sample_rate=16000, max_duration_s=0.15)
    assert buffer.append(make_frame(1600)) is True
    assert buffer.append(make_frame(1600)) is False
    assert buffer.sample_count == 1600


def test_sample_rate_mismatch_is_a_capture_error() -> None:
    buffer = AudioFrameBuffer(sample_rate=16000)
    with pytest.raises(AudioCaptureError):
        buffer.append(make_frame(441, sample_rate=44100))


def test_empty_frozen_buffer_reads_empty_array() -> None:
    buffer = AudioFrameBuffer()
    buffer.freeze()
    samples = buffer.samples()
    assert samples.size == 0
    assert samples.dtype == np.float32


def test_concurrent_appends_stop_at_freeze() -> None:
    buffer = AudioFrameBuffer(sample_rate=16000, max_duration_s=60)
    stop = threading.Event()

    def writer() -> None:
        while not stop.is_set():
            buffer.append(make_frame(160, amplitude=50))

    thread = threading.Thread(target=writer, daemon=True)
    thread.start()
    buffer.freeze()
    first = buffer.samples()
    second = buffer.samples()
    stop.set()
    thread.join(timeout=1.0)

    assert len(first) == len(second)
