"""Protocol interfaces used by SessionManager and SpeculativeDecoder."""

from __future__ import annotations

from typing import Any, Callable, Hashable, Protocol, Sequence

import numpy as np

from audio_buffer import AudioFrameBuffer
from models import AudioFrame, DeliveryResult, OutputMode, TranscriptionResult


class AudioCapture(Protocol):
    def start(self, on_frame: Callable[[AudioFrame], None]) -> None: ...

    def stop(self) -> None: ...


class TextOutput(Protocol):
    def write_text(self, text: str, mode: OutputMode) -> None: ...


class ResultSink(Protocol):
    def deliver(self, result: TranscriptionResult, mode: OutputMode) -> DeliveryResult: ...


class Transcriber(Protocol):
    def transcribe(self, buffer: AudioFrameBuffer) -> TranscriptionResult: ...


class TokenModel(Protocol):
    """A loaded speech-to-token model usable as draft or target."""

    eos_token_id: int

    def vocab_signature(self) -> Hashable: ...

    def prompt_tokens(self, prompt_bias: str) -> list[int]: ...

    def encode(self, samples: np.ndarray, sample_rate: int) -> Any: ...

    def predict(self, encoded: Any, tokens: Sequence[int], n_positions: int) -> list[int]:
        """Greedy next-token choices for the last ``n_positions`` prefixes of ``tokens``.

        Entry ``i`` is the choice after ``tokens[: len(tokens) - n_positions + 1 + i]``.
        Implementations evaluate all positions in a single forward pass.
        """
        ...

    def decode_text(self, tokens: Sequence[int]) -> str: ...
