"""Speculative decoding: a draft model proposes, the target model verifies.

Each round the draft model greedily proposes up to ``draft_k`` tokens. The
target model scores the whole proposal in one forward pass, which yields its
own greedy choice at every proposed position plus one position past the end.
The longest prefix of the proposal that agrees with the target is kept and the
target's token at the first disagreement (or the bonus position) is appended.
Because acceptance is an exact top-1 match, the emitted sequence is the one
target-only greedy decoding produces; only the number of target passes drops.

Recordings longer than the encoder window are decoded window by window, each
window prompted with the text already transcribed; ``max_tokens`` applies per
window.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Optional, Sequence

import numpy as np

from audio_buffer import AudioFrameBuffer
from errors import DecodeError
from model_pair import ModelPair, ModelPairKind
from models import SpeculativeDecodeState, TranscriptionResult

logger = logging.getLogger(__name__)

# One Whisper feature frame (10 ms hop).
MIN_FRAME_SECONDS = 0.01
# Whisper's encoder sees at most 30 s of audio per pass.
WINDOW_SECONDS = 30.0


def split_windows(samples: np.ndarray, sample_rate: int, min_samples: int = 1) -> list[np.ndarray]:
    """Cut audio into consecutive encoder-sized windows.

    A trailing window shorter than ``min_samples`` carries no decodable frame
    and is dropped.
    """
    size = int(sample_rate * WINDOW_SECONDS)
    windows = [samples[i : i + size] for i in range(0, len(samples), size)]
    if len(windows) > 1 and len(windows[-1]) < min_samples:
        windows.pop()
    return windows


class SpeculativeDecoder:
    def __init__(
        self,
        models: ModelPair,
        cancel_event: Optional[threading.Event] = None,
        round_budget_s: Optional[float] = None,
    ) -> None:
        self._models = models
        self._cancel_event = cancel_event
        self._round_budget_s = round_budget_s

    @property
    def models(self) -> ModelPair:
        return self._models

    @property
    def cancel_event(self) -> Optional[threading.Event]:
        return self._cancel_event

    @property
    def round_budget_s(self) -> Optional[float]:
        return self._round_budget_s

    def transcribe(self, buffer: AudioFrameBuffer) -> TranscriptionResult:
        if not buffer.frozen:
            raise DecodeError("audio buffer is still recording")
        if buffer.sample_rate != self._models.sample_rate:
            raise DecodeError(
                f"audio sample rate {buffer.sample_rate} does not match model rate {self._models.sample_rate}"
            )

        started = time.monotonic()
        samples = buffer.samples()
        speculative = self._models.kind is ModelPairKind.SPECULATIVE
        if samples.size == 0:
            return TranscriptionResult(text="", speculative=speculative)
        min_samples = max(1, int(buffer.sample_rate * MIN_FRAME_SECONDS))
        if samples.size < min_samples:
            raise DecodeError("audio shorter than one frame")

        windows = split_windows(samples, buffer.sample_rate, min_samples)
        logger.debug(
            "Transcribing %d samples (%.2fs) in %d window(s) [speculative=%s, prompt=%s]",
            samples.size,
            samples.size / float(buffer.sample_rate),
            len(windows),
            speculative,
            bool(self._models.prompt_bias),
        )
        texts: list[str] = []
        token_count = proposed = accepted = passes = rounds = 0
        try:
            for window in windows:
                # Earlier text conditions the next window like Whisper's previous-text context.
                bias = " ".join([self._models.prompt_bias] + texts).strip()
                state = self.decode_tokens(window, started, prompt_bias=bias)
                text = self._models.target.decode_text(state.accepted_tokens).strip()
                if text:
                    texts.append(text)
                token_count += len(state.accepted_tokens)
                proposed += state.proposed_count
                accepted += state.accepted_draft_count
                passes += state.target_passes
                rounds += state.rounds
        except DecodeError:
            raise
        except Exception as exc:
            raise DecodeError(f"model inference failed: {exc}") from exc

        rate = accepted / proposed if proposed else 0.0
        duration = time.monotonic() - started
        logger.debug(
            "Decoded %d tokens in %d rounds, %d target passes, acceptance %.2f, %.3fs",
            token_count,
            rounds,
            passes,
            rate,
            duration,
        )
        return TranscriptionResult(
            text=" ".join(texts),
            token_count=token_count,
            draft_acceptance_rate=rate,
            wall_clock_duration=duration,
            target_passes=passes,
            speculative=speculative,
        )

    def decode_tokens(
        self,
        samples: np.ndarray,
        started: Optional[float] = None,
        prompt_bias: Optional[str] = None,
    ) -> SpeculativeDecodeState:
        """Run the draft/verify loop over one window and return the final decode state."""
        pair = self._models
        target = pair.target
        eos = target.eos_token_id
        budget_deadline = None
        if self._round_budget_s is not None:
            budget_deadline = (started if started is not None else time.monotonic()) + self._round_budget_s

        prompt = list(target.prompt_tokens(pair.prompt_bias if prompt_bias is None else prompt_bias))
        target_encoded = target.encode(samples, pair.sample_rate)
        draft_encoded = None
        if pair.kind is ModelPairKind.SPECULATIVE and pair.draft is not None:
            draft_encoded = pair.draft.encode(samples, pair.sample_rate)

        state = SpeculativeDecodeState()
        while True:
            self._check_round(budget_deadline)
            remaining = pair.max_tokens - len(state.accepted_tokens)
            if remaining <= 0:
                raise DecodeError(f"no end-of-sequence within {pair.max_tokens} tokens")
            state.rounds += 1

            context = prompt + state.accepted_tokens
            # The verify pass always adds one target token, so leave room for it.
            state.draft_proposal = self._propose(draft_encoded, context, min(pair.draft_k, remaining - 1))
            state.proposed_count += len(state.draft_proposal)

            choices = target.predict(target_encoded, context + state.draft_proposal, len(state.draft_proposal) + 1)
            state.target_passes += 1
            if len(choices) != len(state.draft_proposal) + 1:
                raise DecodeError(
                    f"target returned {len(choices)} predictions, expected {len(state.draft_proposal) + 1}"
                )

            n_accepted = 0
            for drafted, chosen in zip(state.draft_proposal, choices):
                if drafted != chosen:
                    break
                n_accepted += 1
            state.draft_proposal = state.draft_proposal[:n_accepted]
            state.accepted_draft_count += n_accepted

            finished = False
            for token in state.draft_proposal + [choices[n_accepted]]:
                if token == eos:
                    finished = True
                    break
                state.accepted_tokens.append(token)
            state.position = len(state.accepted_tokens)
            if finished:
                return state

    def _propose(self, encoded: Any, context: Sequence[int], limit: int) -> list[int]:
        draft = self._models.draft
        if draft is None or encoded is None or limit <= 0:
            return []
        proposal: list[int] = []
        for _ in range(limit):
            token = draft.predict(encoded, list(context) + proposal, 1)[0]
            proposal.append(token)
            if token == draft.eos_token_id:
                break
        return proposal

    def _check_round(self, budget_deadline: Optional[float]) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise DecodeError("decode cancelled")
        if budget_deadline is not None and time.monotonic() > budget_deadline:
            raise DecodeError("decode exceeded its time budget")
