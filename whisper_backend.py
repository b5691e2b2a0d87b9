"""Whisper token model on HuggingFace Transformers.

Loads any Whisper checkpoint (``openai/whisper-*``, ``distil-whisper/*`` or a
local directory) and exposes the greedy, single-pass scoring primitives used
by the speculative decoder. A small checkpoint serves as draft, a larger one
with the same tokenizer as target.
"""

from __future__ import annotations

import logging
from typing import Any, Hashable, Optional, Sequence

import numpy as np

from errors import ModelLoadError

try:
    import torch
except Exception:  # pragma: no cover
    torch = None  # type: ignore

try:
    from transformers import WhisperForConditionalGeneration, WhisperProcessor
except Exception:  # pragma: no cover
    WhisperForConditionalGeneration = None  # type: ignore
    WhisperProcessor = None  # type: ignore

logger = logging.getLogger(__name__)

# Whisper's decoder context is 448 tokens; the previous-text prompt may use half.
MAX_PROMPT_TOKENS = 223
# Feature extraction pads or truncates to 30 s; longer audio must be split by the caller.
MAX_ENCODE_SECONDS = 30.0


def _detect_device() -> str:
    if torch is None:
        return "cpu"
    if torch.cuda.is_available():
        return "cuda:0"
    if hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
        return "mps"
    return "cpu"


def _resolve_dtype(device: str) -> Any:
    if torch is None:
        return None
    return torch.float32 if device == "cpu" else torch.float16


class WhisperTokenModel:
    def __init__(self, model: Any, processor: Any, device: str, language: Optional[str] = "en") -> None:
        self._model = model
        self._processor = processor
        self._tokenizer = processor.tokenizer
        self._device = device
        self._dtype = next(model.parameters()).dtype
        self._multilingual = bool(getattr(model.config, "vocab_size", 0) >= 51865)
        self._language = language if self._multilingual else None
        eos = model.generation_config.eos_token_id
        if isinstance(eos, (list, tuple)):
            eos = eos[0]
        self.eos_token_id = int(eos if eos is not None else self._tokenizer.eos_token_id)

    @classmethod
    def load(cls, name_or_path: str, device: str = "auto", language: Optional[str] = "en") -> "WhisperTokenModel":
        if torch is None or WhisperForConditionalGeneration is None or WhisperProcessor is None:
            raise ModelLoadError("transformers and torch are required: pip install transformers torch")
        resolved = _detect_device() if device == "auto" else device
        try:
            processor = WhisperProcessor.from_pretrained(name_or_path)
            model = WhisperForConditionalGeneration.from_pretrained(
                name_or_path, torch_dtype=_resolve_dtype(resolved)
            )
        except Exception as exc:
            raise ModelLoadError(f"failed to load whisper model {name_or_path}: {exc}") from exc
        model.to(resolved)
        model.eval()
        logger.info("Whisper model %s loaded on %s", name_or_path, resolved)
        return cls(model, processor, resolved, language)

    def vocab_signature(self) -> Hashable:
        return (len(self._tokenizer), self.eos_token_id, self._multilingual)

    def prompt_tokens(self, prompt_bias: str) -> list[int]:
        tokens: list[int] = []
        if prompt_bias.strip():
            prev = self._tokenizer.convert_tokens_to_ids("<|startofprev|>")
            text_ids = self._tokenizer.encode(" " + prompt_bias.strip(), add_special_tokens=False)
            tokens = [prev] + text_ids[-MAX_PROMPT_TOKENS:]
        tokens.append(int(self._model.generation_config.decoder_start_token_id))
        task = "transcribe" if self._multilingual else None
        forced = self._processor.get_decoder_prompt_ids(language=self._language, task=task, no_timestamps=True)
        tokens.extend(int(token_id) for _, token_id in forced)
        return tokens

    def encode(self, samples: np.ndarray, sample_rate: int) -> Any:
        if len(samples) > int(sample_rate * MAX_ENCODE_SECONDS):
            raise ValueError(
                f"cannot encode {len(samples) / sample_rate:.1f}s of audio in one {MAX_ENCODE_SECONDS:.0f}s window"
            )
        features = self._processor.feature_extractor(
            samples, sampling_rate=sample_rate, return_tensors="pt"
        ).input_features
        features = features.to(self._device, dtype=self._dtype)
        with torch.inference_mode():
            return self._model.get_encoder()(features)

    def predict(self, encoded: Any, tokens: Sequence[int], n_positions: int) -> list[int]:
        if n_positions <= 0 or n_positions > len(tokens):
            raise ValueError(f"cannot score {n_positions} positions of {len(tokens)} tokens")
        decoder_input_ids = torch.tensor([list(tokens)], dtype=torch.long, device=self._device)
        with torch.inference_mode():
            logits = self._model(encoder_outputs=encoded, decoder_input_ids=decoder_input_ids).logits
        choices = logits[0, -n_positions:, :].argmax(dim=-1)
        return [int(token_id) for token_id in choices.tolist()]

    def decode_text(self, tokens: Sequence[int]) -> str:
        return self._tokenizer.decode(list(tokens), skip_special_tokens=True)
