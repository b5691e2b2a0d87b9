"""Draft/target model handle selected once at load time."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from config import DictationConfig
from errors import ModelLoadError
from interfaces import TokenModel

logger = logging.getLogger(__name__)

ModelLoader = Callable[[str], TokenModel]


class ModelPairKind(str, Enum):
    TARGET_ONLY = "target-only"
    SPECULATIVE = "target+draft"


@dataclass(frozen=True)
class ModelPair:
    kind: ModelPairKind
    target: TokenModel
    draft: Optional[TokenModel] = None
    prompt_bias: str = ""
    max_tokens: int = 224
    sample_rate: int = 16000
    draft_k: int = 0

    def __post_init__(self) -> None:
        if self.max_tokens <= 0:
            raise ValueError("max_tokens must be positive")
        if self.kind is ModelPairKind.SPECULATIVE:
            if self.draft is None or self.draft_k <= 0:
                raise ValueError("speculative pair needs a draft model and draft_k > 0")
        elif self.draft is not None or self.draft_k != 0:
            raise ValueError("target-only pair cannot carry a draft model")

    @classmethod
    def target_only(
        cls,
        target: TokenModel,
        prompt_bias: str = "",
        max_tokens: int = 224,
        sample_rate: int = 16000,
    ) -> "ModelPair":
        return cls(
            kind=ModelPairKind.TARGET_ONLY,
            target=target,
            prompt_bias=prompt_bias,
            max_tokens=max_tokens,
            sample_rate=sample_rate,
        )

    @classmethod
    def speculative(
        cls,
        target: TokenModel,
        draft: TokenModel,
        draft_k: int,
        prompt_bias: str = "",
        max_tokens: int = 224,
        sample_rate: int = 16000,
    ) -> "ModelPair":
        return cls(
            kind=ModelPairKind.SPECULATIVE,
            target=target,
            draft=draft,
            draft_k=draft_k,
            prompt_bias=prompt_bias,
            max_tokens=max_tokens,
            sample_rate=sample_rate,
        )


def load_model_pair(config: DictationConfig, loader: ModelLoader) -> ModelPair:
    """Load the target model and, when usable, the draft model.

    A missing, unloadable or vocabulary-incompatible draft degrades to
    target-only decoding. A target failure raises ModelLoadError.
    """
    common = dict(
        prompt_bias=config.prompt,
        max_tokens=config.max_tokens,
        sample_rate=config.sample_rate,
    )
    try:
        target = loader(config.target_model)
    except ModelLoadError:
        raise
    except Exception as exc:
        raise ModelLoadError(f"failed to load target model {config.target_model}: {exc}") from exc
    logger.info("Loaded target model %s", config.target_model)

    draft = _load_draft(config, loader, target)
    if draft is None:
        return ModelPair.target_only(target, **common)
    logger.info("Speculative decoding enabled (draft=%s, k=%d)", config.draft_model, config.draft_k)
    return ModelPair.speculative(target, draft, config.draft_k, **common)


def _load_draft(
    config: DictationConfig,
    loader: ModelLoader,
    target: TokenModel,
) -> Optional[TokenModel]:
    if not config.draft_model or config.draft_k <= 0:
        return None
    # Hub ids ("org/name") are resolved by the loader; only local paths are checked here.
    is_local = config.draft_model.startswith(("/", "~", "."))
    if is_local and not Path(config.draft_model).expanduser().exists():
        logger.info("Draft model %s does not exist, skipping speculative decoding", config.draft_model)
        return None
    try:
        draft = loader(config.draft_model)
    except Exception as exc:
        logger.warning("Draft model %s failed to load, using target only: %s", config.draft_model, exc)
        return None
    if draft.vocab_signature() != target.vocab_signature():
        logger.warning("Draft model %s vocabulary differs from target, using target only", config.draft_model)
        return None
    return draft
