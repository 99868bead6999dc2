"""Model registry: live model discovery ranked into a fallback list.

Eligibility: the id matches a known model family, is not a moderation
("guard") variant, and advertises at least `min_completion_tokens` of output.

Ordering: eligible models are ranked by parameter count, largest first.
The list then takes the best large model and the best small/fast model
(curated preferences first), up to two more small models and one more large
one. Large models get the best answers but the scarcest quota, small ones
carry the emergency load.

`refresh()` never raises: on failure the previous list (initially just the
default model) stays in place. A refresh swaps the whole list at once.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator
from typing import Any

from pathweaver.config import DEFAULT_MODEL
from pathweaver.errors import LLMError
from pathweaver.llm import ChatProvider
from pathweaver.models import ModelDescriptor

logger = logging.getLogger(__name__)

DEFAULT_MIN_COMPLETION_TOKENS = 4096
LARGE_MODEL_BILLIONS = 30.0

FAMILY_PATTERNS: tuple[str, ...] = ("llama", "mixtral", "gemma", "deepseek")
EXCLUDED_MARKERS: tuple[str, ...] = ("guard",)

PREFERRED_LARGE: tuple[str, ...] = (
    "llama-3.3-70b-versatile",
    "deepseek-r1-distill-llama-70b",
)
PREFERRED_SMALL: tuple[str, ...] = (
    "llama-3.1-8b-instant",
    "gemma2-9b-it",
)

_MOE_RE = re.compile(r"(?<![\w.])(\d+)x(\d+(?:\.\d+)?)b(?![a-z])")
_PARAMS_RE = re.compile(r"(?<![\w.])(\d+(?:\.\d+)?)b(?![a-z])")


def parse_parameter_billions(model_id: str) -> float | None:
    """"llama-3.3-70b-versatile" → 70.0, "mixtral-8x7b-32768" → 56.0."""
    lowered = model_id.lower()
    moe = _MOE_RE.search(lowered)
    if moe:
        return int(moe.group(1)) * float(moe.group(2))
    match = _PARAMS_RE.search(lowered.replace("-", " ").replace("_", " "))
    if match:
        return float(match.group(1))
    return None


class FallbackList:
    """Ordered, duplicate-free, never-empty sequence of model ids."""

    def __init__(self, model_ids: Iterable[str], default: str = DEFAULT_MODEL) -> None:
        seen: list[str] = []
        for model_id in model_ids:
            if model_id and model_id not in seen:
                seen.append(model_id)
        self._ids: tuple[str, ...] = tuple(seen) or (default,)

    @property
    def head(self) -> str:
        return self._ids[0]

    def select(self, requested: str | None) -> str:
        """The requested model if listed, else the head."""
        if requested and requested in self._ids:
            return requested
        return self.head

    def next_after(self, model_id: str) -> str | None:
        """The model following `model_id`, or None at the end of the list."""
        if model_id not in self._ids:
            return self.head
        index = self._ids.index(model_id)
        if index + 1 < len(self._ids):
            return self._ids[index + 1]
        return None

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, FallbackList):
            return self._ids == other._ids
        if isinstance(other, (list, tuple)):
            return list(self._ids) == list(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"FallbackList({list(self._ids)!r})"


def _token_count(value: Any) -> int:
    """Advertised output limit; anything unparseable counts as 0 (ineligible)."""
    try:
        return int(value or 0)
    except (TypeError, ValueError, OverflowError):
        return 0


def describe_model(raw: dict[str, Any]) -> ModelDescriptor:
    model_id = str(raw.get("id", ""))
    billions = parse_parameter_billions(model_id)
    return ModelDescriptor(
        id=model_id,
        max_completion_tokens=_token_count(raw.get("max_completion_tokens")),
        parameter_billions=billions,
        size_class="large" if billions is not None and billions >= LARGE_MODEL_BILLIONS else "small",
    )


def is_eligible(model: ModelDescriptor, min_completion_tokens: int) -> bool:
    model_id = model.id.lower()
    if not any(family in model_id for family in FAMILY_PATTERNS):
        return False
    if any(marker in model_id for marker in EXCLUDED_MARKERS):
        return False
    return model.max_completion_tokens >= min_completion_tokens


def rank_models(models: Iterable[ModelDescriptor]) -> list[ModelDescriptor]:
    """Largest parameter count first; unknown sizes last; ties by id."""
    return sorted(
        models,
        key=lambda m: (-(m.parameter_billions or 0.0), m.parameter_billions is None, m.id),
    )


def _pick_preferred(candidates: list[ModelDescriptor], preferred: tuple[str, ...]) -> ModelDescriptor | None:
    by_id = {m.id: m for m in candidates}
    for model_id in preferred:
        if model_id in by_id:
            return by_id[model_id]
    return candidates[0] if candidates else None


def build_fallback_order(models: Iterable[ModelDescriptor]) -> list[str]:
    ranked = rank_models(models)
    large = [m for m in ranked if m.size_class == "large"]
    small = [m for m in ranked if m.size_class == "small"]

    order: list[str] = []
    best_large = _pick_preferred(large, PREFERRED_LARGE)
    best_small = _pick_preferred(small, PREFERRED_SMALL)
    if best_large:
        order.append(best_large.id)
    if best_small:
        order.append(best_small.id)
    order.extend([m.id for m in small if m.id not in order][:2])
    order.extend([m.id for m in large if m.id not in order][:1])
    return order


class ModelRegistry:
    def __init__(
        self,
        provider: ChatProvider,
        default_model: str = DEFAULT_MODEL,
        min_completion_tokens: int = DEFAULT_MIN_COMPLETION_TOKENS,
    ) -> None:
        self._provider = provider
        self._default = default_model
        self._min_tokens = min_completion_tokens
        self._fallback = FallbackList([], default=default_model)
        self._models: tuple[ModelDescriptor, ...] = ()

    @property
    def fallback(self) -> FallbackList:
        return self._fallback

    @property
    def models(self) -> list[ModelDescriptor]:
        """Eligible models from the last successful refresh, ranked."""
        return list(self._models)

    async def refresh(self) -> FallbackList:
        try:
            raw_models = await self._provider.list_models()
        except LLMError as e:
            logger.warning("Model list refresh failed, keeping %s: %s", self._fallback, e)
            return self._fallback

        try:
            described = [describe_model(raw) for raw in raw_models if isinstance(raw, dict)]
            eligible = rank_models(m for m in described if is_eligible(m, self._min_tokens))
            fallback = FallbackList(build_fallback_order(eligible), default=self._default)
        except Exception:
            logger.warning("Could not rank listed models, keeping %s", self._fallback, exc_info=True)
            return self._fallback

        # Swap both at once; readers never see a half-built list
        self._models = tuple(eligible)
        self._fallback = fallback
        logger.info(
            "Model registry refreshed: %d listed, %d eligible, fallback=%s",
            len(described), len(eligible), list(fallback),
        )
        return fallback
