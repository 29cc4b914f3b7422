"""Tokenizers that turn prompts into token ids and character offsets."""

from __future__ import annotations

import abc
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .in_memory_index import _MISSING, _LRUCache

TOKENIZERS_CACHE_SIZE = 20
"""Number of loaded tokenizers kept, one per base model."""


class Tokenizer(abc.ABC):
    """Turns text into token ids and the ``(start, end)`` offsets of each token."""

    @abc.abstractmethod
    def encode(self, text: str, model_name: str) -> tuple[list[int], list[tuple[int, int]]]:
        """Return the token ids of ``text`` and the offsets of each token."""


def _default_cache_dir() -> str:
    return str(Path(__file__).resolve().parent.parent / "bin")


@dataclass
class HFTokenizerConfig:
    """Settings for loading pretrained tokenizers."""

    hugging_face_token: str = ""
    tokenizers_cache_dir: str = field(default_factory=_default_cache_dir)


class CachedTokenizer(Tokenizer):
    """Loads one tokenizer per model on first use and keeps the most recent ones.

    ``loader`` is called with a model name and returns an object whose
    ``encode(text)`` gives a result with ``ids`` and ``offsets`` attributes.
    Errors raised by the loader reach the caller.
    """

    def __init__(
        self,
        loader: Callable[[str], Any],
        cache_size: int = TOKENIZERS_CACHE_SIZE,
    ) -> None:
        try:
            self._cache = _LRUCache(cache_size)
        except ValueError as err:
            raise ValueError(f"failed to initialize tokenizer cache: {err}") from err
        self._loader = loader

    def encode(self, text: str, model_name: str) -> tuple[list[int], list[tuple[int, int]]]:
        model = self._cache.get(model_name)
        if model is _MISSING:
            model = self._loader(model_name)
            self._cache.add(model_name, model)

        encoding = model.encode(text)
        ids = [int(token) for token in encoding.ids]
        offsets = [(int(start), int(end)) for start, end in encoding.offsets]
        return ids, offsets