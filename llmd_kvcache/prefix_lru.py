"""A prompt-prefix to token store keyed by chained xxh64 block hashes with LRU eviction."""

from __future__ import annotations

import abc
import struct
import threading
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

from .in_memory_index import _MISSING, _LRUCache

DEFAULT_BLOCK_SIZE = 256
"""Number of prompt bytes per block."""
DEFAULT_MAX_CACHE_SIZE = 500_000
"""Maximum number of blocks held per model."""

_MASK = 0xFFFFFFFFFFFFFFFF
_P1 = 0x9E3779B185EBCA87
_P2 = 0xC2B2AE3D27D4EB4F
_P3 = 0x165667B19E3779F9
_P4 = 0x85EBCA77C2B2AE63
_P5 = 0x27D4EB2F165667C5


def _rotl(value: int, bits: int) -> int:
    return ((value << bits) | (value >> (64 - bits))) & _MASK


def _round(acc: int, lane: int) -> int:
    acc = (acc + lane * _P2) & _MASK
    return (_rotl(acc, 31) * _P1) & _MASK


def _merge_round(acc: int, value: int) -> int:
    acc ^= _round(0, value)
    return (acc * _P1 + _P4) & _MASK


def xxh64(data: bytes, seed: int = 0) -> int:
    """Return the 64-bit xxHash of ``data``."""
    data = bytes(data)
    length = len(data)
    seed &= _MASK
    offset = 0

    if length >= 32:
        v1 = (seed + _P1 + _P2) & _MASK
        v2 = (seed + _P2) & _MASK
        v3 = seed
        v4 = (seed - _P1) & _MASK
        while offset + 32 <= length:
            l1, l2, l3, l4 = struct.unpack_from("<4Q", data, offset)
            v1 = _round(v1, l1)
            v2 = _round(v2, l2)
            v3 = _round(v3, l3)
            v4 = _round(v4, l4)
            offset += 32
        h = (_rotl(v1, 1) + _rotl(v2, 7) + _rotl(v3, 12) + _rotl(v4, 18)) & _MASK
        for value in (v1, v2, v3, v4):
            h = _merge_round(h, value)
    else:
        h = (seed + _P5) & _MASK

    h = (h + length) & _MASK

    while offset + 8 <= length:
        (lane,) = struct.unpack_from("<Q", data, offset)
        h ^= _round(0, lane)
        h = (_rotl(h, 27) * _P1 + _P4) & _MASK
        offset += 8

    if offset + 4 <= length:
        (word,) = struct.unpack_from("<I", data, offset)
        h ^= (word * _P1) & _MASK
        h = (_rotl(h, 23) * _P2 + _P3) & _MASK
        offset += 4

    for byte in data[offset:]:
        h ^= (byte * _P5) & _MASK
        h = (_rotl(h, 11) * _P1) & _MASK

    h ^= h >> 33
    h = (h * _P2) & _MASK
    h ^= h >> 29
    h = (h * _P3) & _MASK
    h ^= h >> 32
    return h


@dataclass
class LRUStoreConfig:
    """Block and cache sizes for :class:`LRUTokenStore`."""

    cache_size: int = DEFAULT_MAX_CACHE_SIZE
    block_size: int = DEFAULT_BLOCK_SIZE


@dataclass
class PrefixStoreConfig:
    """Settings for the prompt-prefix token store."""

    lru_store_config: LRUStoreConfig = field(default_factory=LRUStoreConfig)


class TokenIndexer(abc.ABC):
    """Stores tokenizations and finds the tokens of the longest known prompt prefix."""

    @abc.abstractmethod
    def add_tokenization(
        self,
        model_name: str,
        prompt: str,
        tokens: Sequence[int],
        offsets: Sequence[Sequence[int]],
    ) -> None:
        """Record the full tokenization of ``prompt`` for a model.

        ``offsets`` holds a ``(start, end)`` pair for each token.
        """

    @abc.abstractmethod
    def find_longest_contained_tokens(self, prompt: str, model_name: str) -> list[int]:
        """Return the tokens contained in the longest matching prefix of ``prompt``."""


class LRUTokenStore(TokenIndexer):
    """Maps chained hashes of fixed-size prompt blocks to the tokens each block contains.

    A token belongs to a block when its end offset falls within the prefix
    ending at that block. Only whole blocks are stored.
    """

    def __init__(self, config: PrefixStoreConfig | None = None) -> None:
        config = config or PrefixStoreConfig()
        settings = config.lru_store_config
        if settings.block_size <= 0:
            raise ValueError("block size must be positive")
        self._cache_size = settings.cache_size
        self._block_size = settings.block_size
        self._store: dict[str, _LRUCache] = {}
        self._lock = threading.Lock()

    def _blocks(self, prompt_bytes: bytes) -> Iterator[tuple[int, int]]:
        """Yield the end position and chained hash of every whole block."""
        previous_hash = 0
        last_start = len(prompt_bytes) - self._block_size
        for start in range(0, last_start + 1, self._block_size):
            end = start + self._block_size
            previous_hash = xxh64(
                previous_hash.to_bytes(8, "little") + prompt_bytes[start:end]
            )
            yield end, previous_hash

    def add_tokenization(
        self,
        model_name: str,
        prompt: str,
        tokens: Sequence[int],
        offsets: Sequence[Sequence[int]],
    ) -> None:
        if not prompt or not tokens:
            return

        with self._lock:
            cache = self._store.get(model_name)
            if cache is None:
                try:
                    cache = _LRUCache(self._cache_size)
                except ValueError as err:
                    raise ValueError(
                        f"failed to create LRU cache for model {model_name}: {err}"
                    ) from err
                self._store[model_name] = cache

            token_idx = 0
            for end, block_hash in self._blocks(prompt.encode("utf-8")):
                block_tokens = []
                while token_idx < len(tokens) and offsets[token_idx][1] <= end:
                    block_tokens.append(tokens[token_idx])
                    token_idx += 1
                cache.add(block_hash, tuple(block_tokens))

    def find_longest_contained_tokens(self, prompt: str, model_name: str) -> list[int]:
        with self._lock:
            cache = self._store.get(model_name)
        if cache is None:
            return []

        contained: list[int] = []
        for _, block_hash in self._blocks(prompt.encode("utf-8")):
            block = cache.get(block_hash)
            if block is _MISSING:
                break
            contained.extend(block)
        return contained