"""Conversion of token sequences into chained-hash KV-block keys."""

from __future__ import annotations

import hashlib
import struct
from collections.abc import Iterator, Sequence
from dataclasses import dataclass

from .kvblock import Key

DEFAULT_CHUNK_SIZE = 256
"""Number of tokens per KV-block."""


@dataclass
class TokenProcessorConfig:
    """Settings for :class:`ChunkedTokenDatabase`."""

    chunk_size: int = DEFAULT_CHUNK_SIZE
    fmt: str = "vllm"
    world_size: int = 1
    worker_id: int = 0


class ChunkedTokenDatabase:
    """Splits tokens into fixed-size chunks and keys each by a rolling SHA-256 hash.

    The hash of a chunk covers the hex hash of the chunk before it followed by
    the chunk's tokens as little-endian 32-bit integers. Trailing tokens that
    do not fill a whole chunk are ignored.
    """

    _INIT_HASH = ""

    def __init__(self, config: TokenProcessorConfig | None = None) -> None:
        self.config = config or TokenProcessorConfig()
        if self.config.chunk_size <= 0:
            raise ValueError("chunk size must be positive")

    @staticmethod
    def _hash(tokens: Sequence[int], prefix_hash: str) -> str:
        try:
            payload = struct.pack(f"<{len(tokens)}I", *tokens)
        except struct.error as err:
            raise ValueError(f"tokens must be unsigned 32-bit integers: {err}") from err
        return hashlib.sha256(prefix_hash.encode("ascii") + payload).hexdigest()

    def _chunks(self, tokens: Sequence[int]) -> Iterator[Sequence[int]]:
        size = self.config.chunk_size
        for start in range(0, len(tokens) - size + 1, size):
            yield tokens[start : start + size]

    def _prefix_hashes(self, tokens: Sequence[int]) -> Iterator[str]:
        prefix_hash = self._INIT_HASH
        for chunk in self._chunks(tokens):
            prefix_hash = self._hash(chunk, prefix_hash)
            yield prefix_hash

    def tokens_to_kv_block_keys(self, tokens: Sequence[int], model_name: str) -> list[Key]:
        """Return one block key per whole chunk of ``tokens``."""
        tokens = list(tokens)
        return [Key(model_name=model_name, chunk_hash=h) for h in self._prefix_hashes(tokens)]