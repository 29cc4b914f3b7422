"""Configuration and construction of a KV-block index backend."""

from __future__ import annotations

from dataclasses import dataclass, field

from .in_memory_index import InMemoryIndex, InMemoryIndexConfig
from .kvblock import Index
from .redis_index import RedisIndex, RedisIndexConfig


@dataclass
class IndexConfig:
    """Backend settings for the KV-block index.

    When several backends are configured, the first one listed is used.
    """

    in_memory_config: InMemoryIndexConfig | None = field(default_factory=InMemoryIndexConfig)
    redis_config: RedisIndexConfig | None = None


def new_index(config: IndexConfig | None = None) -> Index:
    """Build the index backend selected by ``config``."""
    config = config or IndexConfig()

    if config.in_memory_config is not None:
        return InMemoryIndex(config.in_memory_config)

    if config.redis_config is not None:
        return RedisIndex.from_config(config.redis_config)

    raise ValueError("no valid index configuration provided")