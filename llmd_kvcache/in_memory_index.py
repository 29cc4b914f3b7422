"""An in-memory KV-block index with LRU eviction of keys and of pods per key."""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from collections.abc import Hashable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from .kvblock import Index, Key, PodEntry

logger = logging.getLogger(__name__)

DEFAULT_INDEX_SIZE = 100_000_000
DEFAULT_PODS_PER_KEY = 10

_MISSING = object()


class _LRUCache:
    """A thread-safe fixed-capacity mapping that evicts its least recently used item."""

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("must provide a positive size")
        self._capacity = capacity
        self._items: OrderedDict[Hashable, Any] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Any:
        with self._lock:
            if key not in self._items:
                return _MISSING
            self._items.move_to_end(key)
            return self._items[key]

    def add(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._put(key, value)

    def contains_or_add(self, key: Hashable, value: Any) -> Any:
        """Return the present value for key, or store and return ``value``."""
        with self._lock:
            if key in self._items:
                return self._items[key]
            self._put(key, value)
            return value

    def remove(self, key: Hashable) -> None:
        with self._lock:
            self._items.pop(key, None)

    def keys(self) -> list:
        """Keys from oldest to most recently used."""
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def _put(self, key: Hashable, value: Any) -> None:
        if key in self._items:
            self._items.move_to_end(key)
        self._items[key] = value
        if len(self._items) > self._capacity:
            self._items.popitem(last=False)


@dataclass
class InMemoryIndexConfig:
    """Settings for :class:`InMemoryIndex`."""

    size: int = DEFAULT_INDEX_SIZE
    """Maximum number of keys held by the index."""
    pod_cache_size: int = DEFAULT_PODS_PER_KEY
    """Maximum number of pod entries held per key."""


class InMemoryIndex(Index):
    """An :class:`Index` kept in process memory."""

    def __init__(self, config: InMemoryIndexConfig | None = None) -> None:
        config = config or InMemoryIndexConfig()
        try:
            self._data = _LRUCache(config.size)
        except ValueError as err:
            raise ValueError(f"failed to initialize in-memory index: {err}") from err
        self._pod_cache_size = config.pod_cache_size

    def lookup(
        self, keys: Sequence[Key], pod_identifiers: Iterable[str] | None = None
    ) -> tuple[list[Key], dict[Key, list[str]]]:
        keys = list(keys)
        if not keys:
            raise ValueError("no keys provided for lookup")

        wanted = set(pod_identifiers or ())
        pods_per_key: dict[Key, list[str]] = {}
        highest_hit_idx = 0

        for idx, key in enumerate(keys):
            pods = self._data.get(key)
            if pods is _MISSING:
                logger.debug("key not found in index: %s", key)
                continue
            if pods is None or len(pods) == 0:
                logger.debug("no pods found for key %s, cutting search", key)
                return keys[:idx], pods_per_key

            highest_hit_idx = idx
            identifiers = [entry.pod_identifier for entry in pods.keys()]
            if wanted:
                identifiers = [pod for pod in identifiers if pod in wanted]
            if identifiers or not wanted:
                pods_per_key.setdefault(key, []).extend(identifiers)

        logger.debug(
            "lookup completed, highest hit index %d, pods per key %s",
            highest_hit_idx,
            pods_per_key,
        )
        return keys[: highest_hit_idx + 1], pods_per_key

    def add(self, keys: Sequence[Key], entries: Sequence[PodEntry]) -> None:
        if not keys or not entries:
            raise ValueError("no keys or entries provided for adding to index")

        for key in keys:
            pod_cache = self._data.get(key)
            if pod_cache is _MISSING:
                try:
                    fresh = _LRUCache(self._pod_cache_size)
                except ValueError as err:
                    raise ValueError(f"failed to create pod cache for key {key}: {err}") from err
                pod_cache = self._data.contains_or_add(key, fresh)

            for entry in entries:
                pod_cache.add(entry, None)

            logger.debug("added pods %s to key %s", list(entries), key)

    def evict(self, key: Key, entries: Sequence[PodEntry]) -> None:
        if not entries:
            raise ValueError("no entries provided for eviction from index")

        pod_cache = self._data.get(key)
        if pod_cache is _MISSING or pod_cache is None:
            logger.debug("key %s not found in index, nothing to evict", key)
            return

        for entry in entries:
            pod_cache.remove(entry)

        logger.debug("evicted pods %s from key %s", list(entries), key)

        if len(pod_cache) == 0:
            self._data.remove(key)
            logger.debug("evicted key %s from index as no pods remain", key)