"""Core types of the KV-block index: block keys, pod entries and the index interface."""

from __future__ import annotations

import abc
from collections.abc import Iterable, Sequence
from dataclasses import dataclass


@dataclass(frozen=True)
class Key:
    """Unique identifier of a KV-cache block."""

    model_name: str
    chunk_hash: str

    def __str__(self) -> str:
        return f"{self.model_name}@{self.chunk_hash}"


@dataclass(frozen=True)
class PodEntry:
    """A pod holding a KV-block, and the device tier the block lives on."""

    pod_identifier: str
    device_tier: str

    def __str__(self) -> str:
        return f"{self.pod_identifier}@{self.device_tier}"


class Index(abc.ABC):
    """A backend that tracks which pods hold which KV-blocks.

    The index is used to find the pods holding the longest run of
    consecutive blocks that make up a prefix-cache hit.
    """

    @abc.abstractmethod
    def lookup(
        self, keys: Sequence[Key], pod_identifiers: Iterable[str] | None = None
    ) -> tuple[list[Key], dict[Key, list[str]]]:
        """Return the hit keys and, for each, the pods holding it.

        Pods are filtered by ``pod_identifiers``; when that is empty or
        ``None``, all pods are returned.
        """

    @abc.abstractmethod
    def add(self, keys: Sequence[Key], entries: Sequence[PodEntry]) -> None:
        """Record that every entry holds every one of the keys."""

    @abc.abstractmethod
    def evict(self, key: Key, entries: Sequence[PodEntry]) -> None:
        """Remove the given entries from a key."""