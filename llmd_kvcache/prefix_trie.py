"""A character trie per model recording the last token fully contained in each prefix."""

from __future__ import annotations

import threading
from collections.abc import Sequence
from dataclasses import dataclass, field

from .prefix_lru import TokenIndexer


@dataclass
class _Node:
    children: dict[str, _Node] = field(default_factory=dict)
    last_token_id: int = 0
    """Id of the last token ending at or before this position; 0 if none."""
    last_token_index: int = -1
    """Index of that token in the full tokenization; -1 if none."""


class _ContainedTokenTrie:
    def __init__(self) -> None:
        self.root = _Node()
        self.lock = threading.Lock()

    def add_full_tokenization(
        self, prompt: str, tokens: Sequence[int], offsets: Sequence[Sequence[int]]
    ) -> None:
        self.root.last_token_index = 0
        self.root.last_token_id = tokens[0]
        last_found = 0

        node = self.root
        byte_pos = 0
        for char in prompt:
            # Position is measured from the first byte of the character.
            char_end = byte_pos + 1
            byte_pos += len(char.encode("utf-8", "surrogatepass"))

            best = last_found
            for k in range(max(last_found, 0), len(offsets)):
                if offsets[k][1] > char_end:
                    break
                best = max(best, k)
            last_found = best

            node = node.children.setdefault(char, _Node())
            if last_found != -1:
                node.last_token_index = last_found
                node.last_token_id = tokens[last_found]
            else:
                node.last_token_index = -1
                node.last_token_id = 0

    def find_longest_contained_tokens(self, prompt: str) -> list[int]:
        with self.lock:
            contained: list[int] = []
            last_seen = -1
            node = self.root

            if node.last_token_index > last_seen:
                contained.append(node.last_token_id)
                last_seen = node.last_token_index

            for char in prompt:
                child = node.children.get(char)
                if child is None:
                    break
                node = child
                if node.last_token_index > last_seen:
                    contained.append(node.last_token_id)
                    last_seen = node.last_token_index

            return contained


class ContainedTokenStore(TokenIndexer):
    """Keeps one character trie per model for longest-prefix token lookups."""

    def __init__(self) -> None:
        self._tries: dict[str, _ContainedTokenTrie] = {}
        self._lock = threading.Lock()

    def add_tokenization(
        self,
        model_name: str,
        prompt: str,
        tokens: Sequence[int],
        offsets: Sequence[Sequence[int]],
    ) -> None:
        if not prompt or not tokens or len(tokens) != len(offsets):
            return

        with self._lock:
            trie = self._tries.setdefault(model_name, _ContainedTokenTrie())

        with trie.lock:
            trie.add_full_tokenization(prompt, tokens, offsets)

    def find_longest_contained_tokens(self, prompt: str, model_name: str) -> list[int]:
        with self._lock:
            trie = self._tries.get(model_name)
        if trie is None:
            return []
        return trie.find_longest_contained_tokens(prompt)