"""Scoring of pods by how many leading KV-blocks of a request they hold."""

from __future__ import annotations

import enum
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from .kvblock import Key


class KVScoringStrategy(str, enum.Enum):
    """Strategies for scoring pods on KV-cache block reuse."""

    LONGEST_PREFIX = "LongestPrefix"
    """Score by the longest run of consecutive hits from the first block."""


@dataclass
class KVBlockScorerConfig:
    """Settings for the KV-block scorer."""

    scoring_strategy: KVScoringStrategy = KVScoringStrategy.LONGEST_PREFIX


class LongestPrefixScorer:
    """Scores each pod by its run of consecutive block hits starting at block 0."""

    def strategy(self) -> KVScoringStrategy:
        return KVScoringStrategy.LONGEST_PREFIX

    def score(
        self, keys: Sequence[Key], key_to_pods: Mapping[Key, Sequence[str]]
    ) -> dict[str, int]:
        """Return the score of every pod that holds the first key.

        Pods missing from the first key are not in the result.
        """
        if not keys:
            return {}

        first_pods = key_to_pods.get(keys[0]) or ()
        scores = dict.fromkeys(first_pods, 1)
        active = set(first_pods)

        for key in keys[1:]:
            if not active:
                break
            active &= set(key_to_pods.get(key) or ())
            for pod in active:
                scores[pod] += 1

        return scores


def new_kv_block_scorer(config: KVBlockScorerConfig | None = None) -> LongestPrefixScorer:
    """Build the scorer for the configured strategy."""
    config = config or KVBlockScorerConfig()
    if config.scoring_strategy == KVScoringStrategy.LONGEST_PREFIX:
        return LongestPrefixScorer()
    raise ValueError(f"unsupported scoring strategy: {config.scoring_strategy}")