"""The KV-cache indexer: scores pods by how much of a prompt's KV cache they hold."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field

from .block_index import IndexConfig, new_index
from .kvblock import Index
from .kvblock_scorer import KVBlockScorerConfig, new_kv_block_scorer
from .pool import PoolConfig, TokenizationPool
from .prefix_lru import LRUTokenStore, PrefixStoreConfig
from .token_processor import ChunkedTokenDatabase, TokenProcessorConfig
from .tokenizer import Tokenizer

logger = logging.getLogger(__name__)


@dataclass
class IndexerConfig:
    """Settings for every component of :class:`Indexer`."""

    prefix_store_config: PrefixStoreConfig = field(default_factory=PrefixStoreConfig)
    token_processor_config: TokenProcessorConfig = field(default_factory=TokenProcessorConfig)
    kv_block_index_config: IndexConfig = field(default_factory=IndexConfig)
    kv_block_scorer_config: KVBlockScorerConfig = field(default_factory=KVBlockScorerConfig)
    tokenizers_pool_config: PoolConfig = field(default_factory=PoolConfig)


class Indexer:
    """Ties together the prompt token store, block keys, block index and scorer.

    Prompts are tokenized in the background; a prompt only scores once its
    prefix has been tokenized by an earlier request.
    """

    def __init__(self, config: IndexerConfig | None, tokenizer: Tokenizer) -> None:
        config = config or IndexerConfig()
        self._tokens_indexer = LRUTokenStore(config.prefix_store_config)
        self._token_processor = ChunkedTokenDatabase(config.token_processor_config)
        self._kv_block_index = new_index(config.kv_block_index_config)
        self._scorer = new_kv_block_scorer(config.kv_block_scorer_config)
        self._pool = TokenizationPool(
            config.tokenizers_pool_config, self._tokens_indexer, tokenizer
        )

    def run(self, stop_event: threading.Event) -> None:
        """Run the tokenization workers until ``stop_event`` is set."""
        self._pool.run(stop_event)

    def kv_block_index(self) -> Index:
        """Return the KV-block index used by the indexer."""
        return self._kv_block_index

    def get_pod_scores(
        self,
        prompt: str,
        model_name: str,
        pod_identifiers: Iterable[str] | None = None,
    ) -> dict[str, int]:
        """Return a score per pod for the prompt's cached prefix.

        Pods are identified by address; when ``pod_identifiers`` is empty,
        all pods are considered.
        """
        self._pool.add_task(prompt, model_name)

        tokens = self._tokens_indexer.find_longest_contained_tokens(prompt, model_name)
        if not tokens:
            return {}

        block_keys = self._token_processor.tokens_to_kv_block_keys(tokens, model_name)
        logger.debug("found tokens %s, block keys %s", tokens, block_keys)

        try:
            hit_keys, key_to_pods = self._kv_block_index.lookup(block_keys, pod_identifiers)
        except (ValueError, RuntimeError, OSError) as err:
            raise RuntimeError(f"failed to query kvblock indexer: {err}") from err
        logger.debug("found block keys %s, pods %s", hit_keys, key_to_pods)

        scores = self._scorer.score(hit_keys, key_to_pods)
        logger.debug("found pod scores %s", scores)
        return scores