# llmd-kvcache

A library for tracking which inference pods hold which KV-cache blocks, and
for scoring pods by how much of a prompt's prefix they already have cached.

## How it fits together

1. `Indexer.get_pod_scores` queues the prompt on a `TokenizationPool`
   (`llmd_kvcache.pool`). Worker threads tokenize it and record the tokens
   in a prefix store. The indexer uses `LRUTokenStore`
   (`llmd_kvcache.prefix_lru`). `ContainedTokenStore`
   (`llmd_kvcache.prefix_trie`) is a character-trie alternative with the same
   `TokenIndexer` interface.
2. The indexer asks the prefix store for the tokens of the longest known
   prefix of the prompt. A prompt scores only after an earlier request has
   had it tokenized.
3. `ChunkedTokenDatabase` (`llmd_kvcache.token_processor`) cuts those tokens
   into whole chunks of `chunk_size` tokens. It turns each chunk into a `Key`
   with a rolling SHA-256 hash. Trailing tokens that do not fill a chunk are
   dropped.
4. A block index (`InMemoryIndex` or `RedisIndex`) reports which pods hold
   each key.
5. `LongestPrefixScorer` scores each pod that holds the first block. A pod
   gets one point for every consecutive block it holds, counting from that
   first block.

## Installation

```
pip install llmd-kvcache
```

Run the tests with:

```
pip install "llmd-kvcache[test]"
pytest
```

## Usage

The indexer needs a tokenizer. This is any `Tokenizer` whose
`encode(text, model_name)` method returns a list of token ids and a list of
`(start, end)` offsets. `CachedTokenizer` takes a loader function, which is
called with a model name. The loader returns an object whose `encode(text)`
result has `ids` and `offsets` attributes. `CachedTokenizer` keeps the 20
most recently used models by default; pass `cache_size` to change this.

```python
import threading

from llmd_kvcache.indexer import Indexer, IndexerConfig
from llmd_kvcache.kvblock import PodEntry
from llmd_kvcache.token_processor import ChunkedTokenDatabase

config = IndexerConfig()
indexer = Indexer(config, my_tokenizer)

stop = threading.Event()
worker = threading.Thread(target=indexer.run, args=(stop,), daemon=True)
worker.start()

prompt = "What is the capital of France?"

# The first call queues the prompt for tokenization and returns {}.
indexer.get_pod_scores(prompt, "my-model", ["10.0.0.1"])

# Register the blocks a pod holds, keyed the same way the indexer keys them.
tokens, _ = my_tokenizer.encode(prompt, "my-model")
keys = ChunkedTokenDatabase(config.token_processor_config).tokens_to_kv_block_keys(
    tokens, "my-model"
)
indexer.kv_block_index().add(keys, [PodEntry("10.0.0.1", "gpu")])

# Once the background workers have tokenized the prompt:
scores = indexer.get_pod_scores(prompt, "my-model", ["10.0.0.1"])
# e.g. {"10.0.0.1": 1}

stop.set()
worker.join()
```

If `pod_identifiers` is empty or `None`, every pod is considered. Pods that
do not hold the first block are left out of the result.

The pool retries a failed tokenization task. The delay between tries grows
exponentially.

### Configuration

`IndexerConfig` groups the settings for each part:

- `prefix_store_config`: a `PrefixStoreConfig` holding an `LRUStoreConfig`.
  This has `block_size` (prompt bytes per block, default 256) and
  `cache_size` (blocks kept per model, default 500000).
- `token_processor_config`: a `TokenProcessorConfig`. Its `chunk_size` is the
  number of tokens per block and defaults to 256.
- `kv_block_index_config`: an `IndexConfig`, described below.
- `kv_block_scorer_config`: a `KVBlockScorerConfig`. The only strategy is
  `KVScoringStrategy.LONGEST_PREFIX`.
- `tokenizers_pool_config`: a `PoolConfig`. Its `workers_count` defaults to 5.

### Block index backends

`new_index(IndexConfig(...))` (`llmd_kvcache.block_index`) builds an
`InMemoryIndex` when `in_memory_config` is set, which it is by default.
Otherwise it connects to Redis with `redis_config` (a `RedisIndexConfig` with
`address` and `db`). With neither set, it raises `ValueError`.

- `InMemoryIndex` keeps up to `size` keys, and up to `pod_cache_size` pods
  per key, with least-recently-used eviction. Calling `lookup` with no keys,
  or `add` with no keys or no entries, raises `ValueError`.
- `RedisIndex` stores each key as a Redis hash with one field per pod entry.
  You can wrap an existing client with `RedisIndex(client)`. You can also
  connect and ping with `RedisIndex.from_config(config)`, which raises
  `ConnectionError` when the server cannot be reached.

Every backend has `lookup(keys, pod_identifiers)`, `add(keys, entries)` and
`evict(key, entries)`.

### Scoring

```python
from llmd_kvcache.kvblock_scorer import KVBlockScorerConfig, new_kv_block_scorer

scorer = new_kv_block_scorer(KVBlockScorerConfig())
scorer.score(keys, key_to_pods)  # {pod: consecutive-hit count}
```

An unknown scoring strategy raises `ValueError`.

### Hashing

`llmd_kvcache.prefix_lru.xxh64(data, seed=0)` is the 64-bit xxHash used to
chain the prompt blocks of `LRUTokenStore`.

## What this package does not do

- It loads no tokenizer models itself. `HFTokenizerConfig` only holds
  settings (a token and a cache directory), and nothing in the package reads
  them. You supply the loader that `CachedTokenizer` calls.
- It learns nothing from the pods on its own. Callers must report which pods
  hold which blocks through the index's `add` and `evict`.
- It has no command-line program and no server. It is a library to embed in
  a scheduler.