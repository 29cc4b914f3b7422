import threading
from types import SimpleNamespace

import pytest

from llmd_kvcache.tokenizer import CachedTokenizer, HFTokenizerConfig, Tokenizer


class FakeModel:
    def __init__(self, name):
        self.name = name

    def encode(self, text):
        return SimpleNamespace(
            ids=[ord(c) for c in text],
            offsets=[[i, i + 1] for i in range(len(text))],
        )


class CountingLoader:
    def __init__(self):
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, model_name):
        with self._lock:
            self.calls.append(model_name)
        return FakeModel(model_name)


def test_encode_returns_ids_and_offsets():
    tokenizer = CachedTokenizer(CountingLoader())
    ids, offsets = tokenizer.encode("hi", "model-a")
    assert ids == [ord("h"), ord("i")]
    assert offsets == [(0, 1), (1, 2)]


def test_offsets_cover_every_token():
    tokenizer = CachedTokenizer(CountingLoader())
    text = "The capital of France"
    ids, offsets = tokenizer.encode(text, "model-a")
    assert len(ids) == len(offsets)
    assert all(isinstance(pair, tuple) for pair in offsets)
    assert offsets[-1][1] == len(text)


def test_model_is_loaded_once_and_reused():
    loader = CountingLoader()
    tokenizer = CachedTokenizer(loader)
    tokenizer.encode("one", "model-a")
    tokenizer.encode("two", "model-a")
    tokenizer.encode("three", "model-b")
    assert loader.calls == ["model-a", "model-b"]


def test_least_recently_used_model_is_dropped():
    loader = CountingLoader()
    tokenizer = CachedTokenizer(loader, cache_size=1)
    tokenizer.encode("x", "model-a")
    tokenizer.encode("x", "model-b")
    tokenizer.encode("x", "model-a")
    assert loader.calls == ["model-a", "model-b", "model-a"]


def test_loader_error_propagates_and_is_not_cached():
    attempts = []

    def failing_loader(model_name):
        attempts.append(model_name)
        raise OSError("model not found")

    tokenizer = CachedTokenizer(failing_loader)
    with pytest.raises(OSError, match="model not found"):
        tokenizer.encode("text", "missing")
    with pytest.raises(OSError):
        tokenizer.encode("text", "missing")
    assert attempts == ["missing", "missing"]


def test_non_positive_cache_size_is_rejected():
    with pytest.raises(ValueError, match="failed to initialize tokenizer cache"):
        CachedTokenizer(CountingLoader(), cache_size=0)


def test_tokenizer_interface_cannot_be_instantiated():
    with pytest.raises(TypeError):
        Tokenizer()


def test_hf_config_defaults():
    config = HFTokenizerConfig()
    assert config.hugging_face_token == ""
    assert config.tokenizers_cache_dir.endswith("bin")