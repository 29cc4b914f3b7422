import re
from unittest import mock

import pytest
import redis

from llmd_kvcache.kvblock import Key, PodEntry
from llmd_kvcache.redis_index import RedisIndex, RedisIndexConfig

MODEL = "test-model"


class FakePipeline:
    def __init__(self, server):
        self.server = server
        self.ops = []

    def hkeys(self, name):
        self.ops.append(("hkeys", name))

    def hset(self, name, field, value):
        self.ops.append(("hset", name, field, value))

    def hdel(self, name, field):
        self.ops.append(("hdel", name, field))

    def execute(self):
        if self.server.fail_with is not None:
            raise self.server.fail_with
        self.server.executed += 1
        results = []
        for op in self.ops:
            if op[0] == "hkeys":
                results.append([f.encode() for f in self.server.data.get(op[1], {})])
            elif op[0] == "hset":
                self.server.data.setdefault(op[1], {})[op[2]] = op[3]
                results.append(1)
            else:
                results.append(int(self.server.data.get(op[1], {}).pop(op[2], None) is not None))
        self.ops = []
        return results


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.fail_with = None
        self.executed = 0

    def pipeline(self, transaction=True):
        return FakePipeline(self)


def keys(*hashes):
    return [Key(MODEL, h) for h in hashes]


@pytest.fixture
def server():
    return FakeRedis()


@pytest.fixture
def index(server):
    return RedisIndex(server)


def test_config_defaults():
    config = RedisIndexConfig()
    assert (config.host, config.port, config.db) == ("localhost", 6379, 0)


def test_config_parses_address():
    config = RedisIndexConfig(address="cache.example.com:7000", db=3)
    assert (config.host, config.port) == ("cache.example.com", 7000)


def test_lookup_without_keys_returns_empty(index, server):
    assert index.lookup([]) == ([], {})
    assert server.executed == 0


def test_add_writes_one_field_per_entry(index, server):
    block_keys = keys("b1", "b2")
    index.add(block_keys, [PodEntry("pod-a", "gpu"), PodEntry("pod-b", "cpu")])
    for key in block_keys:
        assert set(server.data[str(key)]) == {"pod-a@gpu", "pod-b@cpu"}


def test_add_stores_rfc3339_timestamp(index, server):
    index.add(keys("b1"), [PodEntry("pod-a", "gpu")])
    stamp = server.data[str(Key(MODEL, "b1"))]["pod-a@gpu"]
    assert re.fullmatch(r"\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d(Z|[+-]\d\d:\d\d)", stamp)
    hit, pods = index.lookup(keys("b1"))
    assert hit == []
    assert pods == {Key(MODEL, "b1"): ["pod-a@gpu"]}


@pytest.mark.parametrize("block_keys, entries", [([], [PodEntry("p", "gpu")]), (keys("b1"), [])])
def test_add_with_nothing_to_add_does_nothing(index, server, block_keys, entries):
    index.add(block_keys, entries)
    assert server.data == {}
    assert server.executed == 0
    assert index.lookup(keys("b1")) == ([], {})


def test_lookup_returns_pods_and_drops_last_hit_key(index):
    block_keys = keys("b1", "b2", "b3")
    index.add(block_keys, [PodEntry("pod-a", "gpu")])
    hit, pods = index.lookup(block_keys)
    assert hit == block_keys[:2]
    assert pods == {k: ["pod-a@gpu"] for k in block_keys}


def test_lookup_stops_at_first_missing_key(index):
    index.add(keys("b1", "b3"), [PodEntry("pod-a", "gpu")])
    query = keys("b1", "b2", "b3")
    hit, pods = index.lookup(query)
    assert hit == query[:1]
    assert list(pods) == query[:1]


def test_lookup_filters_by_identifier_before_colon(index, server):
    server.data[str(Key(MODEL, "b1"))] = {"10.0.0.1:8000": "t", "10.0.0.2:8000": "t"}
    server.data[str(Key(MODEL, "b2"))] = {"10.0.0.1:8000": "t"}
    hit, pods = index.lookup(keys("b1", "b2"), ["10.0.0.1"])
    assert pods == {Key(MODEL, "b1"): ["10.0.0.1"], Key(MODEL, "b2"): ["10.0.0.1"]}
    assert hit == keys("b1")


def test_lookup_filter_excluding_all_pods_cuts_at_start(index, server):
    server.data[str(Key(MODEL, "b1"))] = {"10.0.0.1:8000": "t"}
    assert index.lookup(keys("b1"), {"10.0.0.9"}) == ([], {})


def test_evict_removes_fields(index, server):
    block_keys = keys("b1")
    index.add(block_keys, [PodEntry("pod-a", "gpu"), PodEntry("pod-b", "gpu")])
    index.evict(block_keys[0], [PodEntry("pod-a", "gpu")])
    assert set(server.data[str(block_keys[0])]) == {"pod-b@gpu"}


@pytest.mark.parametrize("operation", ["lookup", "add", "evict"])
def test_pipeline_errors_are_raised(index, server, operation):
    server.fail_with = redis.exceptions.ResponseError("WRONGTYPE")
    entries = [PodEntry("pod-a", "gpu")]
    with pytest.raises(RuntimeError):
        if operation == "lookup":
            index.lookup(keys("b1"))
        elif operation == "add":
            index.add(keys("b1"), entries)
        else:
            index.evict(Key(MODEL, "b1"), entries)


def test_from_config_fails_when_ping_fails():
    client = mock.Mock()
    client.ping.side_effect = redis.exceptions.ConnectionError("refused")
    with mock.patch("redis.Redis", return_value=client):
        with pytest.raises(ConnectionError):
            RedisIndex.from_config(RedisIndexConfig())


def test_from_config_connects_with_config_values():
    client = mock.Mock()
    with mock.patch("redis.Redis", return_value=client) as factory:
        index = RedisIndex.from_config(RedisIndexConfig(address="localhost:6380", db=2))
    factory.assert_called_once_with(host="localhost", port=6380, db=2)
    client.ping.assert_called_once_with()
    assert index.client is client