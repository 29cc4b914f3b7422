"""A KV-block index stored in Redis hashes, one hash per block key."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime

import redis

from .kvblock import Index, Key, PodEntry

logger = logging.getLogger(__name__)


@dataclass
class RedisIndexConfig:
    """Connection settings for :class:`RedisIndex`."""

    address: str = "localhost:6379"
    db: int = 0

    @property
    def host(self) -> str:
        host, _, _ = self.address.rpartition(":")
        return host if ":" in self.address else self.address

    @property
    def port(self) -> int:
        if ":" not in self.address:
            return 6379
        return int(self.address.rpartition(":")[2])


def _rfc3339_now() -> str:
    stamp = datetime.now().astimezone().isoformat(timespec="seconds")
    return stamp[:-6] + "Z" if stamp.endswith("+00:00") else stamp


def _text(value: str | bytes) -> str:
    return value.decode() if isinstance(value, bytes) else value


class RedisIndex(Index):
    """An :class:`Index` whose keys are Redis hashes with one field per pod entry."""

    def __init__(self, client) -> None:
        self.client = client

    @classmethod
    def from_config(cls, config: RedisIndexConfig | None = None) -> RedisIndex:
        """Connect to Redis and check the connection with a ping."""
        config = config or RedisIndexConfig()
        client = redis.Redis(host=config.host, port=config.port, db=config.db)
        try:
            client.ping()
        except redis.exceptions.RedisError as err:
            raise ConnectionError(f"could not connect to Redis: {err}") from err
        return cls(client)

    def lookup(
        self, keys: Sequence[Key], pod_identifiers: Iterable[str] | None = None
    ) -> tuple[list[Key], dict[Key, list[str]]]:
        keys = list(keys)
        if not keys:
            return [], {}

        pipe = self.client.pipeline(transaction=False)
        for key in keys:
            pipe.hkeys(str(key))
        try:
            results = pipe.execute()
        except redis.exceptions.RedisError as err:
            raise RuntimeError(f"redis pipeline execution failed: {err}") from err

        wanted = set(pod_identifiers or ())
        pods_per_key: dict[Key, list[str]] = {}
        highest_hit_idx = 0

        for idx, (key, fields) in enumerate(zip(keys, results)):
            filtered = []
            for field in fields or ():
                ip = _text(field).split(":", 1)[0]
                if not wanted or ip in wanted:
                    filtered.append(ip)

            if not filtered:
                logger.debug("no pods found for key %s, cutting search", key)
                return keys[:idx], pods_per_key

            highest_hit_idx = idx
            pods_per_key[key] = filtered

        return keys[:highest_hit_idx], pods_per_key

    def add(self, keys: Sequence[Key], entries: Sequence[PodEntry]) -> None:
        if not keys or not entries:
            return

        pipe = self.client.pipeline(transaction=False)
        for key in keys:
            redis_key = str(key)
            for entry in entries:
                pipe.hset(redis_key, str(entry), _rfc3339_now())
        try:
            pipe.execute()
        except redis.exceptions.RedisError as err:
            raise RuntimeError(f"failed to add entries to Redis: {err}") from err

    def evict(self, key: Key, entries: Sequence[PodEntry]) -> None:
        redis_key = str(key)
        pipe = self.client.pipeline(transaction=False)
        for entry in entries:
            pipe.hdel(redis_key, str(entry))
        try:
            pipe.execute()
        except redis.exceptions.RedisError as err:
            raise RuntimeError(f"failed to evict entries from Redis: {err}") from err