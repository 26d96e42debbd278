"""
Test doubles for the Employee Memory tests.

The hashing embedder is a deterministic bag-of-words stand-in for the
inference model: texts that share words get a positive cosine similarity.
"""

import re
import hashlib
from typing import List

from employee_memory.config import MemoryConfig
from employee_memory.memory.cache import InMemoryCache
from employee_memory.memory.vector_store import InMemoryVectorIndex
from employee_memory.memory_manager import MemoryManager

TEST_KEY = bytes(range(32))


class HashingEmbedder:
    """Maps each word to a hashed bucket of a fixed-length count vector."""

    def __init__(self, dimension: int = 384):
        self.dimension = dimension
        self.calls: List[str] = []

    async def __call__(self, text: str) -> List[float]:
        self.calls.append(text)
        vector = [0.0] * self.dimension
        for token in re.findall(r"[a-z0-9]+", text.lower()):
            bucket = int(hashlib.sha256(token.encode("utf-8")).hexdigest()[:8], 16) % self.dimension
            vector[bucket] += 1.0
        return vector


class FailingEmbedder:
    async def __call__(self, text: str) -> List[float]:
        raise ConnectionError("embedding service unavailable")


class FlakyMemoryCache(InMemoryCache):
    """Fails writes to ``memory:`` hashes a given number of times."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.memory_writes = 0

    async def hset(self, key, mapping):
        if key.startswith("memory:") and "data" in mapping:
            self.memory_writes += 1
            if self.failures > 0:
                self.failures -= 1
                raise ConnectionError("cache unavailable")
        await super().hset(key, mapping)


class CounterFailingCache(InMemoryCache):
    """Fails access-counter increments on memory hashes."""

    async def hincrby(self, key, field, amount=1):
        if key.startswith("memory:"):
            raise ConnectionError("cache unavailable")
        return await super().hincrby(key, field, amount)


class KeyFailingCache(InMemoryCache):
    """Fails every operation on the keys listed in ``failing_keys``."""

    def __init__(self):
        super().__init__()
        self.failing_keys = set()

    def _check(self, key):
        if key in self.failing_keys:
            raise ConnectionError(f"cache shard unavailable for {key}")

    async def hset(self, key, mapping):
        self._check(key)
        await super().hset(key, mapping)

    async def hgetall(self, key):
        self._check(key)
        return await super().hgetall(key)

    async def hincrby(self, key, field, amount=1):
        self._check(key)
        return await super().hincrby(key, field, amount)

    async def smembers(self, key):
        self._check(key)
        return await super().smembers(key)


def make_config(**overrides) -> MemoryConfig:
    settings = {"encryption_key": TEST_KEY, "embedding_dimension": 384, "temporal_dimension": 512}
    settings.update(overrides)
    return MemoryConfig(**settings)


def make_manager(index=None, cache=None, embed=None, directory=None, **config_overrides) -> MemoryManager:
    """A manager on the in-memory index and cache with no retry backoff."""
    return MemoryManager(
        make_config(**config_overrides),
        index if index is not None else InMemoryVectorIndex(),
        cache if cache is not None else InMemoryCache(),
        embed if embed is not None else HashingEmbedder(),
        directory=directory,
        retry_multiplier=0,
    )
