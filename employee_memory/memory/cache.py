"""
Cache adapters for the Employee Memory engine.

Full memory records, namespace metadata and permissions live in a
hash-map style cache keyed by ``memory:<id>``, ``namespace:<name>``,
``permissions:<name>`` and the per-namespace member set
``memories:<name>``. :class:`RedisCache` is the production adapter;
:class:`InMemoryCache` mirrors Redis semantics (string values, atomic
HINCRBY) for local runs and tests.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Mapping, Set

from redis.asyncio import Redis

logger = logging.getLogger("memory.cache")


class CacheStore(ABC):
    """Hash and set operations the engine needs from its cache."""

    @abstractmethod
    async def hset(self, key: str, mapping: Mapping[str, object]) -> None:
        ...

    @abstractmethod
    async def hgetall(self, key: str) -> Dict[str, str]:
        """All fields of a hash; empty when the key does not exist."""

    @abstractmethod
    async def hexists(self, key: str, field: str) -> bool:
        ...

    @abstractmethod
    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        """Atomically add ``amount`` to an integer field and return the new value."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def sadd(self, key: str, *members: str) -> None:
        ...

    @abstractmethod
    async def srem(self, key: str, *members: str) -> None:
        ...

    @abstractmethod
    async def smembers(self, key: str) -> Set[str]:
        ...

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


class InMemoryCache(CacheStore):
    """Process-local cache with Redis-like semantics."""

    def __init__(self):
        self._hashes: Dict[str, Dict[str, str]] = {}
        self._sets: Dict[str, Set[str]] = {}

    async def hset(self, key: str, mapping: Mapping[str, object]) -> None:
        self._hashes.setdefault(key, {}).update({k: str(v) for k, v in mapping.items()})

    async def hgetall(self, key: str) -> Dict[str, str]:
        return dict(self._hashes.get(key, {}))

    async def hexists(self, key: str, field: str) -> bool:
        return field in self._hashes.get(key, {})

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        # No await between read and write: atomic on the event loop.
        fields = self._hashes.setdefault(key, {})
        value = int(fields.get(field, 0)) + amount
        fields[field] = str(value)
        return value

    async def delete(self, key: str) -> None:
        self._hashes.pop(key, None)
        self._sets.pop(key, None)

    async def sadd(self, key: str, *members: str) -> None:
        self._sets.setdefault(key, set()).update(members)

    async def srem(self, key: str, *members: str) -> None:
        self._sets.get(key, set()).difference_update(members)

    async def smembers(self, key: str) -> Set[str]:
        return set(self._sets.get(key, set()))


class RedisCache(CacheStore):
    """Cache backed by Redis hashes and sets."""

    def __init__(self, client: Redis):
        self._r = client

    @classmethod
    async def create(cls, redis_url: str) -> 'RedisCache':
        """Connect to Redis and verify the connection with PING."""
        client = Redis.from_url(redis_url, decode_responses=True)
        try:
            await client.ping()
        except Exception:
            logger.exception(f"Failed to connect to Redis at {redis_url}")
            raise
        logger.info(f"Connected to Redis at {redis_url}")
        return cls(client)

    async def hset(self, key: str, mapping: Mapping[str, object]) -> None:
        await self._r.hset(key, mapping={k: str(v) for k, v in mapping.items()})

    async def hgetall(self, key: str) -> Dict[str, str]:
        return await self._r.hgetall(key)

    async def hexists(self, key: str, field: str) -> bool:
        return bool(await self._r.hexists(key, field))

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        return await self._r.hincrby(key, field, amount)

    async def delete(self, key: str) -> None:
        await self._r.delete(key)

    async def sadd(self, key: str, *members: str) -> None:
        if members:
            await self._r.sadd(key, *members)

    async def srem(self, key: str, *members: str) -> None:
        if members:
            await self._r.srem(key, *members)

    async def smembers(self, key: str) -> Set[str]:
        return set(await self._r.smembers(key))

    async def ping(self) -> bool:
        return bool(await self._r.ping())

    async def close(self) -> None:
        await self._r.aclose()
