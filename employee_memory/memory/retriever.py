"""
Read path of the Employee Memory engine.

A query is embedded, matched against the employee's namespace under a
metadata filter, enriched with the full record from the cache and
decrypted for the requesting employee. Access counters are updated in
the background; their failures are logged and never reach the caller.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Union

from ..errors import DecryptionError, MemoryEngineError, RetrievalError
from .cache import CacheStore
from .crypto import ConfidentialityGuard
from .embeddings import EmbeddingComposer, EmbeddingSet
from .namespaces import NamespaceRegistry
from .records import (
    LifecycleState,
    MemoryMetadata,
    MemoryRecord,
    MemoryType,
    context_from_dict,
    parse_timestamp,
    utc_now,
)
from .store import decode_cached_record, memory_key
from .vector_store import VectorIndex

logger = logging.getLogger("memory.retriever")

TimeBound = Union[str, int, float, datetime, None]


@dataclass
class SearchResult:
    """A retrieved memory with its index score and access counters."""
    id: str
    score: float
    record: MemoryRecord
    metadata: Dict[str, Any] = field(default_factory=dict)
    embeddings: Optional[EmbeddingSet] = None
    accessed_count: int = 0
    last_accessed: Optional[str] = None
    relevance_score: Optional[float] = None
    time_boost: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "score": self.score,
            "metadata": dict(self.metadata),
            "memory": self.record.to_dict(),
            "accessed_count": self.accessed_count,
            "last_accessed": self.last_accessed,
        }
        if self.relevance_score is not None:
            data["relevance_score"] = self.relevance_score
        if self.time_boost is not None:
            data["time_boost"] = self.time_boost
        return data


def _epoch(value: TimeBound) -> Optional[float]:
    if value is None:
        return None
    return parse_timestamp(value).timestamp()


def build_search_filter(
    employee_id: str,
    memory_types: Optional[Iterable[Union[str, MemoryType]]] = None,
    time_range: Optional[Mapping[str, TimeBound]] = None,
    min_importance: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Build the metadata filter for a search.

    Args:
        employee_id: Owner of the memories
        memory_types: Restrict to these kinds
        time_range: Mapping with optional ``start`` and ``end`` bounds on
            the stored ``created_at``
        min_importance: Minimum importance, ignored when not positive
    """
    filter_dict: Dict[str, Any] = {"employee_id": {"$eq": employee_id}}

    if memory_types:
        filter_dict["memory_type"] = {
            "$in": [MemoryType.from_str(t).value if not isinstance(t, MemoryType) else t.value
                    for t in memory_types]
        }

    if min_importance is not None and min_importance > 0:
        filter_dict["importance"] = {"$gte": float(min_importance)}

    if time_range:
        created_at = {}
        start = _epoch(time_range.get("start"))
        end = _epoch(time_range.get("end"))
        if start is not None:
            created_at["$gte"] = start
        if end is not None:
            created_at["$lte"] = end
        if created_at:
            filter_dict["created_at"] = created_at

    return filter_dict


def open_record(
    decoded: Mapping[str, Any],
    guard: ConfidentialityGuard,
    employee_id: str,
) -> MemoryRecord:
    """Decrypt a decoded cache entry and build the record for its owner."""
    try:
        data = guard.decrypt_fields(decoded["data"], employee_id)
    except DecryptionError as e:
        e.memory_id = decoded["id"]
        raise

    memory_type = MemoryType.from_str(data["memory_type"])
    return MemoryRecord(
        id=decoded["id"],
        employee_id=decoded["employee_id"],
        memory_type=memory_type,
        content=data["content"],
        context=context_from_dict(memory_type, data.get("context")),
        metadata=MemoryMetadata.from_dict(data["metadata"]),
        state=decoded["state"],
    )


class MemoryRetriever:
    """
    Searches an employee's memories.

    Args:
        index: Vector index collaborator
        cache: Cache collaborator
        composer: Embedding composer used for query vectors
        guard: Confidentiality guard
        registry: Namespace registry
    """

    def __init__(
        self,
        index: VectorIndex,
        cache: CacheStore,
        composer: EmbeddingComposer,
        guard: ConfidentialityGuard,
        registry: NamespaceRegistry,
    ):
        self.index = index
        self.cache = cache
        self.composer = composer
        self.guard = guard
        self.registry = registry
        self._pending_updates: Set[asyncio.Task] = set()

    async def search(
        self,
        employee_id: str,
        query: str,
        top_k: int = 5,
        memory_types: Optional[Sequence[Union[str, MemoryType]]] = None,
        time_range: Optional[Mapping[str, TimeBound]] = None,
        min_importance: Optional[float] = None,
    ) -> List[SearchResult]:
        """
        Retrieve an employee's memories most similar to a query.

        Args:
            employee_id: Employee whose namespace is searched
            query: The text to search for
            top_k: Maximum number of index matches
            memory_types: Optional kinds to restrict to
            time_range: Optional ``{"start": ..., "end": ...}`` bounds
            min_importance: Optional importance floor

        Returns:
            Decrypted results in index-score order
        """
        namespace = self.registry.namespace_for(employee_id)
        filter_dict = build_search_filter(employee_id, memory_types, time_range, min_importance)

        try:
            vector = await self.composer.semantic(query)
            matches = await self.index.query(
                namespace, vector, top_k=top_k, filter=filter_dict, include_metadata=True
            )
        except Exception as e:
            logger.error(f"Failed to query memories for {employee_id}: {str(e)}")
            raise RetrievalError(
                f"Vector index query failed: {str(e)}",
                employee_id=employee_id,
                operation="search",
                namespace=namespace,
            ) from e

        try:
            cached = await asyncio.gather(
                *(self.cache.hgetall(memory_key(match.id)) for match in matches)
            )
        except Exception as e:
            logger.error(f"Failed to read cached memories for {employee_id}: {str(e)}")
            raise RetrievalError(
                f"Cache read failed: {str(e)}",
                employee_id=employee_id,
                operation="search",
                namespace=namespace,
            ) from e

        results = []
        for match, fields in zip(matches, cached):
            if not fields or "data" not in fields:
                logger.warning(
                    f"Memory {match.id} is indexed in {namespace} but missing from cache; skipping"
                )
                continue
            try:
                decoded = decode_cached_record(fields)
            except MemoryEngineError as e:
                raise RetrievalError(
                    e.message, employee_id=employee_id, operation="search",
                    memory_id=match.id, namespace=namespace,
                ) from e
            if decoded["state"] != LifecycleState.ACTIVE:
                logger.debug(f"Skipping {decoded['state'].value} memory {match.id}")
                continue
            if decoded["employee_id"] != employee_id:
                logger.warning(f"Memory {match.id} does not belong to {employee_id}; skipping")
                continue

            results.append(SearchResult(
                id=match.id,
                score=match.score,
                record=open_record(decoded, self.guard, employee_id),
                metadata=match.metadata,
                embeddings=decoded["embeddings"],
                accessed_count=decoded["accessed_count"],
                last_accessed=decoded["last_accessed"],
            ))

        self._schedule_access_update([result.id for result in results])
        logger.info(f"Retrieved {len(results)} memories for query: {query[:50]}")
        return results

    async def get(self, employee_id: str, memory_id: str) -> Optional[SearchResult]:
        """Fetch one memory by id, whatever its lifecycle state."""
        try:
            fields = await self.cache.hgetall(memory_key(memory_id))
        except Exception as e:
            raise RetrievalError(
                f"Cache read failed: {str(e)}", employee_id=employee_id,
                operation="get", memory_id=memory_id,
            ) from e
        if not fields or "data" not in fields:
            return None
        decoded = decode_cached_record(fields)
        if decoded["employee_id"] != employee_id:
            return None
        return SearchResult(
            id=memory_id,
            score=0.0,
            record=open_record(decoded, self.guard, employee_id),
            metadata=decoded["index_metadata"],
            embeddings=decoded["embeddings"],
            accessed_count=decoded["accessed_count"],
            last_accessed=decoded["last_accessed"],
        )

    def _schedule_access_update(self, memory_ids: List[str]) -> None:
        if not memory_ids:
            return
        task = asyncio.create_task(self._update_access_statistics(memory_ids))
        self._pending_updates.add(task)
        task.add_done_callback(self._pending_updates.discard)

    async def _update_access_statistics(self, memory_ids: List[str]) -> None:
        for memory_id in memory_ids:
            key = memory_key(memory_id)
            try:
                if not await self.cache.hexists(key, "data"):
                    continue
                await self.cache.hincrby(key, "accessed_count", 1)
                await self.cache.hset(key, {"last_accessed": utc_now().isoformat()})
                # Deleted while we were writing: drop the counter-only stub.
                if not await self.cache.hexists(key, "data"):
                    await self.cache.delete(key)
            except Exception as e:
                logger.warning(f"Failed to update access statistics for {memory_id}: {str(e)}")

    async def wait_for_access_updates(self) -> None:
        """Wait for background access-counter updates to finish."""
        if self._pending_updates:
            await asyncio.gather(*list(self._pending_updates), return_exceptions=True)
