"""
Vector index adapters for the Employee Memory engine.

The engine talks to the vector index through :class:`VectorIndex`:
namespaced upsert, filtered nearest-neighbour query, delete and stats.
Two implementations are provided: :class:`ChromaVectorIndex` (one ChromaDB
collection per namespace) and :class:`InMemoryVectorIndex` (exact cosine
search with numpy) for local runs and tests.

Filters use the operator form ``{"field": {"$op": value}}`` with ``$eq``,
``$ne``, ``$in``, ``$nin``, ``$gt``, ``$gte``, ``$lt``, ``$lte``; several
fields in one filter are combined with AND.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import chromadb
import numpy as np

logger = logging.getLogger("memory.vector_store")


@dataclass
class VectorEntry:
    """A vector to upsert into a namespace."""
    id: str
    values: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorMatch:
    """A query hit; higher scores are closer."""
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


_COMPARATORS = {
    "$eq": lambda value, target: value == target,
    "$ne": lambda value, target: value != target,
    "$in": lambda value, target: value in target,
    "$nin": lambda value, target: value not in target,
    "$gt": lambda value, target: value is not None and value > target,
    "$gte": lambda value, target: value is not None and value >= target,
    "$lt": lambda value, target: value is not None and value < target,
    "$lte": lambda value, target: value is not None and value <= target,
}


def matches_filter(metadata: Dict[str, Any], filter_dict: Optional[Dict[str, Any]]) -> bool:
    """Evaluate an operator-form filter against one metadata mapping."""
    if not filter_dict:
        return True
    for key, condition in filter_dict.items():
        if key == "$and":
            if not all(matches_filter(metadata, clause) for clause in condition):
                return False
            continue
        value = metadata.get(key)
        if not isinstance(condition, dict):
            condition = {"$eq": condition}
        for op, target in condition.items():
            comparator = _COMPARATORS.get(op)
            if comparator is None:
                raise ValueError(f"Unsupported filter operator: {op}")
            if not comparator(value, target):
                return False
    return True


class VectorIndex(ABC):
    """Namespaced vector index collaborator."""

    @abstractmethod
    async def upsert(self, namespace: str, entries: Sequence[VectorEntry]) -> None:
        ...

    @abstractmethod
    async def query(
        self,
        namespace: str,
        vector: Sequence[float],
        top_k: int,
        filter: Optional[Dict[str, Any]] = None,
        include_metadata: bool = True,
    ) -> List[VectorMatch]:
        ...

    @abstractmethod
    async def delete(self, namespace: str, ids: Sequence[str]) -> None:
        ...

    @abstractmethod
    async def describe_stats(self) -> Dict[str, Any]:
        """Return ``{"namespaces": {name: {"vector_count": n}}, "total_vector_count": n}``."""

    async def close(self) -> None:
        pass


class InMemoryVectorIndex(VectorIndex):
    """Exact cosine-similarity index held in process memory."""

    def __init__(self):
        self._namespaces: Dict[str, Dict[str, VectorEntry]] = {}

    async def upsert(self, namespace: str, entries: Sequence[VectorEntry]) -> None:
        vectors = self._namespaces.setdefault(namespace, {})
        for entry in entries:
            vectors[entry.id] = VectorEntry(entry.id, list(entry.values), dict(entry.metadata))

    async def query(
        self,
        namespace: str,
        vector: Sequence[float],
        top_k: int,
        filter: Optional[Dict[str, Any]] = None,
        include_metadata: bool = True,
    ) -> List[VectorMatch]:
        candidates = [
            entry for entry in self._namespaces.get(namespace, {}).values()
            if matches_filter(entry.metadata, filter)
        ]
        if not candidates or top_k <= 0:
            return []

        query = np.asarray(vector, dtype=np.float64)
        matrix = np.asarray([entry.values for entry in candidates], dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)

        order = np.argsort(-scores, kind="stable")[:top_k]
        return [
            VectorMatch(
                id=candidates[i].id,
                score=float(scores[i]),
                metadata=dict(candidates[i].metadata) if include_metadata else {},
            )
            for i in order
        ]

    async def delete(self, namespace: str, ids: Sequence[str]) -> None:
        vectors = self._namespaces.get(namespace, {})
        for memory_id in ids:
            vectors.pop(memory_id, None)

    async def describe_stats(self) -> Dict[str, Any]:
        namespaces = {
            name: {"vector_count": len(vectors)}
            for name, vectors in self._namespaces.items()
        }
        return {
            "namespaces": namespaces,
            "total_vector_count": sum(ns["vector_count"] for ns in namespaces.values()),
        }


def to_chroma_where(filter_dict: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Translate an operator-form filter into a Chroma ``where`` clause.

    Chroma accepts one field and one operator per clause, so multi-field
    and multi-operator filters become an explicit ``$and``.
    """
    if not filter_dict:
        return None
    clauses = []
    for key, condition in filter_dict.items():
        if key == "$and":
            clauses.extend(to_chroma_where(clause) for clause in condition)
            continue
        if not isinstance(condition, dict):
            condition = {"$eq": condition}
        for op, target in condition.items():
            if isinstance(target, tuple):
                target = list(target)
            clauses.append({key: {op: target}})
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _to_chroma_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
    # Chroma metadata values must be scalars.
    flat = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, set)):
            flat[key] = ",".join(str(v) for v in value)
        else:
            flat[key] = value
    return flat


def _from_chroma_metadata(metadata: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    result = dict(metadata or {})
    if isinstance(result.get("tags"), str):
        result["tags"] = [tag for tag in result["tags"].split(",") if tag]
    return result


class ChromaVectorIndex(VectorIndex):
    """
    Vector index backed by ChromaDB, one cosine-space collection per namespace.

    Args:
        persist_directory: Directory for a persistent client. If None, uses
            an in-memory client.
        client: An existing Chroma client, overriding ``persist_directory``
    """

    def __init__(self, persist_directory: Optional[str] = None, client: Any = None):
        self.persist_directory = persist_directory
        if client is not None:
            self.client = client
        elif persist_directory:
            logger.info(f"Initializing persistent ChromaDB at {persist_directory}")
            self.client = chromadb.PersistentClient(path=persist_directory)
        else:
            logger.info("Initializing in-memory ChromaDB")
            self.client = chromadb.EphemeralClient()
        self._collections: Dict[str, Any] = {}

    def _collection(self, namespace: str):
        collection = self._collections.get(namespace)
        if collection is None:
            collection = self.client.get_or_create_collection(
                name=namespace,
                metadata={"hnsw:space": "cosine"},
                embedding_function=None,
            )
            self._collections[namespace] = collection
        return collection

    async def upsert(self, namespace: str, entries: Sequence[VectorEntry]) -> None:
        if not entries:
            return
        collection = self._collection(namespace)
        await asyncio.to_thread(
            collection.upsert,
            ids=[entry.id for entry in entries],
            embeddings=[list(entry.values) for entry in entries],
            metadatas=[_to_chroma_metadata(entry.metadata) for entry in entries],
        )

    async def query(
        self,
        namespace: str,
        vector: Sequence[float],
        top_k: int,
        filter: Optional[Dict[str, Any]] = None,
        include_metadata: bool = True,
    ) -> List[VectorMatch]:
        collection = self._collection(namespace)
        count = await asyncio.to_thread(collection.count)
        if count == 0 or top_k <= 0:
            return []

        include = ["distances", "metadatas"] if include_metadata else ["distances"]
        result = await asyncio.to_thread(
            collection.query,
            query_embeddings=[list(vector)],
            n_results=min(top_k, count),
            where=to_chroma_where(filter),
            include=include,
        )

        ids = result["ids"][0]
        distances = result["distances"][0]
        metadatas = (result.get("metadatas") or [[None] * len(ids)])[0]
        return [
            VectorMatch(
                id=memory_id,
                score=1.0 - float(distance),
                metadata=_from_chroma_metadata(metadata) if include_metadata else {},
            )
            for memory_id, distance, metadata in zip(ids, distances, metadatas)
        ]

    async def delete(self, namespace: str, ids: Sequence[str]) -> None:
        if not ids:
            return
        collection = self._collection(namespace)
        await asyncio.to_thread(collection.delete, ids=list(ids))

    async def describe_stats(self) -> Dict[str, Any]:
        collections = await asyncio.to_thread(self.client.list_collections)
        namespaces = {}
        for collection in collections:
            name = collection if isinstance(collection, str) else collection.name
            count = await asyncio.to_thread(self._collection(name).count)
            namespaces[name] = {"vector_count": count}
        return {
            "namespaces": namespaces,
            "total_vector_count": sum(ns["vector_count"] for ns in namespaces.values()),
        }

    def __str__(self) -> str:
        return f"ChromaVectorIndex(persist_directory={self.persist_directory})"
