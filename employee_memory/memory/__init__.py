"""
Memory engine subpackage.

This package holds the building blocks of the Employee Memory engine:
- Validation and typed records for the four memory kinds
- Embedding composition and field-level encryption
- Per-employee namespaces in a vector index and a cache
- The write and read paths, relevance ranking and aggregation
- Archival, cleanup and storage analytics
"""

from .records import MemoryType, LifecycleState, MemoryRecord, validate_memory
from .crypto import ConfidentialityGuard
from .embeddings import EmbeddingComposer, EmbeddingSet, OllamaEmbedder
from .vector_store import VectorIndex, InMemoryVectorIndex, ChromaVectorIndex
from .cache import CacheStore, InMemoryCache, RedisCache
from .namespaces import NamespaceRegistry, PermissionMatrix, PermissionLevel, derive_namespace
from .store import MemoryStore
from .retriever import MemoryRetriever, SearchResult
from .retention import CleanupPolicy, LifecycleManager

__all__ = [
    'MemoryType',
    'LifecycleState',
    'MemoryRecord',
    'validate_memory',
    'ConfidentialityGuard',
    'EmbeddingComposer',
    'EmbeddingSet',
    'OllamaEmbedder',
    'VectorIndex',
    'InMemoryVectorIndex',
    'ChromaVectorIndex',
    'CacheStore',
    'InMemoryCache',
    'RedisCache',
    'NamespaceRegistry',
    'PermissionMatrix',
    'PermissionLevel',
    'derive_namespace',
    'MemoryStore',
    'MemoryRetriever',
    'SearchResult',
    'CleanupPolicy',
    'LifecycleManager',
]
