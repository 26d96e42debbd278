"""
Memory Manager for the Employee Memory engine.

This module provides the central manager for the engine, wiring the
vector index, cache, embedder and confidentiality guard into the write
path, read path and lifecycle operations, and exposing the API used by
request handlers and the maintenance command line.
"""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from .config import MemoryConfig
from .directory import EmployeeDirectory, default_directory
from .errors import MemoryEngineError, NotFoundError
from .memory.cache import CacheStore, RedisCache
from .memory.crypto import ConfidentialityGuard
from .memory.embeddings import EmbedFunction, EmbeddingComposer, OllamaEmbedder
from .memory.namespaces import NamespaceRegistry
from .memory.ranking import analyze_expertise, post_process_results, rank_memories, summarize_context
from .memory.records import MemoryType
from .memory.retention import CleanupPolicy, LifecycleManager
from .memory.retriever import MemoryRetriever, SearchResult, TimeBound
from .memory.store import MemoryStore
from .memory.vector_store import ChromaVectorIndex, VectorIndex

# Configure logging
logger = logging.getLogger("memory_manager")

# Context and metadata defaults applied by the typed store helpers.
TYPE_DEFAULTS = {
    MemoryType.EXPERIENCE: {
        "importance": 7.0,
        "tags": ["experience"],
        "metadata": {},
    },
    MemoryType.KNOWLEDGE: {
        "importance": 6.0,
        "tags": ["knowledge"],
        "metadata": {"source": "experience", "confidence": 8.0},
    },
    MemoryType.DECISION: {
        "importance": 8.0,
        "tags": ["decision"],
        "metadata": {},
    },
    MemoryType.INTERACTION: {
        "importance": 4.0,
        "tags": ["interaction"],
        "metadata": {},
    },
}


class MemoryManager:
    """
    Manager for the Employee Memory engine.

    Collaborators are injected so that tests and local runs can use the
    in-memory index and cache; :meth:`from_config` builds the production
    stack (ChromaDB, Redis and Ollama).
    """

    def __init__(
        self,
        config: MemoryConfig,
        index: VectorIndex,
        cache: CacheStore,
        embed: EmbedFunction,
        directory: Optional[EmployeeDirectory] = None,
        retry_multiplier: float = 0.2,
    ):
        """
        Initialize the Memory Manager.

        Args:
            config: Engine configuration
            index: Vector index collaborator
            cache: Cache collaborator
            embed: Awaitable callable mapping text to a native-dimension vector
            directory: Employee roster; defaults to the company roster
            retry_multiplier: Backoff multiplier for cache write retries
        """
        self.config = config
        self.index = index
        self.cache = cache
        self.embed = embed
        self.directory = directory or default_directory()

        self.guard = ConfidentialityGuard(config.encryption_key, enabled=config.encryption_enabled)
        self.composer = EmbeddingComposer(
            embed,
            dimension=config.embedding_dimension,
            temporal_dimension=config.temporal_dimension,
        )
        self.registry = NamespaceRegistry(cache, self.directory)
        self.store = MemoryStore(
            index, cache, self.composer, self.guard, self.registry, self.directory,
            cache_write_attempts=config.cache_write_attempts,
            retry_multiplier=retry_multiplier,
        )
        self.retriever = MemoryRetriever(index, cache, self.composer, self.guard, self.registry)
        self.lifecycle = LifecycleManager(
            index, cache, self.registry, self.directory,
            storage_target_mb=config.storage_target_mb,
            cleanup_interval=config.cleanup_interval,
        )

        self.initialized = False
        self.background_tasks: List[asyncio.Task] = []

    @classmethod
    async def from_config(
        cls,
        config: Optional[MemoryConfig] = None,
        directory: Optional[EmployeeDirectory] = None,
    ) -> 'MemoryManager':
        """Build a manager on ChromaDB, Redis and the Ollama embeddings endpoint."""
        config = config or MemoryConfig.from_env()
        index = ChromaVectorIndex(persist_directory=config.chroma_persist_directory)
        cache = await RedisCache.create(config.redis_url)
        embedder = OllamaEmbedder(
            base_url=config.ollama_base_url,
            model_name=config.embedding_model,
            request_timeout=config.request_timeout,
        )
        return cls(config, index, cache, embedder, directory=directory)

    async def initialize(self) -> Dict[str, Any]:
        """
        Create namespaces and permissions for every employee in the directory.

        A failure for one employee is logged and does not stop the rest.

        Returns:
            Per-employee namespaces and the failures, if any
        """
        logger.info(f"Initializing memory namespaces for {len(self.directory)} employees")
        namespaces = {}
        failures = {}
        for employee in self.directory.employees():
            try:
                namespaces[employee.employee_id] = await self.registry.create_namespace(
                    employee.employee_id, employee.role, employee.department
                )
            except MemoryEngineError as e:
                logger.error(f"Failed to initialize namespace for {employee.employee_id}: {str(e)}")
                failures[employee.employee_id] = str(e)

        self.initialized = not failures
        logger.info(f"Memory namespaces initialized: {len(namespaces)} created, {len(failures)} failed")
        return {"namespaces": namespaces, "failures": failures}

    def start_background_tasks(self, policy: Optional[CleanupPolicy] = None) -> None:
        """Start the scheduled company-wide cleanup."""
        cleanup_task = asyncio.create_task(self.lifecycle.start_cleanup_scheduler(policy))
        self.background_tasks.append(cleanup_task)
        logger.info("Background tasks started")

    # Write path

    async def store_memory(self, employee_id: str, memory: Mapping[str, Any]) -> str:
        """
        Store a memory for an employee.

        Args:
            employee_id: Owner of the memory
            memory: Submission with ``memory_type``, ``content`` and optional
                ``context`` and ``metadata``

        Returns:
            The new memory id
        """
        return await self.store.store(employee_id, memory)

    async def _store_typed(
        self,
        memory_type: MemoryType,
        employee_id: str,
        content: str,
        context: Optional[Mapping[str, Any]],
        metadata: Optional[Mapping[str, Any]],
    ) -> str:
        defaults = TYPE_DEFAULTS[memory_type]
        merged_metadata = dict(defaults["metadata"])
        merged_metadata.update({k: v for k, v in (metadata or {}).items() if v is not None})
        merged_metadata.setdefault("importance", defaults["importance"])
        merged_metadata.setdefault("tags", list(defaults["tags"]))
        merged_metadata.setdefault("department", self.directory.department_of(employee_id))
        merged_metadata.setdefault("role", self.directory.role_of(employee_id))

        memory_id = await self.store_memory(employee_id, {
            "memory_type": memory_type,
            "content": content,
            "context": dict(context or {}),
            "metadata": merged_metadata,
        })
        logger.info(f"{memory_type.value.capitalize()} memory stored for {employee_id}: {memory_id}")
        return memory_id

    async def store_experience(
        self,
        employee_id: str,
        content: str,
        context: Optional[Mapping[str, Any]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """Store an experience memory (project, technologies, outcome, lessons learned)."""
        return await self._store_typed(MemoryType.EXPERIENCE, employee_id, content, context, metadata)

    async def store_knowledge(
        self,
        employee_id: str,
        content: str,
        context: Optional[Mapping[str, Any]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """Store a knowledge memory (domain, complexity, applications)."""
        return await self._store_typed(MemoryType.KNOWLEDGE, employee_id, content, context, metadata)

    async def store_decision(
        self,
        employee_id: str,
        content: str,
        context: Optional[Mapping[str, Any]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """Store a decision memory (alternatives, criteria, rationale)."""
        return await self._store_typed(MemoryType.DECISION, employee_id, content, context, metadata)

    async def store_interaction(
        self,
        employee_id: str,
        query: str,
        response: str,
        context: Optional[Mapping[str, Any]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """Store a query and the employee's response to it."""
        interaction_context = {"query": query, "response": response}
        interaction_context.update(context or {})
        content = f"Query: {query}\nResponse: {response}"
        return await self._store_typed(
            MemoryType.INTERACTION, employee_id, content, interaction_context, metadata
        )

    # Read path

    async def search_memories(
        self,
        employee_id: str,
        query: str,
        limit: int = 5,
        memory_types: Optional[Sequence[Union[str, MemoryType]]] = None,
        time_range: Optional[Mapping[str, TimeBound]] = None,
        min_importance: Optional[float] = None,
        relevance_threshold: Optional[float] = None,
        boost_recent: bool = False,
    ) -> List[SearchResult]:
        """
        Search an employee's memories.

        Args:
            employee_id: Employee whose memories are searched
            query: The search query
            limit: Maximum number of results
            memory_types: Optional kinds to restrict to
            time_range: Optional ``{"start": ..., "end": ...}`` bounds
            min_importance: Optional importance floor
            relevance_threshold: Drop results whose score is below this
            boost_recent: Boost memories from the last 30 days

        Returns:
            Matching memories, best first
        """
        results = await self.retriever.search(
            employee_id, query, top_k=limit, memory_types=memory_types,
            time_range=time_range, min_importance=min_importance,
        )
        results = post_process_results(
            results, boost_recent=boost_recent, max_results=limit,
            relevance_threshold=relevance_threshold,
        )
        logger.info(f"Memory search for {employee_id} found {len(results)} results")
        return results

    async def get_memory(self, employee_id: str, memory_id: str) -> SearchResult:
        """Fetch one of an employee's memories by id, whatever its state."""
        result = await self.retriever.get(employee_id, memory_id)
        if result is None:
            raise NotFoundError(
                f"Memory not found: {memory_id}", employee_id=employee_id,
                operation="get", memory_id=memory_id,
            )
        return result

    async def get_relevant_context(
        self,
        employee_id: str,
        task_description: str,
        top_k: int = 10,
        min_importance: float = 5.0,
        time_range: Optional[Mapping[str, TimeBound]] = None,
    ) -> Dict[str, Any]:
        """
        Gather and rank the memories relevant to a task.

        Returns:
            ``memories`` ranked by relevance, a ``summary`` digest,
            ``total_results`` and the ``relevance_scores``
        """
        results = await self.retriever.search(
            employee_id, task_description, top_k=top_k,
            time_range=time_range, min_importance=min_importance,
        )
        ranked = rank_memories(results, task_description)
        return {
            "memories": ranked,
            "summary": summarize_context(ranked, task_description),
            "total_results": len(ranked),
            "relevance_scores": [result.relevance_score for result in ranked],
        }

    async def get_expertise(self, employee_id: str, domain: str) -> Dict[str, Any]:
        """Assess an employee's expertise in a domain from their experience and knowledge."""
        results = await self.retriever.search(
            employee_id, domain, top_k=20,
            memory_types=[MemoryType.EXPERIENCE, MemoryType.KNOWLEDGE],
            min_importance=6.0,
        )
        return analyze_expertise(results, domain)

    async def get_memory_statistics(self, employee_id: str) -> Dict[str, Any]:
        """Namespace statistics and permissions of an employee."""
        namespace = self.registry.namespace_for(employee_id)
        metadata = await self.registry.get_metadata(namespace)
        if metadata is None:
            raise NotFoundError(
                f"Namespace not initialized: {namespace}", employee_id=employee_id,
                operation="get_memory_statistics", namespace=namespace,
            )
        permissions = await self.registry.get_permissions(namespace)
        index_stats = await self.index.describe_stats()

        stats = metadata.to_dict()
        stats["namespace"] = namespace
        stats["permissions"] = permissions.to_dict() if permissions else None
        stats["vector_count"] = index_stats.get("namespaces", {}).get(namespace, {}).get("vector_count", 0)
        return stats

    # Lifecycle

    async def archive_memories(
        self, employee_id: str, memory_ids: Sequence[str], reason: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self.lifecycle.archive(employee_id, memory_ids, reason)

    async def restore_memories(
        self, employee_id: str, memory_ids: Sequence[str], reason: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self.lifecycle.restore(employee_id, memory_ids, reason)

    async def delete_memories(
        self, employee_id: str, memory_ids: Sequence[str], reason: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self.lifecycle.delete(employee_id, memory_ids, reason)

    async def cleanup_memories(
        self,
        employee_id: str,
        policy: Optional[CleanupPolicy] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Dict[str, Any]:
        return await self.lifecycle.cleanup(employee_id, policy, cancel_event)

    async def company_wide_cleanup(
        self,
        policy: Optional[CleanupPolicy] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Dict[str, Any]:
        return await self.lifecycle.company_wide_cleanup(policy, cancel_event)

    async def get_storage_stats(self, employee_id: str) -> Dict[str, Any]:
        return await self.lifecycle.storage_stats(employee_id)

    async def analyze_memory_lifecycle(self, employee_id: str) -> Dict[str, Any]:
        return await self.lifecycle.lifecycle_analysis(employee_id)

    async def get_cleanup_analytics(self) -> Dict[str, Any]:
        return await self.lifecycle.cleanup_analytics()

    async def shutdown(self) -> None:
        """Shut down the memory manager gracefully."""
        logger.info("Shutting down Memory Manager")

        # Cancel background tasks
        for task in self.background_tasks:
            if not task.done():
                task.cancel()

        await self.retriever.wait_for_access_updates()

        for name, resource in (("vector index", self.index), ("cache", self.cache), ("embedder", self.embed)):
            close = getattr(resource, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.error(f"Error closing {name}: {str(e)}")

        logger.info("Memory Manager shutdown complete")
