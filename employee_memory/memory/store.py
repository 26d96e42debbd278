"""
Write path of the Employee Memory engine.

A memory is validated, embedded, sealed, upserted into the employee's
vector namespace and written in full to the cache. The index upsert and
the cache write are separate systems with no shared transaction: a cache
failure after a successful upsert is retried, and if it still fails the
index entry is removed again so no searchable-but-unreadable memory is
left behind.
"""

import json
import uuid
import hashlib
import logging
from typing import Any, Dict, Mapping

from tenacity import AsyncRetrying, before_sleep_log, stop_after_attempt, wait_exponential

from ..directory import EmployeeDirectory
from ..errors import MemoryEngineError, StorageError, ValidationError
from .cache import CacheStore
from .crypto import ConfidentialityGuard
from .embeddings import EmbeddingComposer, EmbeddingSet
from .namespaces import NamespaceRegistry, members_key
from .records import LifecycleState, MemorySubmission, utc_now, validate_memory
from .vector_store import VectorEntry, VectorIndex

logger = logging.getLogger("memory.store")


def memory_key(memory_id: str) -> str:
    return f"memory:{memory_id}"


def content_hash(content: Any) -> str:
    content_string = content if isinstance(content, str) else json.dumps(content, sort_keys=True)
    return hashlib.sha256(content_string.encode("utf-8")).hexdigest()


def estimate_record_size(fields: Mapping[str, str]) -> int:
    """Approximate cache footprint of a stored memory in bytes."""
    return sum(len(k.encode("utf-8")) + len(str(v).encode("utf-8")) for k, v in fields.items())


class MemoryStore:
    """
    Stores memories for employees.

    Args:
        index: Vector index collaborator
        cache: Cache collaborator
        composer: Embedding composer
        guard: Confidentiality guard for sensitive fields
        registry: Namespace registry
        directory: Employee directory, used to fill role and department
        cache_write_attempts: Attempts for the cache leg before compensating
        retry_multiplier: Backoff multiplier in seconds between cache attempts
    """

    def __init__(
        self,
        index: VectorIndex,
        cache: CacheStore,
        composer: EmbeddingComposer,
        guard: ConfidentialityGuard,
        registry: NamespaceRegistry,
        directory: EmployeeDirectory,
        cache_write_attempts: int = 3,
        retry_multiplier: float = 0.2,
    ):
        self.index = index
        self.cache = cache
        self.composer = composer
        self.guard = guard
        self.registry = registry
        self.directory = directory
        self.cache_write_attempts = cache_write_attempts
        self.retry_multiplier = retry_multiplier

    def _fill_employee_fields(self, employee_id: str, submission: MemorySubmission) -> None:
        if not submission.metadata.role:
            submission.metadata.role = self.directory.role_of(employee_id)
        if not submission.metadata.department:
            submission.metadata.department = self.directory.department_of(employee_id)

    async def store(self, employee_id: str, raw_memory: Mapping[str, Any]) -> str:
        """
        Validate, embed, encrypt and persist one memory.

        Args:
            employee_id: Owner of the memory
            raw_memory: Submission with ``memory_type``, ``content`` and
                optional ``context`` and ``metadata``

        Returns:
            The new memory id
        """
        try:
            submission = validate_memory(raw_memory)
        except ValidationError as e:
            e.employee_id = employee_id
            e.operation = "store"
            logger.warning(f"Rejected memory for {employee_id}: {e.message}")
            raise

        self._fill_employee_fields(employee_id, submission)
        namespace = self.registry.namespace_for(employee_id)
        memory_id = f"mem_{employee_id}_{uuid.uuid4()}"

        try:
            embeddings = await self.composer.compose(submission)
        except Exception as e:
            logger.error(f"Failed to generate embeddings for {employee_id}: {str(e)}")
            raise StorageError(
                f"Failed to generate embeddings: {str(e)}",
                employee_id=employee_id,
                operation="store",
                namespace=namespace,
            ) from e

        submission.metadata.encrypted = self.guard.enabled
        body = {
            "memory_type": submission.memory_type.value,
            "content": submission.content,
            "context": submission.context.to_dict(),
            "metadata": submission.metadata.to_dict(),
        }
        sealed = self.guard.encrypt_fields(body, employee_id)

        created_at = utc_now()
        index_metadata = {
            "employee_id": employee_id,
            "memory_type": submission.memory_type.value,
            "content_hash": content_hash(sealed["content"]),
            "created_at": created_at.timestamp(),
            "importance": submission.metadata.importance,
            "tags": list(submission.metadata.tags),
            "department": submission.metadata.department,
            "role": submission.metadata.role,
            "encrypted": self.guard.enabled,
        }

        try:
            await self.index.upsert(
                namespace,
                [VectorEntry(id=memory_id, values=embeddings.semantic, metadata=index_metadata)],
            )
        except Exception as e:
            logger.error(f"Vector upsert failed for {memory_id} in {namespace}: {str(e)}")
            raise StorageError(
                f"Vector index upsert failed: {str(e)}",
                employee_id=employee_id,
                operation="store",
                memory_id=memory_id,
                namespace=namespace,
            ) from e

        fields = {
            "id": memory_id,
            "employee_id": employee_id,
            "namespace": namespace,
            "state": LifecycleState.ACTIVE.value,
            "data": json.dumps(sealed),
            "embeddings": json.dumps(embeddings.to_dict()),
            "index_metadata": json.dumps(index_metadata),
            "created_at": created_at.isoformat(),
            "accessed_count": 0,
            "last_accessed": created_at.isoformat(),
        }
        await self._write_cache_leg(employee_id, namespace, memory_id, fields)

        # The record is durable here, so a counter failure is only logged.
        try:
            await self.registry.update_stats(namespace)
        except StorageError as e:
            logger.warning(
                f"Memory {memory_id} stored in {namespace} but the namespace counter was not updated: {str(e)}"
            )

        logger.info(f"Memory stored successfully: {memory_id}")
        return memory_id

    async def _write_cache_leg(
        self,
        employee_id: str,
        namespace: str,
        memory_id: str,
        fields: Dict[str, Any],
    ) -> None:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.cache_write_attempts),
                wait=wait_exponential(multiplier=self.retry_multiplier, max=5),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    await self.cache.hset(memory_key(memory_id), fields)
                    await self.cache.sadd(members_key(namespace), memory_id)
        except Exception as e:
            logger.error(
                f"Partial write: memory {memory_id} is indexed in namespace {namespace} "
                f"but the cache write failed: {str(e)}"
            )
            await self._compensate(namespace, memory_id)
            raise StorageError(
                f"Cache write failed: {str(e)}",
                employee_id=employee_id,
                operation="store",
                memory_id=memory_id,
                namespace=namespace,
            ) from e

    async def _compensate(self, namespace: str, memory_id: str) -> None:
        try:
            await self.index.delete(namespace, [memory_id])
            logger.info(f"Removed index entry {memory_id} from {namespace} after failed cache write")
        except Exception as e:
            logger.critical(
                f"Orphaned index entry {memory_id} in namespace {namespace} needs "
                f"reconciliation: {str(e)}"
            )


def decode_cached_record(fields: Mapping[str, str]) -> Dict[str, Any]:
    """Parse the JSON columns of a cached memory hash."""
    try:
        return {
            "id": fields["id"],
            "employee_id": fields["employee_id"],
            "namespace": fields.get("namespace"),
            "state": LifecycleState(fields.get("state", LifecycleState.ACTIVE.value)),
            "data": json.loads(fields["data"]),
            "embeddings": EmbeddingSet.from_dict(json.loads(fields["embeddings"])),
            "index_metadata": json.loads(fields.get("index_metadata") or "{}"),
            "accessed_count": int(fields.get("accessed_count", 0)),
            "last_accessed": fields.get("last_accessed"),
            "size_bytes": estimate_record_size(fields),
        }
    except (KeyError, ValueError) as e:
        raise MemoryEngineError(
            f"Corrupt cache entry: {str(e)}", memory_id=fields.get("id"), operation="decode"
        ) from e

