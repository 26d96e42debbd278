"""
Lifecycle management for the Employee Memory engine.

Memories move between three states: active memories are indexed and
searchable; archived memories keep their full record in the cache but are
removed from the vector index; deleted memories are gone for good.
Cleanup selects memories by importance, age and a per-employee count cap,
and either archives or deletes them. Every per-record step is idempotent,
so an interrupted cleanup can simply be run again.
"""

import time
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from ..directory import EmployeeDirectory
from ..errors import NotFoundError, RetrievalError, StorageError, ValidationError
from .cache import CacheStore
from .namespaces import NamespaceRegistry, members_key
from .records import LifecycleState, MemoryMetadata, MemoryType, days_since, utc_now
from .store import decode_cached_record, memory_key
from .vector_store import VectorEntry, VectorIndex

# Configure logging
logger = logging.getLogger("memory.retention")

BYTES_PER_MB = 1024 * 1024


class CleanupAction:
    ARCHIVE = "archive"
    DELETE = "delete"


@dataclass
class CleanupPolicy:
    """
    Which memories a cleanup run selects and what it does with them.

    A memory is a candidate when its importance is below
    ``min_importance_score``, when it is older than ``max_age_days``, or
    when the employee holds more than ``max_memories`` memories (lowest
    importance first, then oldest).
    """
    max_memories: Optional[int] = None
    min_importance_score: Optional[float] = None
    max_age_days: Optional[float] = None
    dry_run: bool = False
    action: str = CleanupAction.ARCHIVE

    def __post_init__(self):
        if self.action not in (CleanupAction.ARCHIVE, CleanupAction.DELETE):
            raise ValidationError(f"Unknown cleanup action: {self.action}", operation="cleanup")
        if self.max_memories is not None and self.max_memories < 0:
            raise ValidationError("max_memories must not be negative", operation="cleanup")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CleanupPolicy':
        """Build a policy from a request payload (camelCase keys are accepted)."""
        def pick(*names):
            for name in names:
                if data.get(name) is not None:
                    return data[name]
            return None

        return cls(
            max_memories=pick("max_memories", "maxMemories"),
            min_importance_score=pick("min_importance_score", "minImportanceScore"),
            max_age_days=pick("max_age_days", "maxAge"),
            dry_run=bool(pick("dry_run", "dryRun") or False),
            action=pick("action") or CleanupAction.ARCHIVE,
        )


@dataclass
class LifecycleEntry:
    """A stored memory as seen by lifecycle operations (no decryption needed)."""
    id: str
    employee_id: str
    memory_type: MemoryType
    metadata: MemoryMetadata
    state: LifecycleState
    size_bytes: int
    values: List[float] = field(default_factory=list)
    index_metadata: Dict[str, Any] = field(default_factory=dict)

    def age_days(self, now: Optional[datetime] = None) -> float:
        return days_since(self.metadata.timestamp, now)


class LifecycleManager:
    """
    Archives, restores and cleans up employee memories.

    Args:
        index: Vector index collaborator
        cache: Cache collaborator
        registry: Namespace registry
        directory: Employee directory, for company-wide operations
        storage_target_mb: Per-employee storage target used in reports
        cleanup_interval: Seconds between scheduled cleanup runs
    """

    def __init__(
        self,
        index: VectorIndex,
        cache: CacheStore,
        registry: NamespaceRegistry,
        directory: EmployeeDirectory,
        storage_target_mb: float = 100.0,
        cleanup_interval: int = 24 * 60 * 60,
    ):
        self.index = index
        self.cache = cache
        self.registry = registry
        self.directory = directory
        self.storage_target_mb = storage_target_mb
        self.cleanup_interval = cleanup_interval
        self.is_cleaning = False
        self.last_cleanup_time = 0.0

    async def list_entries(
        self,
        employee_id: str,
        states: Sequence[LifecycleState] = (LifecycleState.ACTIVE, LifecycleState.ARCHIVED),
        operation: str = "list_entries",
    ) -> List[LifecycleEntry]:
        """All of an employee's stored memories in the given states, oldest first."""
        namespace = self.registry.namespace_for(employee_id)
        try:
            memory_ids = sorted(await self.cache.smembers(members_key(namespace)))
        except Exception as e:
            logger.error(f"Failed to list memories in {namespace}: {str(e)}")
            raise RetrievalError(
                f"Cache read failed: {str(e)}", employee_id=employee_id,
                operation=operation, namespace=namespace,
            ) from e
        entries = []
        for memory_id in memory_ids:
            entry = await self._load(employee_id, memory_id, operation)
            if entry is not None and entry.state in states:
                entries.append(entry)
        entries.sort(key=lambda entry: entry.metadata.timestamp)
        return entries

    async def _load(self, employee_id: str, memory_id: str, operation: str) -> Optional[LifecycleEntry]:
        try:
            fields = await self.cache.hgetall(memory_key(memory_id))
        except Exception as e:
            logger.error(f"Failed to load memory {memory_id}: {str(e)}")
            raise RetrievalError(
                f"Cache read failed: {str(e)}", employee_id=employee_id,
                operation=operation, memory_id=memory_id,
            ) from e
        if not fields or "data" not in fields:
            return None
        decoded = decode_cached_record(fields)
        if decoded["employee_id"] != employee_id:
            return None
        data = decoded["data"]
        return LifecycleEntry(
            id=memory_id,
            employee_id=employee_id,
            memory_type=MemoryType.from_str(data["memory_type"]),
            metadata=MemoryMetadata.from_dict(data["metadata"]),
            state=decoded["state"],
            size_bytes=decoded["size_bytes"],
            values=decoded["embeddings"].semantic,
            index_metadata=decoded["index_metadata"],
        )

    async def _load_all(self, employee_id: str, memory_ids: Sequence[str], operation: str) -> List[LifecycleEntry]:
        entries = []
        for memory_id in memory_ids:
            entry = await self._load(employee_id, memory_id, operation)
            if entry is None:
                raise NotFoundError(
                    f"Memory not found: {memory_id}",
                    employee_id=employee_id,
                    operation=operation,
                    memory_id=memory_id,
                )
            entries.append(entry)
        return entries

    @staticmethod
    def _cancelled(cancel_event: Optional[asyncio.Event]) -> bool:
        return cancel_event is not None and cancel_event.is_set()

    async def archive(
        self,
        employee_id: str,
        memory_ids: Sequence[str],
        reason: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Dict[str, Any]:
        """
        Remove memories from search without deleting them.

        Every id must exist before anything changes. The cache is marked
        archived before the index entry is removed, so a partially applied
        archive never returns the memory from a search.

        Args:
            employee_id: Owner of the memories
            memory_ids: Memories to archive
            reason: Free-form reason recorded with each memory
            cancel_event: Set to stop between memories

        Returns:
            Counts and the ids that were archived
        """
        namespace = self.registry.namespace_for(employee_id)
        entries = await self._load_all(employee_id, memory_ids, "archive")
        archived: List[str] = []
        cancelled = False

        for entry in entries:
            if self._cancelled(cancel_event):
                cancelled = True
                break
            try:
                if entry.state != LifecycleState.ARCHIVED:
                    await self.cache.hset(memory_key(entry.id), {
                        "state": LifecycleState.ARCHIVED.value,
                        "archived_at": utc_now().isoformat(),
                        "archive_reason": reason or "",
                    })
                    archived.append(entry.id)
                await self.index.delete(namespace, [entry.id])
            except Exception as e:
                logger.error(f"Failed to archive {entry.id} in {namespace}: {str(e)}")
                raise StorageError(
                    f"Archive failed: {str(e)}", employee_id=employee_id,
                    operation="archive", memory_id=entry.id, namespace=namespace,
                ) from e

        logger.info(f"Archived {len(archived)} of {len(memory_ids)} memories for {employee_id}")
        return {
            "employee_id": employee_id,
            "requested": len(memory_ids),
            "archived_count": len(archived),
            "archived_ids": archived,
            "reason": reason,
            "cancelled": cancelled,
        }

    async def restore(
        self,
        employee_id: str,
        memory_ids: Sequence[str],
        reason: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Dict[str, Any]:
        """
        Return archived memories to search.

        Raises:
            NotFoundError: If any id does not exist or was deleted
        """
        namespace = self.registry.namespace_for(employee_id)
        entries = await self._load_all(employee_id, memory_ids, "restore")
        restored: List[str] = []
        cancelled = False

        for entry in entries:
            if self._cancelled(cancel_event):
                cancelled = True
                break
            try:
                # Index first: a memory marked active must be searchable.
                await self.index.upsert(
                    namespace,
                    [VectorEntry(id=entry.id, values=entry.values, metadata=entry.index_metadata)],
                )
                if entry.state != LifecycleState.ACTIVE:
                    await self.cache.hset(memory_key(entry.id), {
                        "state": LifecycleState.ACTIVE.value,
                        "restored_at": utc_now().isoformat(),
                        "restore_reason": reason or "",
                    })
                    restored.append(entry.id)
            except Exception as e:
                logger.error(f"Failed to restore {entry.id} in {namespace}: {str(e)}")
                raise StorageError(
                    f"Restore failed: {str(e)}", employee_id=employee_id,
                    operation="restore", memory_id=entry.id, namespace=namespace,
                ) from e

        logger.info(f"Restored {len(restored)} of {len(memory_ids)} memories for {employee_id}")
        return {
            "employee_id": employee_id,
            "requested": len(memory_ids),
            "restored_count": len(restored),
            "restored_ids": restored,
            "reason": reason,
            "cancelled": cancelled,
        }

    async def delete(
        self,
        employee_id: str,
        memory_ids: Sequence[str],
        reason: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Dict[str, Any]:
        """
        Permanently delete memories.

        Raises:
            NotFoundError: If any id does not exist or was already deleted
        """
        namespace = self.registry.namespace_for(employee_id)
        entries = await self._load_all(employee_id, memory_ids, "delete")
        deleted: List[str] = []
        cancelled = False

        for entry in entries:
            if self._cancelled(cancel_event):
                cancelled = True
                break
            try:
                await self.index.delete(namespace, [entry.id])
                await self.cache.delete(memory_key(entry.id))
                await self.cache.srem(members_key(namespace), entry.id)
            except Exception as e:
                logger.error(f"Failed to delete {entry.id} in {namespace}: {str(e)}")
                raise StorageError(
                    f"Delete failed: {str(e)}", employee_id=employee_id,
                    operation="delete", memory_id=entry.id, namespace=namespace,
                ) from e
            deleted.append(entry.id)

        logger.info(
            f"Deleted {len(deleted)} memories for {employee_id}"
            f"{f' ({reason})' if reason else ''}"
        )
        return {
            "employee_id": employee_id,
            "requested": len(memory_ids),
            "deleted_count": len(deleted),
            "deleted_ids": deleted,
            "reason": reason,
            "cancelled": cancelled,
        }

    def select_candidates(
        self,
        entries: Sequence[LifecycleEntry],
        policy: CleanupPolicy,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """
        Pick the memories a cleanup policy applies to.

        Returns:
            One report per candidate, oldest first, with the reasons it
            was selected
        """
        now = now or utc_now()
        reasons: Dict[str, List[str]] = {}

        for entry in entries:
            if (policy.min_importance_score is not None
                    and entry.metadata.importance < policy.min_importance_score):
                reasons.setdefault(entry.id, []).append("low_importance")
            if policy.max_age_days is not None and entry.age_days(now) > policy.max_age_days:
                reasons.setdefault(entry.id, []).append("expired")

        remaining = [entry for entry in entries if entry.id not in reasons]
        if policy.max_memories is not None and len(remaining) > policy.max_memories:
            remaining.sort(key=lambda entry: (entry.metadata.importance, entry.metadata.timestamp))
            for entry in remaining[:len(remaining) - policy.max_memories]:
                reasons[entry.id] = ["over_capacity"]

        return [
            {
                "id": entry.id,
                "memory_type": entry.memory_type.value,
                "state": entry.state.value,
                "importance": entry.metadata.importance,
                "age_days": round(entry.age_days(now), 2),
                "size_bytes": entry.size_bytes,
                "reasons": reasons[entry.id],
            }
            for entry in entries
            if entry.id in reasons
        ]

    async def cleanup(
        self,
        employee_id: str,
        policy: Optional[CleanupPolicy] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Dict[str, Any]:
        """
        Archive or delete the memories a policy selects.

        With ``dry_run`` the candidates are only reported.

        Args:
            employee_id: Employee to clean up
            policy: Selection policy; the default selects nothing
            cancel_event: Set to stop between memories

        Returns:
            Candidates, counts and the estimated storage freed
        """
        policy = policy or CleanupPolicy()
        start_time = time.time()
        logger.info(f"Starting memory cleanup for {employee_id} (dry_run={policy.dry_run})")

        states = (LifecycleState.ACTIVE,)
        if policy.action == CleanupAction.DELETE:
            states = (LifecycleState.ACTIVE, LifecycleState.ARCHIVED)
        entries = await self.list_entries(employee_id, states, "cleanup")
        candidates = self.select_candidates(entries, policy)
        candidate_ids = [candidate["id"] for candidate in candidates]
        estimated_bytes = sum(candidate["size_bytes"] for candidate in candidates)

        archived_count = 0
        deleted_count = 0
        cancelled = False
        if not policy.dry_run and candidate_ids:
            if policy.action == CleanupAction.DELETE:
                outcome = await self.delete(employee_id, candidate_ids, "cleanup", cancel_event)
                deleted_count = outcome["deleted_count"]
            else:
                outcome = await self.archive(employee_id, candidate_ids, "cleanup", cancel_event)
                archived_count = outcome["archived_count"]
            cancelled = outcome["cancelled"]

        processed = archived_count + deleted_count
        if policy.dry_run or not candidates:
            freed = 0
        else:
            freed = sum(c["size_bytes"] for c in candidates[:processed]) if cancelled else estimated_bytes

        results = {
            "success": True,
            "employee_id": employee_id,
            "dry_run": policy.dry_run,
            "action": policy.action,
            "total_memories": len(entries),
            "candidate_count": len(candidates),
            "candidates": candidates,
            "archived_count": archived_count,
            "deleted_count": deleted_count,
            "estimated_bytes": estimated_bytes,
            "bytes_freed": freed,
            "saved_mb": freed / BYTES_PER_MB,
            "cancelled": cancelled,
            "execution_time_ms": (time.time() - start_time) * 1000,
            "timestamp": utc_now().isoformat(),
        }
        logger.info(
            f"Cleanup complete for {employee_id}: {len(candidates)} candidates, "
            f"{archived_count} archived, {deleted_count} deleted"
        )
        return results

    async def company_wide_cleanup(
        self,
        policy: Optional[CleanupPolicy] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Dict[str, Any]:
        """
        Run cleanup for every employee in the directory.

        A failure for one employee is recorded and the run continues.
        """
        if self.is_cleaning:
            logger.info("Cleanup already in progress, skipping")
            return {"success": False, "skipped": True, "reason": "cleanup_in_progress"}

        self.is_cleaning = True
        employee_results = []
        success_count = 0
        error_count = 0
        total_archived = 0
        total_deleted = 0
        total_bytes = 0
        cancelled = False

        try:
            logger.info(f"Starting company-wide memory cleanup for {len(self.directory)} employees")
            for employee_id in self.directory.employee_ids():
                if self._cancelled(cancel_event):
                    cancelled = True
                    break
                try:
                    result = await self.cleanup(employee_id, policy, cancel_event)
                except Exception as e:
                    logger.error(f"Cleanup failed for employee {employee_id}: {str(e)}")
                    employee_results.append({"success": False, "employee_id": employee_id, "error": str(e)})
                    error_count += 1
                    continue

                employee_results.append(result)
                success_count += 1
                total_archived += result["archived_count"]
                total_deleted += result["deleted_count"]
                total_bytes += result["bytes_freed"]
                if result["cancelled"]:
                    cancelled = True
                    break

            self.last_cleanup_time = time.time()
        finally:
            self.is_cleaning = False

        logger.info(
            f"Company-wide cleanup completed: {success_count} succeeded, {error_count} failed, "
            f"{total_archived} archived, {total_deleted} deleted"
        )
        return {
            "success": True,
            "total_employees": len(self.directory),
            "successful_cleanups": success_count,
            "failed_cleanups": error_count,
            "aggregate": {
                "total_memories_archived": total_archived,
                "total_memories_deleted": total_deleted,
                "total_storage_saved_mb": total_bytes / BYTES_PER_MB,
            },
            "employee_results": employee_results,
            "cancelled": cancelled,
            "timestamp": utc_now().isoformat(),
        }

    async def start_cleanup_scheduler(self, policy: Optional[CleanupPolicy] = None) -> None:
        """Run company-wide cleanup every ``cleanup_interval`` seconds until cancelled."""
        logger.info(f"Starting cleanup scheduler with interval {self.cleanup_interval} seconds")

        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                await self.company_wide_cleanup(policy)
            except Exception as e:
                logger.error(f"Error in scheduled cleanup: {str(e)}")

    async def storage_stats(self, employee_id: str) -> Dict[str, Any]:
        """Stored memory counts and estimated footprint of one employee."""
        namespace = self.registry.namespace_for(employee_id)
        entries = await self.list_entries(employee_id, operation="storage_stats")
        index_stats = await self.index.describe_stats()
        vector_count = index_stats.get("namespaces", {}).get(namespace, {}).get("vector_count", 0)

        size_bytes = sum(entry.size_bytes for entry in entries)
        size_mb = size_bytes / BYTES_PER_MB
        return {
            "employee_id": employee_id,
            "namespace": namespace,
            "role": self.directory.role_of(employee_id),
            "department": self.directory.department_of(employee_id),
            "total_memories": len(entries),
            "active_memories": sum(1 for e in entries if e.state == LifecycleState.ACTIVE),
            "archived_memories": sum(1 for e in entries if e.state == LifecycleState.ARCHIVED),
            "vector_count": vector_count,
            "estimated_size_bytes": size_bytes,
            "estimated_size_mb": size_mb,
            "target_storage_mb": self.storage_target_mb,
            "storage_status": "over_target" if size_mb > self.storage_target_mb else "within_target",
            "utilization_percent": (size_mb / self.storage_target_mb) * 100 if self.storage_target_mb else 0.0,
        }

    async def lifecycle_analysis(self, employee_id: str) -> Dict[str, Any]:
        """Distribution of an employee's active memories by kind, age and importance."""
        now = utc_now()
        entries = await self.list_entries(employee_id, (LifecycleState.ACTIVE,), "lifecycle_analysis")
        storage = await self.storage_stats(employee_id)

        ages = [entry.age_days(now) for entry in entries]
        scores = [entry.metadata.importance / 10 for entry in entries]
        old_low = [
            entry for entry, age, score in zip(entries, ages, scores)
            if age > 180 and score < 0.3
        ]

        analysis = {
            "total_memories": len(entries),
            "memory_types": {
                kind.value: sum(1 for entry in entries if entry.memory_type == kind)
                for kind in MemoryType
            },
            "age_distribution": {
                "recent": sum(1 for age in ages if age <= 30),
                "medium": sum(1 for age in ages if 30 < age <= 90),
                "old": sum(1 for age in ages if age > 90),
            },
            "importance_stats": {
                "high": sum(1 for score in scores if score >= 0.7),
                "medium": sum(1 for score in scores if 0.4 <= score < 0.7),
                "low": sum(1 for score in scores if score < 0.4),
                "average_score": sum(scores) / len(scores) if scores else 0.0,
            },
            "cleanup_candidates": len(old_low),
            "storage_stats": storage,
            "recommendations": self._memory_recommendations(ages, scores, storage),
        }
        return {"employee_id": employee_id, "analysis": analysis, "timestamp": now.isoformat()}

    def _memory_recommendations(
        self,
        ages: Sequence[float],
        scores: Sequence[float],
        storage: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        recommendations = []
        old = sum(1 for age in ages if age > 180)
        low = sum(1 for score in scores if score < 0.3)

        if storage["estimated_size_mb"] > self.storage_target_mb:
            recommendations.append({
                "type": "urgent_cleanup",
                "priority": "high",
                "message": f"Storage ({storage['estimated_size_mb']:.1f}MB) exceeds target",
                "candidates": min(old, low),
            })
        if old > 50:
            recommendations.append({
                "type": "archive_old",
                "priority": "medium",
                "message": f"{old} memories older than 6 months",
                "action": "Consider archiving old, low-importance memories",
            })
        if low > 100:
            recommendations.append({
                "type": "cleanup_low_importance",
                "priority": "medium",
                "message": f"{low} low-importance memories found",
                "action": "Archive memories with importance below 3",
            })
        return recommendations

    async def cleanup_analytics(self) -> Dict[str, Any]:
        """Storage figures across all employees, with recommendations."""
        employee_stats = []
        for employee_id in self.directory.employee_ids():
            employee_stats.append(await self.storage_stats(employee_id))

        index_stats = await self.index.describe_stats()
        total_size_mb = sum(stats["estimated_size_mb"] for stats in employee_stats)
        over_target = sum(1 for stats in employee_stats if stats["storage_status"] == "over_target")
        total_employees = len(employee_stats)

        analytics = {
            "total_employees": total_employees,
            "total_memories": sum(stats["total_memories"] for stats in employee_stats),
            "total_archived": sum(stats["archived_memories"] for stats in employee_stats),
            "total_estimated_size_mb": total_size_mb,
            "average_storage_mb": total_size_mb / total_employees if total_employees else 0.0,
            "employees_over_target": over_target,
            "total_vector_count": index_stats.get("total_vector_count", 0),
            "last_cleanup_time": self.last_cleanup_time or None,
            "employee_stats": employee_stats,
            "timestamp": utc_now().isoformat(),
        }
        ratio = over_target / total_employees if total_employees else 0.0
        analytics["storage_efficiency"] = (
            "excellent" if ratio < 0.2 else "good" if ratio < 0.5 else "needs_attention"
        )
        analytics["recommendations"] = self._cleanup_recommendations(analytics)
        return analytics

    def _cleanup_recommendations(self, analytics: Dict[str, Any]) -> List[Dict[str, Any]]:
        recommendations = []
        if analytics["employees_over_target"] > 0:
            recommendations.append({
                "type": "storage_optimization",
                "priority": "high",
                "message": (f"{analytics['employees_over_target']} employees exceed "
                            f"{self.storage_target_mb:g}MB storage target"),
                "action": "Run memory cleanup for over-target employees",
            })
        if analytics["average_storage_mb"] > self.storage_target_mb * 0.8:
            recommendations.append({
                "type": "preventive_cleanup",
                "priority": "medium",
                "message": f"Average storage ({analytics['average_storage_mb']:.1f}MB) approaching target",
                "action": "Schedule more frequent cleanup cycles",
            })
        if analytics["total_vector_count"] > 10000:
            recommendations.append({
                "type": "performance_optimization",
                "priority": "medium",
                "message": f"High vector count ({analytics['total_vector_count']}) may impact query performance",
                "action": "Consider aggressive archival thresholds",
            })
        recommendations.append({
            "type": "maintenance",
            "priority": "low",
            "message": "Regular cleanup maintains optimal performance",
            "action": "Ensure automated cleanup is scheduled daily",
        })
        return recommendations
