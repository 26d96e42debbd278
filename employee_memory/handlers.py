"""
Request payload handling for the Employee Memory engine.

The HTTP layer lives outside this package; it hands decoded JSON payloads
to :class:`MemoryRequestHandler` and serializes whatever comes back.
Payload keys use the API's camelCase names; snake_case is accepted too.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from .errors import ValidationError
from .memory.retention import CleanupPolicy
from .memory.retriever import SearchResult
from .memory_manager import MemoryManager

logger = logging.getLogger("handlers")


def _field(payload: Mapping[str, Any], camel: str, snake: str, default: Any = None) -> Any:
    if payload.get(camel) is not None:
        return payload[camel]
    if payload.get(snake) is not None:
        return payload[snake]
    return default


def _required(payload: Mapping[str, Any], camel: str, snake: str, operation: str) -> Any:
    value = _field(payload, camel, snake)
    if value is None or value == "":
        raise ValidationError(f"Missing required field: {camel}", operation=operation)
    return value


def _limit(payload: Mapping[str, Any], default: int, operation: str) -> int:
    value = _field(payload, "limit", "limit", default)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"limit must be an integer, got {value!r}", operation=operation) from None


def _id_list(payload: Mapping[str, Any], operation: str) -> List[str]:
    ids = _field(payload, "memoryIds", "memory_ids", _field(payload, "ids", "ids"))
    if not isinstance(ids, list) or not ids:
        raise ValidationError("memoryIds must be a non-empty list", operation=operation)
    return [str(memory_id) for memory_id in ids]


def _results(results: List[SearchResult]) -> List[Dict[str, Any]]:
    return [result.to_dict() for result in results]


class MemoryRequestHandler:
    """Maps request payloads onto :class:`MemoryManager` calls."""

    def __init__(self, manager: MemoryManager):
        self.manager = manager

    async def store(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """``{employeeId, type, content, context?, metadata?}`` to ``{memoryId}``."""
        employee_id = _required(payload, "employeeId", "employee_id", "store")
        memory = {
            "memory_type": _field(payload, "type", "memory_type"),
            "content": payload.get("content"),
            "context": payload.get("context"),
            "metadata": payload.get("metadata"),
        }
        memory_id = await self.manager.store_memory(employee_id, memory)
        return {"success": True, "memoryId": memory_id}

    async def search(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """``{employeeId, query, limit, memoryTypes?, relevanceThreshold?}`` to ranked results."""
        employee_id = _required(payload, "employeeId", "employee_id", "search")
        query = _required(payload, "query", "query", "search")
        results = await self.manager.search_memories(
            employee_id,
            query,
            limit=_limit(payload, 5, "search"),
            memory_types=_field(payload, "memoryTypes", "memory_types"),
            relevance_threshold=_field(payload, "relevanceThreshold", "relevance_threshold"),
            boost_recent=bool(_field(payload, "boostRecent", "boost_recent", False)),
        )
        return {"success": True, "employeeId": employee_id, "results": _results(results), "count": len(results)}

    async def context(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """``{employeeId, taskDescription, limit?, timeRange?}`` to a task summary."""
        employee_id = _required(payload, "employeeId", "employee_id", "context")
        task = _required(payload, "taskDescription", "task_description", "context")
        context = await self.manager.get_relevant_context(
            employee_id,
            task,
            top_k=_limit(payload, 10, "context"),
            time_range=_field(payload, "timeRange", "time_range"),
        )
        return {
            "success": True,
            "employeeId": employee_id,
            "summary": context["summary"],
            "memories": _results(context["memories"]),
            "totalResults": context["total_results"],
            "relevanceScores": context["relevance_scores"],
        }

    async def stats(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """``{employeeId}`` to namespace statistics."""
        employee_id = _required(payload, "employeeId", "employee_id", "stats")
        stats = await self.manager.get_memory_statistics(employee_id)
        return {"success": True, "employeeId": employee_id, "stats": stats}

    async def archive(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        employee_id = _required(payload, "employeeId", "employee_id", "archive")
        outcome = await self.manager.archive_memories(
            employee_id, _id_list(payload, "archive"), payload.get("reason")
        )
        return {"success": True, **outcome}

    async def restore(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        employee_id = _required(payload, "employeeId", "employee_id", "restore")
        outcome = await self.manager.restore_memories(
            employee_id, _id_list(payload, "restore"), payload.get("reason")
        )
        return {"success": True, **outcome}

    async def cleanup(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """``{employeeId?, policy}``; without an employee the whole company is cleaned up."""
        policy_data: Optional[Mapping[str, Any]] = payload.get("policy")
        if policy_data is not None and not isinstance(policy_data, Mapping):
            raise ValidationError("policy must be a mapping", operation="cleanup")
        policy = CleanupPolicy.from_dict(policy_data or {})

        employee_id = _field(payload, "employeeId", "employee_id")
        if employee_id:
            return await self.manager.cleanup_memories(employee_id, policy)
        return await self.manager.company_wide_cleanup(policy)

    async def analytics(self, payload: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Aggregate storage and usage figures across employees."""
        return {"success": True, "analytics": await self.manager.get_cleanup_analytics()}
