"""
Namespace registry for the Employee Memory engine.

Each employee's memories live in an isolated namespace named
``<employee_id>_<role abbreviation>``. Namespace metadata and the
permission matrix are stored in the cache under ``namespace:<name>`` and
``permissions:<name>``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Mapping, Optional

from ..directory import EmployeeDirectory, is_leadership_role, role_abbreviation
from ..errors import StorageError
from .cache import CacheStore
from .records import parse_timestamp, utc_now

logger = logging.getLogger("memory.namespaces")


def derive_namespace(employee_id: str, role: str) -> str:
    """Stable namespace name for an (employee, role) pair."""
    return f"{employee_id}_{role_abbreviation(role)}"


def namespace_key(namespace: str) -> str:
    return f"namespace:{namespace}"


def permissions_key(namespace: str) -> str:
    return f"permissions:{namespace}"


def members_key(namespace: str) -> str:
    return f"memories:{namespace}"


class PermissionLevel(str, Enum):
    READ_WRITE = "read_write"
    READ_ONLY = "read_only"
    LIMITED_READ = "limited_read"
    NO_ACCESS = "no_access"

    @property
    def can_read(self) -> bool:
        return self != PermissionLevel.NO_ACCESS

    @property
    def can_write(self) -> bool:
        return self == PermissionLevel.READ_WRITE


@dataclass(frozen=True)
class PermissionMatrix:
    """Grants of one namespace over the four visibility tiers."""
    own_memories: PermissionLevel
    department_memories: PermissionLevel
    company_knowledge: PermissionLevel
    cross_department: PermissionLevel

    @classmethod
    def for_role(cls, role: str) -> 'PermissionMatrix':
        leadership = is_leadership_role(role)
        return cls(
            own_memories=PermissionLevel.READ_WRITE,
            department_memories=PermissionLevel.READ_WRITE if leadership else PermissionLevel.READ_ONLY,
            company_knowledge=PermissionLevel.READ_WRITE if leadership else PermissionLevel.READ_ONLY,
            cross_department=PermissionLevel.LIMITED_READ if leadership else PermissionLevel.NO_ACCESS,
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "own_memories": self.own_memories.value,
            "department_memories": self.department_memories.value,
            "company_knowledge": self.company_knowledge.value,
            "cross_department": self.cross_department.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, str]) -> 'PermissionMatrix':
        return cls(
            own_memories=PermissionLevel(data["own_memories"]),
            department_memories=PermissionLevel(data["department_memories"]),
            company_knowledge=PermissionLevel(data["company_knowledge"]),
            cross_department=PermissionLevel(data["cross_department"]),
        )


@dataclass
class NamespaceMetadata:
    employee_id: str
    role: str
    department: str
    namespace: str
    created_at: datetime
    memory_count: int
    last_accessed: datetime

    def to_dict(self) -> Dict[str, object]:
        return {
            "employee_id": self.employee_id,
            "role": self.role,
            "department": self.department,
            "namespace": self.namespace,
            "created_at": self.created_at.isoformat(),
            "memory_count": self.memory_count,
            "last_accessed": self.last_accessed.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, str]) -> 'NamespaceMetadata':
        # Counters can reach a namespace that was never initialized.
        last_accessed = parse_timestamp(data["last_accessed"]) if data.get("last_accessed") else utc_now()
        return cls(
            employee_id=data.get("employee_id", ""),
            role=data.get("role", "unknown"),
            department=data.get("department", "Unknown"),
            namespace=data.get("namespace", ""),
            created_at=parse_timestamp(data["created_at"]) if data.get("created_at") else last_accessed,
            memory_count=int(data.get("memory_count", 0)),
            last_accessed=last_accessed,
        )


class NamespaceRegistry:
    """
    Allocates and describes per-employee namespaces.

    Args:
        cache: Cache holding namespace metadata and permissions
        directory: Employee directory used to resolve roles
    """

    def __init__(self, cache: CacheStore, directory: EmployeeDirectory):
        self.cache = cache
        self.directory = directory

    def namespace_for(self, employee_id: str) -> str:
        """Namespace of an employee, using the role on file in the directory."""
        return derive_namespace(employee_id, self.directory.role_of(employee_id))

    async def create_namespace(self, employee_id: str, role: str, department: str) -> str:
        """
        Create (or refresh) an employee's namespace.

        An existing namespace keeps its memory count and creation time.

        Returns:
            The namespace name
        """
        namespace = derive_namespace(employee_id, role)
        now = utc_now().isoformat()
        try:
            existing = await self.cache.hgetall(namespace_key(namespace))
            fields = {
                "employee_id": employee_id,
                "role": role,
                "department": department,
                "namespace": namespace,
                "last_accessed": now,
            }
            if not existing:
                fields["created_at"] = now
                fields["memory_count"] = 0
            await self.cache.hset(namespace_key(namespace), fields)
            await self.create_permissions(namespace, role, department)
        except StorageError:
            raise
        except Exception as e:
            logger.error(f"Failed to create namespace {namespace}: {str(e)}")
            raise StorageError(
                f"Failed to create namespace: {str(e)}",
                employee_id=employee_id,
                operation="create_namespace",
                namespace=namespace,
            ) from e

        logger.info(f"Employee namespace {'refreshed' if existing else 'created'}: {namespace}")
        return namespace

    async def create_permissions(self, namespace: str, role: str, department: str) -> PermissionMatrix:
        permissions = PermissionMatrix.for_role(role)
        await self.cache.hset(permissions_key(namespace), permissions.to_dict())
        logger.debug(f"Permissions for {namespace} ({department}): {permissions.to_dict()}")
        return permissions

    async def get_permissions(self, namespace: str) -> Optional[PermissionMatrix]:
        data = await self.cache.hgetall(permissions_key(namespace))
        return PermissionMatrix.from_dict(data) if data else None

    async def get_metadata(self, namespace: str) -> Optional[NamespaceMetadata]:
        data = await self.cache.hgetall(namespace_key(namespace))
        return NamespaceMetadata.from_dict(data) if data else None

    async def update_stats(self, namespace: str) -> int:
        """
        Count one more memory in a namespace.

        Uses the cache's atomic increment so concurrent writers never lose
        an update.

        Returns:
            The new memory count
        """
        try:
            count = await self.cache.hincrby(namespace_key(namespace), "memory_count", 1)
            await self.cache.hset(namespace_key(namespace), {"last_accessed": utc_now().isoformat()})
        except Exception as e:
            logger.error(f"Failed to update namespace statistics for {namespace}: {str(e)}")
            raise StorageError(
                f"Failed to update namespace statistics: {str(e)}",
                operation="update_stats",
                namespace=namespace,
            ) from e
        return count
