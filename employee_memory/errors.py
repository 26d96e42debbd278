"""
Error types for the Employee Memory engine.

Every error carries the employee it concerns and the operation that failed,
so log lines and API responses can be traced back to a single request.
"""

from typing import Optional


class MemoryEngineError(Exception):
    """Base class for all memory engine errors."""

    def __init__(
        self,
        message: str,
        employee_id: Optional[str] = None,
        operation: Optional[str] = None,
        memory_id: Optional[str] = None,
        namespace: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.employee_id = employee_id
        self.operation = operation
        self.memory_id = memory_id
        self.namespace = namespace

    def __str__(self) -> str:
        parts = [self.message]
        if self.operation:
            parts.append(f"operation={self.operation}")
        if self.employee_id:
            parts.append(f"employee_id={self.employee_id}")
        if self.memory_id:
            parts.append(f"memory_id={self.memory_id}")
        if self.namespace:
            parts.append(f"namespace={self.namespace}")
        return " ".join(parts)


class ValidationError(MemoryEngineError):
    """A memory submission was rejected before any I/O took place."""


class StorageError(MemoryEngineError):
    """Writing to the vector index or the cache failed."""


class RetrievalError(MemoryEngineError):
    """Reading from the vector index or the cache failed."""


class EncryptionError(MemoryEngineError):
    """A sensitive field could not be encrypted."""


class DecryptionError(MemoryEngineError):
    """An envelope failed authentication or was malformed."""


class NotFoundError(MemoryEngineError):
    """The targeted memory does not exist or was permanently deleted."""


class ConfigurationError(MemoryEngineError):
    """Required configuration is missing or invalid."""
