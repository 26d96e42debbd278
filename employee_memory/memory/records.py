"""
Memory records for the Employee Memory engine.

This module defines the memory kinds, the per-kind context schemas,
record metadata, and the validator that turns a raw submission into a
normalized record body.
"""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union
from dataclasses import dataclass, field, fields

from ..errors import ValidationError

logger = logging.getLogger("memory.records")


class MemoryType(str, Enum):
    """The four kinds of memory an employee can hold."""
    EXPERIENCE = "experience"
    KNOWLEDGE = "knowledge"
    DECISION = "decision"
    INTERACTION = "interaction"

    @classmethod
    def from_str(cls, memory_type: str) -> 'MemoryType':
        """Convert string to MemoryType, rejecting unknown kinds."""
        try:
            return cls(memory_type)
        except ValueError:
            raise ValidationError(
                f"Invalid memory type: {memory_type!r}", operation="validate"
            ) from None


class LifecycleState(str, Enum):
    """Lifecycle of a stored record."""
    ACTIVE = "active"
    ARCHIVED = "archived"
    DELETED = "deleted"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Union[str, int, float, datetime, None]) -> datetime:
    """
    Parse a timestamp into an aware UTC datetime.

    Accepts datetimes, ISO-8601 strings (with or without a trailing Z)
    and epoch seconds.
    """
    if value is None:
        raise ValidationError("Timestamp is missing", operation="validate")
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        dt = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(
                f"Invalid timestamp: {value!r}", operation="validate"
            ) from None
    else:
        raise ValidationError(f"Invalid timestamp: {value!r}", operation="validate")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def days_since(timestamp: datetime, now: Optional[datetime] = None) -> float:
    """Age of a timestamp in fractional days."""
    now = now or utc_now()
    return (now - timestamp).total_seconds() / 86400.0


def validate_extensions(extensions: Mapping[str, Any]) -> Dict[str, Any]:
    """Extension maps must have string keys and JSON-serializable values."""
    result = {}
    for key, value in extensions.items():
        if not isinstance(key, str):
            raise ValidationError(
                f"Extension keys must be strings, got {key!r}", operation="validate"
            )
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            raise ValidationError(
                f"Extension {key!r} is not JSON-serializable", operation="validate"
            ) from None
        result[key] = value
    return result


def _string_list(value: Any, name: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str) or not isinstance(value, (list, tuple, set, frozenset)):
        raise ValidationError(f"{name} must be a list", operation="validate")
    return [str(item) for item in value]


@dataclass
class MemoryContext:
    """
    Base for the type-specific context schemas.

    Known fields are typed; anything else a caller sends is kept in
    ``extensions`` after validation so newer clients can add fields
    without breaking older readers.
    """
    extensions: Dict[str, Any] = field(default_factory=dict)

    _list_fields = ()

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "extensions"}
        data["extensions"] = dict(self.extensions)
        return data

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'MemoryContext':
        data = dict(data or {})
        known = {f.name for f in fields(cls)} - {"extensions"}
        kwargs: Dict[str, Any] = {}
        extensions = dict(data.pop("extensions", None) or {})
        for key, value in data.items():
            if key in known:
                if key in cls._list_fields:
                    value = _string_list(value, key)
                if value is not None:
                    kwargs[key] = value
            else:
                extensions[key] = value
        kwargs["extensions"] = validate_extensions(extensions)
        return cls(**kwargs)


@dataclass
class ExperienceContext(MemoryContext):
    project: str = "unknown"
    technologies: List[str] = field(default_factory=list)
    outcome: str = "unknown"
    lessons_learned: List[str] = field(default_factory=list)

    _list_fields = ("technologies", "lessons_learned")


@dataclass
class KnowledgeContext(MemoryContext):
    domain: str = "general"
    complexity: str = "intermediate"
    applications: List[str] = field(default_factory=list)

    _list_fields = ("applications",)


@dataclass
class DecisionContext(MemoryContext):
    decision_type: str = "general"
    alternatives: List[str] = field(default_factory=list)
    criteria: List[str] = field(default_factory=list)
    rationale: str = ""
    stakeholders: List[str] = field(default_factory=list)
    outcome: str = "pending"
    effectiveness: Optional[float] = None

    _list_fields = ("alternatives", "criteria", "stakeholders")


@dataclass
class InteractionContext(MemoryContext):
    query: str = ""
    response: str = ""
    query_type: str = "general"
    response_quality: Optional[float] = None
    feedback: Optional[str] = None


CONTEXT_TYPES = {
    MemoryType.EXPERIENCE: ExperienceContext,
    MemoryType.KNOWLEDGE: KnowledgeContext,
    MemoryType.DECISION: DecisionContext,
    MemoryType.INTERACTION: InteractionContext,
}


def context_from_dict(memory_type: MemoryType, data: Optional[Mapping[str, Any]]) -> MemoryContext:
    """Build the context variant that matches the memory type."""
    if data is not None and not isinstance(data, Mapping):
        raise ValidationError("context must be a mapping", operation="validate")
    return CONTEXT_TYPES[memory_type].from_dict(data)


@dataclass
class MemoryMetadata:
    """Metadata shared by every memory kind."""
    timestamp: datetime
    importance: float = 5.0
    tags: List[str] = field(default_factory=list)
    department: Optional[str] = None
    role: Optional[str] = None
    confidence: Optional[float] = None
    source: Optional[str] = None
    encrypted: bool = False
    extensions: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "importance": self.importance,
            "tags": list(self.tags),
            "department": self.department,
            "role": self.role,
            "confidence": self.confidence,
            "source": self.source,
            "encrypted": self.encrypted,
            "extensions": dict(self.extensions),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'MemoryMetadata':
        return cls(
            timestamp=parse_timestamp(data.get("timestamp")),
            importance=float(data.get("importance", 5.0)),
            tags=list(data.get("tags") or []),
            department=data.get("department"),
            role=data.get("role"),
            confidence=data.get("confidence"),
            source=data.get("source"),
            encrypted=bool(data.get("encrypted", False)),
            extensions=dict(data.get("extensions") or {}),
        )


@dataclass
class MemorySubmission:
    """A validated memory body that has not been stored yet."""
    memory_type: MemoryType
    content: str
    context: MemoryContext
    metadata: MemoryMetadata


@dataclass
class MemoryRecord:
    """A stored memory, as seen by readers after decryption."""
    id: str
    employee_id: str
    memory_type: MemoryType
    content: str
    context: MemoryContext
    metadata: MemoryMetadata
    state: LifecycleState = LifecycleState.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "memory_type": self.memory_type.value,
            "content": self.content,
            "context": self.context.to_dict(),
            "metadata": self.metadata.to_dict(),
            "state": self.state.value,
        }


_METADATA_KNOWN = {"timestamp", "importance", "tags", "department", "role",
                   "confidence", "source", "encrypted", "extensions"}


def _importance(value: Any) -> float:
    if value is None:
        return 5.0
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValidationError(f"Invalid importance: {value!r}", operation="validate")
    try:
        importance = float(value)
    except ValueError:
        raise ValidationError(f"Invalid importance: {value!r}", operation="validate") from None
    if not 0.0 <= importance <= 10.0:
        raise ValidationError(
            f"Importance must be between 0 and 10, got {importance}", operation="validate"
        )
    return importance


def _tags(value: Any) -> List[str]:
    # Tags are a set; keep first-seen order so serialized records are stable.
    seen = []
    for tag in _string_list(value, "tags"):
        tag = tag.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


def validate_memory(raw: Mapping[str, Any], now: Optional[datetime] = None) -> MemorySubmission:
    """
    Normalize and check a raw memory submission.

    Pure: performs no I/O and does not modify ``raw``.

    Args:
        raw: Submission with ``memory_type`` (or ``type``), ``content`` and
            optional ``context`` and ``metadata`` mappings
        now: Timestamp to use when the submission has none

    Returns:
        The validated submission with importance and timestamp filled in
    """
    if not isinstance(raw, Mapping):
        raise ValidationError("Memory submission must be a mapping", operation="validate")

    raw_type = raw.get("memory_type", raw.get("type"))
    if raw_type is None:
        raise ValidationError("Missing required field: memory_type", operation="validate")
    memory_type = raw_type if isinstance(raw_type, MemoryType) else MemoryType.from_str(raw_type)

    content = raw.get("content")
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("Missing required field: content", operation="validate")

    raw_metadata = raw.get("metadata") or {}
    if not isinstance(raw_metadata, Mapping):
        raise ValidationError("metadata must be a mapping", operation="validate")

    timestamp = raw_metadata.get("timestamp")
    extensions = dict(raw_metadata.get("extensions") or {})
    extensions.update({k: v for k, v in raw_metadata.items() if k not in _METADATA_KNOWN})

    confidence = raw_metadata.get("confidence")
    if confidence is not None:
        try:
            confidence = float(confidence)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid confidence: {confidence!r}", operation="validate") from None

    metadata = MemoryMetadata(
        timestamp=parse_timestamp(timestamp) if timestamp is not None else (now or utc_now()),
        importance=_importance(raw_metadata.get("importance")),
        tags=_tags(raw_metadata.get("tags")),
        department=raw_metadata.get("department"),
        role=raw_metadata.get("role"),
        confidence=confidence,
        source=raw_metadata.get("source"),
        extensions=validate_extensions(extensions),
    )

    return MemorySubmission(
        memory_type=memory_type,
        content=content,
        context=context_from_dict(memory_type, raw.get("context")),
        metadata=metadata,
    )
