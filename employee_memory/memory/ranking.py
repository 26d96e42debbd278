"""
Relevance ranking and aggregation for the Employee Memory engine.

Retrieved memories are re-scored against a task description by combining
index similarity, importance, task-type affinity and recency, then
aggregated into a task-context digest or a domain-expertise profile.
"""

import math
import logging
from collections import Counter
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Union

from .records import MemoryType, days_since, utc_now
from .retriever import SearchResult

logger = logging.getLogger("memory.ranking")

SIMILARITY_WEIGHT = 0.4
IMPORTANCE_WEIGHT = 0.3
TYPE_WEIGHT = 0.2
RECENCY_WEIGHT = 0.1

RECENCY_DAYS = 30
PREVIEW_LENGTH = 100


def recency_score(timestamp: datetime, now: Optional[datetime] = None) -> float:
    """Exponential decay of a memory's age, 1.0 for a brand-new memory."""
    return math.exp(-days_since(timestamp, now) / RECENCY_DAYS)


def type_score(memory_type: Union[str, MemoryType], task_description: str) -> float:
    """Affinity of a memory kind for the kind of task described."""
    task = task_description.lower()
    memory_type = memory_type.value if isinstance(memory_type, MemoryType) else memory_type

    if memory_type == MemoryType.EXPERIENCE.value:
        return 0.9 if "implement" in task or "build" in task else 0.7
    if memory_type == MemoryType.KNOWLEDGE.value:
        return 0.9 if "learn" in task or "understand" in task else 0.8
    if memory_type == MemoryType.DECISION.value:
        return 0.9 if "plan" in task or "decide" in task or "architecture" in task else 0.6
    return 0.5


def relevance_score(result: SearchResult, task_description: str, now: Optional[datetime] = None) -> float:
    metadata = result.record.metadata
    return (
        SIMILARITY_WEIGHT * result.score
        + IMPORTANCE_WEIGHT * (metadata.importance / 10)
        + TYPE_WEIGHT * type_score(result.record.memory_type, task_description)
        + RECENCY_WEIGHT * recency_score(metadata.timestamp, now)
    )


def rank_memories(
    results: Sequence[SearchResult],
    task_description: str,
    now: Optional[datetime] = None,
) -> List[SearchResult]:
    """
    Order results by relevance to a task, highest first.

    The sort is stable: equal scores keep their input order. Returns new
    result objects with ``relevance_score`` set; the inputs are untouched.
    """
    now = now or utc_now()
    scored = [
        replace(result, relevance_score=relevance_score(result, task_description, now))
        for result in results
    ]
    return sorted(scored, key=lambda result: result.relevance_score, reverse=True)


def apply_time_based_boosting(
    results: Sequence[SearchResult],
    now: Optional[datetime] = None,
) -> List[SearchResult]:
    """Boost the index score of memories younger than 30 days by up to 20%."""
    now = now or utc_now()
    boosted = []
    for result in results:
        time_boost = max(0.0, 1 - days_since(result.record.metadata.timestamp, now) / RECENCY_DAYS)
        boosted.append(replace(result, score=result.score * (1 + time_boost * 0.2), time_boost=time_boost))
    return boosted


def post_process_results(
    results: Sequence[SearchResult],
    boost_recent: bool = False,
    min_importance: Optional[float] = None,
    max_results: Optional[int] = None,
    relevance_threshold: Optional[float] = None,
) -> List[SearchResult]:
    """
    Sort by index score and apply the optional search refinements.

    Args:
        results: Retrieved results
        boost_recent: Apply the recency boost before sorting
        min_importance: Drop memories below this importance
        max_results: Keep at most this many results
        relevance_threshold: Drop results whose index score is below this
    """
    processed = list(results)
    if boost_recent:
        processed = apply_time_based_boosting(processed)
    processed.sort(key=lambda result: result.score, reverse=True)

    if min_importance:
        processed = [r for r in processed if r.record.metadata.importance >= min_importance]
    if relevance_threshold is not None:
        processed = [r for r in processed if r.score >= relevance_threshold]
    if max_results:
        processed = processed[:max_results]
    return processed


def _preview(content: str) -> str:
    if len(content) <= PREVIEW_LENGTH:
        return content
    return content[:PREVIEW_LENGTH] + "..."


def summarize_context(ranked: Sequence[SearchResult], task_description: str) -> Dict[str, Any]:
    """
    Digest of ranked memories for a task.

    Counts per kind, the mean relevance, and short previews of the top
    experiences, knowledge and decisions.
    """
    by_type: Dict[MemoryType, List[SearchResult]] = {kind: [] for kind in MemoryType}
    for result in ranked:
        by_type[result.record.memory_type].append(result)

    scores = [r.relevance_score for r in ranked if r.relevance_score is not None]
    return {
        "task": task_description,
        "total_memories": len(ranked),
        "experience_count": len(by_type[MemoryType.EXPERIENCE]),
        "knowledge_count": len(by_type[MemoryType.KNOWLEDGE]),
        "decision_count": len(by_type[MemoryType.DECISION]),
        "interaction_count": len(by_type[MemoryType.INTERACTION]),
        "avg_relevance": sum(scores) / len(scores) if scores else 0.0,
        "key_experiences": [_preview(r.record.content) for r in by_type[MemoryType.EXPERIENCE][:3]],
        "key_knowledge": [_preview(r.record.content) for r in by_type[MemoryType.KNOWLEDGE][:3]],
        "key_decisions": [_preview(r.record.content) for r in by_type[MemoryType.DECISION][:2]],
    }


def analyze_expertise(
    results: Sequence[SearchResult],
    domain: str,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Expertise profile of an employee in a domain.

    Args:
        results: Memories retrieved for the domain
        domain: The domain assessed

    Returns:
        Score and confidence on a 0-10 scale, experience and knowledge
        counts, recent activity and the five most frequent tags
    """
    now = now or utc_now()
    experience = [r for r in results if r.record.memory_type == MemoryType.EXPERIENCE]
    knowledge = [r for r in results if r.record.memory_type == MemoryType.KNOWLEDGE]

    total_importance = sum(r.record.metadata.importance for r in experience + knowledge)
    cutoff = now - timedelta(days=RECENCY_DAYS)
    recent = [r for r in results if r.record.metadata.timestamp >= cutoff]

    tag_counts = Counter(tag for r in results for tag in r.record.metadata.tags)
    key_skills = [{"skill": skill, "count": count} for skill, count in tag_counts.most_common(5)]

    if results:
        avg_importance = sum(r.record.metadata.importance for r in results) / len(results)
        confidence = min(10.0, avg_importance * (len(results) / 5))
    else:
        confidence = 0.0

    return {
        "domain": domain,
        "expertise_score": min(10.0, total_importance / 10),
        "experience_count": len(experience),
        "knowledge_count": len(knowledge),
        "recent_activity": len(recent),
        "key_skills": key_skills,
        "confidence_level": confidence,
    }
