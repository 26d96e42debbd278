"""
Embedding composition for the Employee Memory engine.

Every memory gets three vectors: a semantic vector of its text, a
task-contextual vector of the same text prefixed with the employee's role
context, and a temporal vector computed in closed form from its timestamp.
The inference model itself is an external service reached through
:class:`OllamaEmbedder`.
"""

import json
import math
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import aiohttp
import numpy as np
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from ..directory import role_context
from .records import MemorySubmission, days_since, utc_now

logger = logging.getLogger("memory.embeddings")

EmbedFunction = Callable[[str], Awaitable[Sequence[float]]]


class OllamaEmbedder:
    """
    Client for the Ollama embeddings endpoint.

    Instances are awaitable callables, ``await embedder(text)``, returning
    the model's native-dimension vector.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model_name: str = "all-minilm",
        request_timeout: int = 60,
    ):
        self.base_url = base_url.rstrip("/")
        self.model_name = model_name
        self.timeout = request_timeout
        self.session: Optional[aiohttp.ClientSession] = None
        logger.info(f"Initialized Ollama embedder {model_name} at {base_url}")

    async def ensure_session(self) -> None:
        """Ensure an aiohttp session exists."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self.session and not self.session.closed:
            await self.session.close()
            self.session = None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((aiohttp.ClientError, asyncio.TimeoutError)),
    )
    async def embed(self, text: str) -> List[float]:
        """
        Embed a piece of text.

        Args:
            text: The text to embed

        Returns:
            The embedding vector
        """
        await self.ensure_session()
        url = f"{self.base_url}/api/embeddings"
        payload = {"model": self.model_name, "prompt": text}

        async with self.session.post(url, json=payload) as response:
            if response.status != 200:
                error_text = await response.text()
                logger.error(f"Ollama embeddings error: {response.status} - {error_text}")
                raise RuntimeError(f"Ollama embeddings error: {response.status} - {error_text}")
            data = await response.json()

        embedding = data.get("embedding")
        if not embedding:
            raise RuntimeError(f"Ollama returned no embedding for model {self.model_name}")
        return embedding

    async def __call__(self, text: str) -> List[float]:
        return await self.embed(text)


def resize_vector(values: Sequence[float], dimension: int) -> List[float]:
    """Zero-pad or truncate ``values`` to exactly ``dimension`` floats."""
    vector = np.zeros(dimension, dtype=np.float64)
    source = np.asarray(values, dtype=np.float64).ravel()[:dimension]
    vector[:source.shape[0]] = source
    return vector.tolist()


def temporal_embedding(
    timestamp: datetime,
    dimension: int = 512,
    now: Optional[datetime] = None,
) -> List[float]:
    """
    Closed-form temporal vector for a timestamp.

    Element 0 is the recency decay exp(-days/30); elements 1-3 are the
    hour of day, day of week (Sunday = 0) and month of year as fractions;
    the rest is a periodic fill sin(days * pi / (30 * k)) for k = 1, 2, ...
    """
    days = days_since(timestamp, now)
    embedding = np.zeros(dimension, dtype=np.float64)
    embedding[0] = math.exp(-days / 30)
    embedding[1] = timestamp.hour / 24
    embedding[2] = (timestamp.isoweekday() % 7) / 7
    embedding[3] = (timestamp.month - 1) / 12
    if dimension > 4:
        periods = 30.0 * np.arange(1, dimension - 3, dtype=np.float64)
        embedding[4:] = np.sin(days * math.pi / periods)
    return embedding.tolist()


def prepare_embedding_content(submission: MemorySubmission) -> str:
    """Text that represents a memory for embedding: content, context and tags."""
    content = submission.content
    context = submission.context.to_dict()
    if not context.get("extensions"):
        context.pop("extensions", None)
    if context:
        content += f" Context: {json.dumps(context, sort_keys=True, ensure_ascii=False)}"
    if submission.metadata.tags:
        content += f" Tags: {', '.join(submission.metadata.tags)}"
    return content


@dataclass
class EmbeddingSet:
    """The three vectors stored with each memory."""
    semantic: List[float]
    task_contextual: List[float]
    temporal: List[float]

    def to_dict(self) -> Dict[str, List[float]]:
        return {
            "semantic": self.semantic,
            "task_contextual": self.task_contextual,
            "temporal": self.temporal,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EmbeddingSet':
        return cls(
            semantic=list(data["semantic"]),
            task_contextual=list(data["task_contextual"]),
            temporal=list(data["temporal"]),
        )


class EmbeddingComposer:
    """
    Produces fixed-length semantic, task-contextual and temporal vectors.

    Args:
        embed: Awaitable callable mapping text to a vector
        dimension: Length of the semantic and task-contextual vectors
        temporal_dimension: Length of the temporal vector
    """

    def __init__(self, embed: EmbedFunction, dimension: int = 384, temporal_dimension: int = 512):
        self._embed = embed
        self.dimension = dimension
        self.temporal_dimension = temporal_dimension

    async def semantic(self, text: str) -> List[float]:
        raw = await self._embed(text)
        if len(raw) != self.dimension:
            logger.debug(f"Resizing embedding from {len(raw)} to {self.dimension} dimensions")
        return resize_vector(raw, self.dimension)

    async def task_contextual(self, text: str, role: Optional[str]) -> List[float]:
        return await self.semantic(f"{role_context(role)} {text}")

    def temporal(self, timestamp: datetime, now: Optional[datetime] = None) -> List[float]:
        return temporal_embedding(timestamp, self.temporal_dimension, now or utc_now())

    async def compose(self, submission: MemorySubmission) -> EmbeddingSet:
        """
        Build all three vectors for a validated submission.

        The two model calls run concurrently; the temporal vector needs no
        external call.
        """
        text = prepare_embedding_content(submission)
        semantic, task_contextual = await asyncio.gather(
            self.semantic(text),
            self.task_contextual(text, submission.metadata.role),
        )
        return EmbeddingSet(
            semantic=semantic,
            task_contextual=task_contextual,
            temporal=self.temporal(submission.metadata.timestamp),
        )
