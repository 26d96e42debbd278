"""
Tests for embedding composition and the Ollama embeddings client.
"""

import os
import sys
import math
import unittest
from unittest.mock import MagicMock
import logging
from datetime import datetime, timedelta, timezone

# Disable logging during tests
logging.disable(logging.CRITICAL)

# Add the parent directory to the path to import the employee_memory package
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from employee_memory.memory.embeddings import (
    EmbeddingComposer,
    EmbeddingSet,
    OllamaEmbedder,
    prepare_embedding_content,
    resize_vector,
    temporal_embedding,
)
from employee_memory.memory.records import validate_memory
from tests.fakes import HashingEmbedder


class TestVectorHelpers(unittest.TestCase):

    def test_resize_pads_and_truncates(self):
        self.assertEqual(resize_vector([1.0, 2.0, 3.0], 5), [1.0, 2.0, 3.0, 0.0, 0.0])
        self.assertEqual(resize_vector([1.0, 2.0, 3.0], 2), [1.0, 2.0])
        self.assertEqual(resize_vector([], 3), [0.0, 0.0, 0.0])

    def test_temporal_features(self):
        timestamp = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)  # a Friday
        vector = temporal_embedding(timestamp, 512, now=timestamp)

        self.assertEqual(len(vector), 512)
        self.assertAlmostEqual(vector[0], 1.0)
        self.assertAlmostEqual(vector[1], 0.5)
        self.assertAlmostEqual(vector[2], 5 / 7)
        self.assertAlmostEqual(vector[3], 2 / 12)
        self.assertAlmostEqual(vector[4], 0.0)

    def test_temporal_decay_and_fill(self):
        timestamp = datetime(2024, 3, 15, tzinfo=timezone.utc)
        now = timestamp + timedelta(days=30)
        vector = temporal_embedding(timestamp, 16, now=now)

        self.assertEqual(len(vector), 16)
        self.assertAlmostEqual(vector[0], math.exp(-1))
        self.assertAlmostEqual(vector[4], math.sin(math.pi), places=9)
        self.assertAlmostEqual(vector[5], math.sin(math.pi / 2))

    def test_temporal_is_deterministic(self):
        timestamp = datetime(2024, 3, 15, tzinfo=timezone.utc)
        now = datetime(2024, 6, 1, tzinfo=timezone.utc)
        self.assertEqual(temporal_embedding(timestamp, 64, now), temporal_embedding(timestamp, 64, now))

    def test_embedding_content(self):
        submission = validate_memory({
            "memory_type": "knowledge",
            "content": "Redis sorted sets",
            "context": {"domain": "caching"},
            "metadata": {"tags": ["redis", "data-structures"]},
        })
        text = prepare_embedding_content(submission)

        self.assertTrue(text.startswith("Redis sorted sets Context: {"))
        self.assertIn('"domain": "caching"', text)
        self.assertNotIn("extensions", text)
        self.assertTrue(text.endswith(" Tags: redis, data-structures"))

    def test_embedding_set_round_trip(self):
        embeddings = EmbeddingSet(semantic=[0.1], task_contextual=[0.2], temporal=[0.3])
        self.assertEqual(EmbeddingSet.from_dict(embeddings.to_dict()), embeddings)


class TestEmbeddingComposer(unittest.IsolatedAsyncioTestCase):
    """Tests for EmbeddingComposer."""

    async def asyncSetUp(self):
        self.embedder = HashingEmbedder(dimension=100)
        self.composer = EmbeddingComposer(self.embedder, dimension=384, temporal_dimension=512)

    async def test_semantic_is_resized(self):
        vector = await self.composer.semantic("deploy the service")
        self.assertEqual(len(vector), 384)
        self.assertTrue(all(v == 0.0 for v in vector[100:]))

    async def test_task_contextual_prefixes_role(self):
        await self.composer.task_contextual("deploy the service", "sre")
        self.assertEqual(self.embedder.calls[-1], "Site reliability and monitoring context: deploy the service")

        await self.composer.task_contextual("deploy the service", "astronaut")
        self.assertEqual(self.embedder.calls[-1], "General context: deploy the service")

    async def test_compose(self):
        submission = validate_memory({
            "memory_type": "experience",
            "content": "Implemented microservices with Docker",
            "metadata": {"role": "senior_developer"},
        })
        embeddings = await self.composer.compose(submission)

        self.assertEqual(len(embeddings.semantic), 384)
        self.assertEqual(len(embeddings.task_contextual), 384)
        self.assertEqual(len(embeddings.temporal), 512)
        self.assertNotEqual(embeddings.semantic, embeddings.task_contextual)


class _PostContext:
    def __init__(self, response):
        self.response = response

    async def __aenter__(self):
        return self.response

    async def __aexit__(self, *exc_info):
        return False


class _Response:
    def __init__(self, status, payload):
        self.status = status
        self.payload = payload

    async def json(self):
        return self.payload

    async def text(self):
        return str(self.payload)


class TestOllamaEmbedder(unittest.IsolatedAsyncioTestCase):
    """Tests for OllamaEmbedder against a stubbed HTTP session."""

    def _embedder(self, response):
        embedder = OllamaEmbedder(base_url="http://ollama:11434/", model_name="all-minilm")
        embedder.session = MagicMock()
        embedder.session.closed = False
        embedder.session.post = MagicMock(return_value=_PostContext(response))
        return embedder

    async def test_embed(self):
        embedder = self._embedder(_Response(200, {"embedding": [0.1, 0.2, 0.3]}))
        vector = await embedder("hello")

        self.assertEqual(vector, [0.1, 0.2, 0.3])
        embedder.session.post.assert_called_once_with(
            "http://ollama:11434/api/embeddings",
            json={"model": "all-minilm", "prompt": "hello"},
        )

    async def test_embed_error_status(self):
        embedder = self._embedder(_Response(500, {"error": "model not found"}))
        with self.assertRaises(RuntimeError):
            await embedder.embed("hello")

    async def test_embed_missing_vector(self):
        embedder = self._embedder(_Response(200, {}))
        with self.assertRaises(RuntimeError):
            await embedder.embed("hello")


if __name__ == '__main__':
    unittest.main()
