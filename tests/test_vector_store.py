"""
Tests for the vector index adapters and filter translation.
"""

import os
import sys
import uuid
import unittest
import logging

# Disable logging during tests
logging.disable(logging.CRITICAL)

# Add the parent directory to the path to import the employee_memory package
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from employee_memory.memory.vector_store import (
    ChromaVectorIndex,
    InMemoryVectorIndex,
    VectorEntry,
    matches_filter,
    to_chroma_where,
)


class TestFilters(unittest.TestCase):

    def test_matches_filter(self):
        metadata = {"employee_id": "emp_004", "memory_type": "experience", "importance": 7.0, "created_at": 100.0}

        self.assertTrue(matches_filter(metadata, None))
        self.assertTrue(matches_filter(metadata, {"employee_id": {"$eq": "emp_004"}}))
        self.assertFalse(matches_filter(metadata, {"employee_id": {"$eq": "emp_005"}}))
        self.assertTrue(matches_filter(metadata, {"memory_type": {"$in": ["experience", "decision"]}}))
        self.assertFalse(matches_filter(metadata, {"memory_type": {"$nin": ["experience"]}}))
        self.assertTrue(matches_filter(metadata, {"importance": {"$gte": 7.0}}))
        self.assertFalse(matches_filter(metadata, {"importance": {"$gt": 7.0}}))
        self.assertTrue(matches_filter(metadata, {"created_at": {"$gte": 50, "$lte": 150}}))
        self.assertFalse(matches_filter(metadata, {"missing": {"$gte": 1}}))
        self.assertTrue(matches_filter(metadata, {"$and": [{"employee_id": "emp_004"}, {"importance": {"$lt": 8}}]}))

    def test_unsupported_operator(self):
        with self.assertRaises(ValueError):
            matches_filter({"a": 1}, {"a": {"$regex": "x"}})

    def test_to_chroma_where(self):
        self.assertIsNone(to_chroma_where({}))
        self.assertEqual(
            to_chroma_where({"employee_id": {"$eq": "emp_004"}}),
            {"employee_id": {"$eq": "emp_004"}},
        )
        self.assertEqual(
            to_chroma_where({
                "employee_id": {"$eq": "emp_004"},
                "created_at": {"$gte": 1.0, "$lte": 2.0},
            }),
            {"$and": [
                {"employee_id": {"$eq": "emp_004"}},
                {"created_at": {"$gte": 1.0}},
                {"created_at": {"$lte": 2.0}},
            ]},
        )


class IndexContract:
    """Behaviour shared by every VectorIndex implementation."""

    def make_index(self):
        raise NotImplementedError

    async def asyncSetUp(self):
        self.index = self.make_index()
        self.namespace = f"test_{uuid.uuid4().hex[:12]}"
        await self.index.upsert(self.namespace, [
            VectorEntry("a", [1.0, 0.0, 0.0], {"employee_id": "emp_001", "importance": 9.0}),
            VectorEntry("b", [0.7, 0.7, 0.0], {"employee_id": "emp_001", "importance": 3.0}),
            VectorEntry("c", [0.0, 0.0, 1.0], {"employee_id": "emp_002", "importance": 5.0}),
        ])

    async def test_query_orders_by_similarity(self):
        matches = await self.index.query(self.namespace, [1.0, 0.1, 0.0], top_k=3)
        self.assertEqual([m.id for m in matches], ["a", "b", "c"])
        self.assertGreater(matches[0].score, matches[1].score)

    async def test_query_filter_and_top_k(self):
        matches = await self.index.query(
            self.namespace, [1.0, 0.1, 0.0], top_k=5,
            filter={"employee_id": {"$eq": "emp_001"}, "importance": {"$gte": 5.0}},
        )
        self.assertEqual([m.id for m in matches], ["a"])
        self.assertEqual(matches[0].metadata["importance"], 9.0)

        matches = await self.index.query(self.namespace, [1.0, 0.1, 0.0], top_k=1)
        self.assertEqual(len(matches), 1)

    async def test_delete_and_stats(self):
        await self.index.delete(self.namespace, ["b", "missing"])
        matches = await self.index.query(self.namespace, [1.0, 1.0, 1.0], top_k=10)
        self.assertEqual(sorted(m.id for m in matches), ["a", "c"])

        stats = await self.index.describe_stats()
        self.assertEqual(stats["namespaces"][self.namespace]["vector_count"], 2)

    async def test_empty_namespace(self):
        matches = await self.index.query(f"{self.namespace}_empty", [1.0, 0.0, 0.0], top_k=3)
        self.assertEqual(matches, [])


class TestInMemoryVectorIndex(IndexContract, unittest.IsolatedAsyncioTestCase):

    def make_index(self):
        return InMemoryVectorIndex()

    async def test_namespaces_are_isolated(self):
        await self.index.upsert("other", [VectorEntry("z", [1.0, 0.0, 0.0], {})])
        matches = await self.index.query(self.namespace, [1.0, 0.0, 0.0], top_k=10)
        self.assertNotIn("z", [m.id for m in matches])

        stats = await self.index.describe_stats()
        self.assertEqual(stats["total_vector_count"], 4)


class TestChromaVectorIndex(IndexContract, unittest.IsolatedAsyncioTestCase):

    def make_index(self):
        return ChromaVectorIndex()

    async def test_tags_survive_flattening(self):
        await self.index.upsert(self.namespace, [
            VectorEntry("t", [0.0, 1.0, 0.0], {"tags": ["docker", "k8s"], "department": None}),
        ])
        matches = await self.index.query(self.namespace, [0.0, 1.0, 0.0], top_k=1)
        self.assertEqual(matches[0].id, "t")
        self.assertEqual(matches[0].metadata["tags"], ["docker", "k8s"])
        self.assertNotIn("department", matches[0].metadata)


if __name__ == '__main__':
    unittest.main()
