"""
Tests for request payload handling and the maintenance command line.
"""

import os
import sys
import unittest
import logging

# Disable logging during tests
logging.disable(logging.CRITICAL)

# Add the parent directory to the path to import the employee_memory package
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from employee_memory.__main__ import build_parser
from employee_memory.errors import ValidationError
from employee_memory.handlers import MemoryRequestHandler
from tests.fakes import make_manager


class TestMemoryRequestHandler(unittest.IsolatedAsyncioTestCase):
    """Tests for MemoryRequestHandler."""

    async def asyncSetUp(self):
        self.manager = make_manager()
        await self.manager.initialize()
        self.handler = MemoryRequestHandler(self.manager)

    async def store(self, content, memory_type="experience", **metadata):
        response = await self.handler.store({
            "employeeId": "emp_004", "type": memory_type, "content": content, "metadata": metadata,
        })
        return response["memoryId"]

    async def test_store_and_search(self):
        memory_id = await self.store("Implemented microservices with Docker", importance=8.5)
        response = await self.handler.search({"employeeId": "emp_004", "query": "microservices docker", "limit": 3})

        self.assertTrue(response["success"])
        self.assertEqual(response["count"], 1)
        self.assertEqual(response["results"][0]["id"], memory_id)
        self.assertEqual(response["results"][0]["memory"]["content"], "Implemented microservices with Docker")

    async def test_search_options(self):
        await self.store("Docker networking notes", memory_type="knowledge")
        await self.store("Chose docker over podman", memory_type="decision")
        response = await self.handler.search({
            "employeeId": "emp_004", "query": "docker", "limit": 5,
            "memoryTypes": ["decision"], "relevanceThreshold": -1,
        })
        self.assertEqual([r["memory"]["memory_type"] for r in response["results"]], ["decision"])

    async def test_context(self):
        await self.store("Implemented the deploy pipeline", importance=8)
        response = await self.handler.context({"employeeId": "emp_004", "taskDescription": "implement deploys"})

        self.assertEqual(response["totalResults"], 1)
        self.assertEqual(response["summary"]["experience_count"], 1)
        self.assertEqual(len(response["relevanceScores"]), 1)

    async def test_stats(self):
        await self.store("One memory")
        response = await self.handler.stats({"employeeId": "emp_004"})
        self.assertEqual(response["stats"]["memory_count"], 1)

    async def test_archive_restore(self):
        memory_id = await self.store("Reversible")
        archived = await self.handler.archive({"employeeId": "emp_004", "memoryIds": [memory_id]})
        restored = await self.handler.restore({"employeeId": "emp_004", "memoryIds": [memory_id]})

        self.assertEqual(archived["archived_ids"], [memory_id])
        self.assertEqual(restored["restored_ids"], [memory_id])

    async def test_cleanup_and_analytics(self):
        await self.store("Minor note", importance=1)
        cleanup = await self.handler.cleanup({
            "employeeId": "emp_004", "policy": {"minImportanceScore": 3, "dryRun": True},
        })
        self.assertEqual(cleanup["candidate_count"], 1)
        self.assertTrue(cleanup["dry_run"])

        company = await self.handler.cleanup({"policy": {"minImportanceScore": 3}})
        self.assertEqual(company["aggregate"]["total_memories_archived"], 1)

        analytics = await self.handler.analytics()
        self.assertEqual(analytics["analytics"]["total_archived"], 1)

    async def test_payload_validation(self):
        with self.assertRaises(ValidationError):
            await self.handler.store({"type": "experience", "content": "no owner"})
        with self.assertRaises(ValidationError):
            await self.handler.search({"employeeId": "emp_004"})
        with self.assertRaises(ValidationError):
            await self.handler.archive({"employeeId": "emp_004", "memoryIds": []})
        with self.assertRaises(ValidationError):
            await self.handler.cleanup({"employeeId": "emp_004", "policy": "aggressive"})

    async def test_non_numeric_limit(self):
        with self.assertRaises(ValidationError) as ctx:
            await self.handler.search({"employeeId": "emp_004", "query": "docker", "limit": "many"})
        self.assertEqual(ctx.exception.operation, "search")

        with self.assertRaises(ValidationError) as ctx:
            await self.handler.context({"employeeId": "emp_004", "taskDescription": "deploy", "limit": "ten"})
        self.assertEqual(ctx.exception.operation, "context")

        response = await self.handler.search({"employeeId": "emp_004", "query": "docker", "limit": "3"})
        self.assertTrue(response["success"])


class TestCommandLine(unittest.TestCase):

    def test_cleanup_arguments(self):
        args = build_parser().parse_args([
            "--log-level", "DEBUG", "cleanup", "--employee", "emp_004",
            "--min-importance", "3", "--action", "delete", "--dry-run",
        ])
        self.assertEqual(args.command, "cleanup")
        self.assertEqual(args.employee, "emp_004")
        self.assertEqual(args.min_importance, 3.0)
        self.assertEqual(args.action, "delete")
        self.assertTrue(args.dry_run)
        self.assertEqual(args.log_level, "DEBUG")

    def test_command_required(self):
        with self.assertRaises(SystemExit):
            build_parser().parse_args([])


if __name__ == '__main__':
    unittest.main()
