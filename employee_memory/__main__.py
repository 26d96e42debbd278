"""
Main entry point for the Employee Memory package.

This module provides maintenance commands for the memory engine from the
command line: namespace initialization, per-employee statistics, cleanup
and storage analytics.
"""

import sys
import logging
import asyncio
import argparse
from typing import Any, Dict, List

from rich.console import Console
from rich.table import Table

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger("main")

# Rich console for pretty terminal output
console = Console()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Employee Memory maintenance")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        default="INFO", help="Set logging level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Create namespaces and permissions for all employees")

    stats = subparsers.add_parser("stats", help="Show storage statistics")
    stats.add_argument("--employee", "-e", type=str, default=None,
                       help="Employee id (default: all employees)")

    cleanup = subparsers.add_parser("cleanup", help="Archive or delete memories by policy")
    cleanup.add_argument("--employee", "-e", type=str, default=None,
                         help="Employee id (default: all employees)")
    cleanup.add_argument("--max-memories", type=int, default=None,
                         help="Keep at most this many memories per employee")
    cleanup.add_argument("--min-importance", type=float, default=None,
                         help="Select memories with importance below this")
    cleanup.add_argument("--max-age-days", type=float, default=None,
                         help="Select memories older than this many days")
    cleanup.add_argument("--action", choices=["archive", "delete"], default="archive",
                         help="What to do with selected memories")
    cleanup.add_argument("--dry-run", action="store_true",
                         help="Report candidates without changing anything")

    subparsers.add_parser("analytics", help="Show company-wide cleanup analytics")
    return parser


def print_storage_table(rows: List[Dict[str, Any]]) -> None:
    table = Table(title="Memory Storage")
    table.add_column("Employee", style="cyan")
    table.add_column("Role")
    table.add_column("Active", justify="right")
    table.add_column("Archived", justify="right")
    table.add_column("Vectors", justify="right")
    table.add_column("Size (MB)", justify="right")
    table.add_column("Status")

    for row in rows:
        status_style = "red" if row["storage_status"] == "over_target" else "green"
        table.add_row(
            row["employee_id"],
            row["role"],
            str(row["active_memories"]),
            str(row["archived_memories"]),
            str(row["vector_count"]),
            f"{row['estimated_size_mb']:.3f}",
            f"[{status_style}]{row['storage_status']}[/{status_style}]",
        )
    console.print(table)


def print_cleanup_table(results: List[Dict[str, Any]]) -> None:
    table = Table(title="Memory Cleanup")
    table.add_column("Employee", style="cyan")
    table.add_column("Candidates", justify="right")
    table.add_column("Archived", justify="right")
    table.add_column("Deleted", justify="right")
    table.add_column("Freed (MB)", justify="right")

    for result in results:
        if not result.get("success"):
            table.add_row(result["employee_id"], f"[red]{result.get('error')}[/red]", "", "", "")
            continue
        table.add_row(
            result["employee_id"],
            str(result["candidate_count"]),
            str(result["archived_count"]),
            str(result["deleted_count"]),
            f"{result['saved_mb']:.3f}",
        )
    console.print(table)


def print_recommendations(recommendations: List[Dict[str, Any]]) -> None:
    table = Table(title="Recommendations")
    table.add_column("Priority")
    table.add_column("Type")
    table.add_column("Message")
    for recommendation in recommendations:
        table.add_row(recommendation["priority"], recommendation["type"], recommendation["message"])
    console.print(table)


async def main(argv=None) -> int:
    """Main entry point for the memory maintenance commands."""
    args = build_parser().parse_args(argv)

    # Configure logging level
    logging.getLogger().setLevel(getattr(logging, args.log_level))

    # Import here so --help works without the service dependencies configured
    from .memory.retention import CleanupPolicy
    from .memory_manager import MemoryManager

    manager = await MemoryManager.from_config()
    try:
        if args.command == "init":
            result = await manager.initialize()
            table = Table(title="Employee Namespaces")
            table.add_column("Employee", style="cyan")
            table.add_column("Namespace")
            for employee_id, namespace in result["namespaces"].items():
                table.add_row(employee_id, namespace)
            for employee_id, error in result["failures"].items():
                table.add_row(employee_id, f"[red]{error}[/red]")
            console.print(table)
            return 1 if result["failures"] else 0

        if args.command == "stats":
            employee_ids = [args.employee] if args.employee else manager.directory.employee_ids()
            rows = [await manager.get_storage_stats(employee_id) for employee_id in employee_ids]
            print_storage_table(rows)
            return 0

        if args.command == "cleanup":
            policy = CleanupPolicy(
                max_memories=args.max_memories,
                min_importance_score=args.min_importance,
                max_age_days=args.max_age_days,
                dry_run=args.dry_run,
                action=args.action,
            )
            if args.employee:
                results = [await manager.cleanup_memories(args.employee, policy)]
            else:
                outcome = await manager.company_wide_cleanup(policy)
                results = outcome.get("employee_results", [])
            print_cleanup_table(results)
            if args.dry_run:
                console.print("[bold yellow]Dry run: no memories were changed[/bold yellow]")
            return 0

        analytics = await manager.get_cleanup_analytics()
        print_storage_table(analytics["employee_stats"])
        console.print(
            f"Total memories: [bold]{analytics['total_memories']}[/bold], "
            f"vectors: [bold]{analytics['total_vector_count']}[/bold], "
            f"storage efficiency: [bold]{analytics['storage_efficiency']}[/bold]"
        )
        print_recommendations(analytics["recommendations"])
        return 0
    finally:
        await manager.shutdown()


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nApplication terminated by user")
    except Exception as e:
        logger.error(f"Unhandled exception: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    run()
