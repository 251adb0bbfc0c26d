"""Command-line interface for the knowledge store.

Provides subcommands for every store operation plus direct tool calls.
Output is JSON unless stated otherwise.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from .config import load_config
from .errors import MemhubError, ValidationError
from .logging import JSONLLogger
from .memory import KnowledgeManager, KnowledgeStore, knowledge_tools
from .memory.models import KNOWN_SOURCES, KnowledgeEntry, MemoryType
from .tools import ToolRegistry

COMPACT_CONTENT_LENGTH = 120


def _get_manager() -> KnowledgeManager:
    """Create a KnowledgeManager from the loaded configuration."""
    config = load_config()
    store = KnowledgeStore(config.db_path, timeout=config.db_timeout)
    store.init_db(retries=config.init_retries, retry_delay=config.init_retry_delay)
    return KnowledgeManager(
        store, policy=config.policy, event_log=JSONLLogger(config.log_dir)
    )


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def format_compact(entry: KnowledgeEntry) -> str:
    """One-line summary used by shell hooks.

    Example:
        [2026-01-31 14:05] cpg:website | pricing: New plan costs 49 EUR
    """
    time = entry.created_at.strftime("%Y-%m-%d %H:%M")
    user = f"{entry.user_id}:" if entry.user_id and entry.user_id != "unknown" else ""
    content = entry.content
    if len(content) > COMPACT_CONTENT_LENGTH:
        content = content[: COMPACT_CONTENT_LENGTH - 3] + "..."
    return f"[{time}] {user}{entry.source} | {entry.topic}: {content}"


def cmd_init(args: argparse.Namespace) -> int:
    """Create the database schema and reclassify default entries."""
    manager = _get_manager()
    try:
        changed = manager.reclassify()
    finally:
        manager.close()
    _print_json({"db_path": str(manager.store.db_path), "reclassified": changed})
    return 0


def cmd_save(args: argparse.Namespace) -> int:
    """Save an entry."""
    manager = _get_manager()
    try:
        entry_id = manager.save(
            args.topic,
            args.content,
            args.source,
            tags=args.tag,
            confidence=args.confidence,
            user_id=args.user,
            memory_type=args.memory_type,
        )
    finally:
        manager.close()
    _print_json({"id": entry_id, "message": "Saved"})
    return 0


def cmd_search(args: argparse.Namespace) -> int:
    """Search entries."""
    manager = _get_manager()
    try:
        results = manager.search(
            args.query, source=args.source, tags=args.tag, limit=args.limit
        )
    finally:
        manager.close()
    _print_json({"results": [r.to_dict() for r in results], "count": len(results)})
    return 0


def cmd_recent(args: argparse.Namespace) -> int:
    """List recently created entries."""
    manager = _get_manager()
    try:
        changes = manager.recent_changes(
            hours=args.hours, source=args.source, limit=args.limit
        )
    finally:
        manager.close()

    if args.compact:
        print("\n".join(format_compact(c) for c in changes) or "No recent changes")
        return 0

    _print_json({"changes": [c.to_dict() for c in changes], "count": len(changes)})
    return 0


def cmd_topics(args: argparse.Namespace) -> int:
    """List topics."""
    manager = _get_manager()
    try:
        topics = manager.list_topics(source=args.source)
    finally:
        manager.close()
    _print_json({"topics": [t.to_dict() for t in topics], "count": len(topics)})
    return 0


def cmd_delete(args: argparse.Namespace) -> int:
    """Delete an entry by id."""
    manager = _get_manager()
    try:
        deleted = manager.delete(args.id)
    finally:
        manager.close()
    _print_json({"message": "Deleted" if deleted else "Not found", "id": args.id})
    return 0 if deleted else 1


def cmd_health(args: argparse.Namespace) -> int:
    """Print the health report."""
    manager = _get_manager()
    try:
        report = manager.health_report()
    finally:
        manager.close()
    _print_json(report.to_dict())
    return 0


def cmd_duplicates(args: argparse.Namespace) -> int:
    """List near-duplicate pairs."""
    manager = _get_manager()
    try:
        pairs = manager.find_duplicates(args.threshold)
    finally:
        manager.close()
    _print_json({"pairs": [p.to_dict() for p in pairs], "count": len(pairs)})
    return 0


def cmd_merge(args: argparse.Namespace) -> int:
    """Merge two entries."""
    manager = _get_manager()
    try:
        success = manager.merge(args.keep_id, args.delete_id, args.content)
    finally:
        manager.close()
    _print_json(
        {
            "message": "Merged successfully" if success else "One or both entries not found",
            "keep_id": args.keep_id,
            "delete_id": args.delete_id,
            "success": success,
        }
    )
    return 0 if success else 1


def cmd_prune(args: argparse.Namespace) -> int:
    """Sweep stale entries (dry run unless --apply)."""
    manager = _get_manager()
    try:
        result = manager.prune(dry_run=not args.apply)
    finally:
        manager.close()
    _print_json(result.to_dict())
    return 0


def _build_registry(manager: KnowledgeManager) -> ToolRegistry:
    registry = ToolRegistry(event_log=manager.event_log)
    for tool in knowledge_tools(manager):
        registry.register(tool)
    return registry


def cmd_tools(args: argparse.Namespace) -> int:
    """Print the schemas of all knowledge tools."""
    manager = _get_manager()
    try:
        _print_json(_build_registry(manager).get_tools_schema())
    finally:
        manager.close()
    return 0


def cmd_call(args: argparse.Namespace) -> int:
    """Call a tool by name with JSON arguments."""
    try:
        tool_args = json.loads(args.arguments)
    except json.JSONDecodeError as e:
        print(f"Error: arguments are not valid JSON: {e}")
        return 1
    if not isinstance(tool_args, dict):
        print("Error: arguments must be a JSON object")
        return 1

    manager = _get_manager()
    try:
        result = asyncio.run(_build_registry(manager).dispatch(args.name, tool_args))
    finally:
        manager.close()

    if not result.success:
        print(f"Error: {result.error}")
        return 1
    print(result.output)
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="memhub",
        description="Shared knowledge store with retention lifecycle",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    init_parser = subparsers.add_parser("init", help="Create the database")
    init_parser.set_defaults(func=cmd_init)

    save_parser = subparsers.add_parser("save", help="Save knowledge")
    save_parser.add_argument("topic", help="Topic category")
    save_parser.add_argument("content", help="The knowledge to save")
    save_parser.add_argument(
        "-s", "--source", required=True, choices=KNOWN_SOURCES, help="Producing project"
    )
    save_parser.add_argument(
        "-t", "--tag", action="append", help="Tag (repeatable)"
    )
    save_parser.add_argument(
        "-c", "--confidence", type=float, default=1.0, help="Confidence 0-1"
    )
    save_parser.add_argument("-u", "--user", default="unknown", help="Developer id")
    save_parser.add_argument(
        "-m",
        "--memory-type",
        choices=[t.value for t in MemoryType],
        help="Decay class (auto-classified if omitted)",
    )
    save_parser.set_defaults(func=cmd_save)

    search_parser = subparsers.add_parser("search", help="Search knowledge")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument("-s", "--source", help="Filter by source")
    search_parser.add_argument("-t", "--tag", action="append", help="Filter by tag")
    search_parser.add_argument("-n", "--limit", type=int, default=10, help="Max results")
    search_parser.set_defaults(func=cmd_search)

    recent_parser = subparsers.add_parser("recent", help="Recent changes")
    recent_parser.add_argument("--hours", type=float, default=48, help="Look back N hours")
    recent_parser.add_argument("-s", "--source", help="Filter by source")
    recent_parser.add_argument("-n", "--limit", type=int, default=20, help="Max results")
    recent_parser.add_argument(
        "--compact", action="store_true", help="One line per entry"
    )
    recent_parser.set_defaults(func=cmd_recent)

    topics_parser = subparsers.add_parser("topics", help="List topics")
    topics_parser.add_argument("-s", "--source", help="Filter by source")
    topics_parser.set_defaults(func=cmd_topics)

    delete_parser = subparsers.add_parser("delete", help="Delete an entry")
    delete_parser.add_argument("id", type=int, help="Entry id")
    delete_parser.set_defaults(func=cmd_delete)

    health_parser = subparsers.add_parser("health", help="Health report")
    health_parser.set_defaults(func=cmd_health)

    dup_parser = subparsers.add_parser("duplicates", help="Find near-duplicates")
    dup_parser.add_argument(
        "--threshold", type=float, default=0.6, help="Similarity threshold 0.3-0.95"
    )
    dup_parser.set_defaults(func=cmd_duplicates)

    merge_parser = subparsers.add_parser("merge", help="Merge two entries")
    merge_parser.add_argument("keep_id", type=int, help="Entry to keep")
    merge_parser.add_argument("delete_id", type=int, help="Entry to fold in and delete")
    merge_parser.add_argument("--content", help="Replacement content")
    merge_parser.set_defaults(func=cmd_merge)

    prune_parser = subparsers.add_parser("prune", help="Sweep stale entries")
    prune_parser.add_argument(
        "--apply", action="store_true", help="Actually delete (default: dry run)"
    )
    prune_parser.set_defaults(func=cmd_prune)

    tools_parser = subparsers.add_parser("tools", help="Print tool schemas")
    tools_parser.set_defaults(func=cmd_tools)

    call_parser = subparsers.add_parser("call", help="Call a tool")
    call_parser.add_argument("name", help="Tool name")
    call_parser.add_argument(
        "arguments", nargs="?", default="{}", help="Tool arguments as a JSON object"
    )
    call_parser.set_defaults(func=cmd_call)

    return parser


def run_cli(argv: list[str] | None = None) -> int:
    """Run the CLI.

    Args:
        argv: Command-line arguments (without program name).

    Returns:
        Exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except MemhubError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
