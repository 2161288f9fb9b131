"""
KnowledgeQuery CLI - index content and ask questions from the command line.

Usage:
    python -m knowledge_query [--json] [--log-level LEVEL] <command>

    python -m knowledge_query index <item_id> --owner OWNER --type TYPE (--text TEXT | --file PATH)
    python -m knowledge_query ask "<question>" --owner OWNER [--max-tokens N] [--temperature T]
                                  [--model NAME] [--max-context-tokens N] [--no-cache] [--force-fresh]
    python -m knowledge_query forget <item_id>
    python -m knowledge_query status [--owner OWNER]

Global Options:
    --json              Output as JSON for automation/scripting
    --log-level LEVEL   Override KNOWLEDGE_QUERY_LOG_LEVEL
"""

import sys
import asyncio
import argparse
import json
from pathlib import Path
from typing import Any, Dict

from .config import settings
from .context import ContentType
from .errors import KnowledgeQueryError
from .logging_config import setup_logging
from .pipeline import QueryOptions, build_orchestrator


def safe_print(text: str, file=None) -> None:
    """Print text safely, handling Unicode encoding errors on Windows."""
    output = file or sys.stdout
    try:
        print(text, file=output)
    except UnicodeEncodeError:
        encoding = output.encoding or 'utf-8'
        safe_text = text.encode(encoding, errors='replace').decode(encoding, errors='replace')
        print(safe_text, file=output)


async def run_index(args: argparse.Namespace) -> Dict[str, Any]:
    """Index one item's raw text."""
    if args.file:
        text = Path(args.file).read_text(encoding="utf-8")
    else:
        text = args.text

    orchestrator = await build_orchestrator()
    try:
        return await orchestrator.index_item(args.item_id, args.owner, args.type, text)
    finally:
        await orchestrator.close()


async def run_ask(args: argparse.Namespace) -> Dict[str, Any]:
    """Answer a question for one owner."""
    options = QueryOptions.from_settings(
        settings,
        max_tokens=args.max_tokens,
        temperature=args.temperature,
        model=args.model,
        max_context_tokens=args.max_context_tokens,
        cache_enabled=not args.no_cache,
        force_fresh=args.force_fresh,
    )

    orchestrator = await build_orchestrator()
    try:
        result = await orchestrator.run_query(args.owner, args.query, options)
    finally:
        await orchestrator.close()

    return {
        "answer": result.answer,
        "outcome": result.outcome.value,
        "attempts": result.attempts,
    }


async def run_forget(args: argparse.Namespace) -> Dict[str, Any]:
    """Remove an item from the vector index."""
    orchestrator = await build_orchestrator()
    try:
        await orchestrator.remove_item(args.item_id)
    finally:
        await orchestrator.close()
    return {"item_id": args.item_id, "removed": True}


async def run_status(args: argparse.Namespace) -> Dict[str, Any]:
    """Report index size and the configured budgets."""
    orchestrator = await build_orchestrator()
    try:
        stored = await orchestrator.store.count(owner_id=args.owner)
        status = orchestrator.status()
    finally:
        await orchestrator.close()

    status["stored_items"] = stored
    status["owner"] = args.owner
    status["collection"] = settings.qdrant_collection
    return status


def format_status(status: Dict[str, Any]) -> str:
    quota = status["quota"]
    scope = f" for owner {status['owner']}" if status.get("owner") else ""
    lines = [
        f"Collection: {status['collection']}",
        f"Stored items{scope}: {status['stored_items']}",
        f"Daily token limit: {quota['daily_limit']} (used {quota['used']}, remaining {quota['remaining']})",
        f"Response cache entries: {status['response_cache']['size']}",
    ]
    return "\n".join(lines)


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="KnowledgeQuery CLI")

    # Global options
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("--log-level", default=None, help="Log level (default: from settings)")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # index command
    index_parser = subparsers.add_parser("index", help="Embed and store an item's text")
    index_parser.add_argument("item_id", help="External content id")
    index_parser.add_argument("--owner", required=True, help="Owner (user) id")
    index_parser.add_argument("--type", required=True,
                              choices=[t.value for t in ContentType] + ["youtube"],
                              help="Content type")
    source = index_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--text", help="Raw text of the item")
    source.add_argument("--file", help="Read raw text from this file")

    # ask command
    ask_parser = subparsers.add_parser("ask", help="Ask a question over an owner's content")
    ask_parser.add_argument("query", help="The question")
    ask_parser.add_argument("--owner", required=True, help="Owner (user) id")
    ask_parser.add_argument("--max-tokens", type=int, default=None, help="Output token budget")
    ask_parser.add_argument("--temperature", type=float, default=None, help="Sampling temperature")
    ask_parser.add_argument("--model", default=None, help="Generation model id")
    ask_parser.add_argument("--max-context-tokens", type=int, default=None,
                            help="Context token budget")
    ask_parser.add_argument("--no-cache", action="store_true", help="Disable response caching")
    ask_parser.add_argument("--force-fresh", action="store_true",
                            help="Skip cache lookups and always generate")

    # forget command
    forget_parser = subparsers.add_parser("forget", help="Remove an item from the index")
    forget_parser.add_argument("item_id", help="External content id")

    # status command
    status_parser = subparsers.add_parser("status", help="Show index size and budgets")
    status_parser.add_argument("--owner", default=None, help="Count only this owner's items")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_logging(args.log_level or settings.log_level, structured=settings.log_structured)

    commands = {
        "index": run_index,
        "ask": run_ask,
        "forget": run_forget,
        "status": run_status,
    }

    try:
        result = asyncio.run(commands[args.command](args))
    except (KnowledgeQueryError, OSError) as e:
        if args.json:
            print(json.dumps({"error": str(e)}))
        else:
            safe_print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps(result, default=str))
    elif args.command == "index":
        state = "Indexed" if result["indexed"] else "Skipped (embedding failed)"
        print(f"{state}: {result['item_id']}")
    elif args.command == "ask":
        safe_print(result["answer"])
    elif args.command == "forget":
        print(f"Removed: {result['item_id']}")
    else:
        print(format_status(result))


if __name__ == "__main__":
    main()
