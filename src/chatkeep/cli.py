"""
Command-line interface for chatkeep.

Sub-commands
------------
sessions     – List saved sessions.
show         – Print a saved session's messages.
search       – Search a saved session's messages.
stats        – Print analytics for a saved session.
export       – Export a saved session (json, markdown, text, csv).
backup       – Write a timestamped backup of a saved session.
delete       – Delete a saved session.
last         – Print the name of the most recently modified session.
memory-stats – Print vector store statistics.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import asdict

from .config import Settings, configure_logging
from .errors import ChatkeepError, ValidationError
from .models import SearchOptions
from .session import SessionStore
from .store import VectorMemoryStore


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatkeep",
        description="Inspect and manage saved chat sessions.",
    )
    parser.add_argument(
        "--save-dir",
        default=None,
        metavar="PATH",
        help="Directory holding session files (default: $CHATKEEP_SAVE_DIR or ./save).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Logging level (default: WARNING).",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    # sessions
    p_sessions = sub.add_parser("sessions", help="List saved sessions.")
    p_sessions.add_argument("--json", action="store_true", dest="as_json", help="Output as JSON.")

    # show
    p_show = sub.add_parser("show", help="Print a saved session.")
    p_show.add_argument("name", help="Session name.")
    p_show.add_argument(
        "--last",
        type=int,
        default=0,
        metavar="N",
        help="Only show the last N messages (default: all).",
    )

    # search
    p_search = sub.add_parser("search", help="Search a saved session.")
    p_search.add_argument("name", help="Session name.")
    p_search.add_argument("query", help="Text to look for.")
    p_search.add_argument("--role", choices=["user", "assistant"], default=None)
    p_search.add_argument("--case-sensitive", action="store_true")
    p_search.add_argument("--exact", action="store_true", help="Match whole message content.")
    p_search.add_argument("--from-date", default=None, metavar="ISO8601")
    p_search.add_argument("--to-date", default=None, metavar="ISO8601")

    # stats
    p_stats = sub.add_parser("stats", help="Print analytics for a saved session.")
    p_stats.add_argument("name", help="Session name.")

    # export
    p_export = sub.add_parser("export", help="Export a saved session.")
    p_export.add_argument("name", help="Session name.")
    p_export.add_argument(
        "--format",
        default="json",
        choices=["json", "markdown", "md", "text", "txt", "csv"],
        help="Export format (default: json).",
    )
    p_export.add_argument("--output", default=None, metavar="FILE", help="Output file name.")

    # backup
    p_backup = sub.add_parser("backup", help="Back up a saved session.")
    p_backup.add_argument("name", help="Session name.")

    # delete
    p_delete = sub.add_parser("delete", help="Delete a saved session.")
    p_delete.add_argument("name", help="Session name.")

    # last
    sub.add_parser("last", help="Print the most recently modified session name.")

    # memory-stats
    sub.add_parser("memory-stats", help="Print vector store statistics.")

    return parser


async def _loaded(settings: Settings, name: str) -> SessionStore:
    store = SessionStore(settings)
    await store.load(name)
    return store


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    if args.command == "sessions":
        sessions = await SessionStore(settings).list_available_sessions()
        if not sessions:
            print("No saved sessions found.")
            return 0
        if args.as_json:
            print(json.dumps([asdict(s) for s in sessions], indent=2))
            return 0
        for s in sessions:
            if s.error:
                print(f"{s.name}  (error: {s.error})")
            else:
                print(f"{s.name}  messages={s.message_count}  original={s.original_name}")

    elif args.command == "show":
        store = await _loaded(settings, args.name)
        for m in store.history(args.last):
            print(f"[{m.timestamp}] {m.role}: {m.content}")

    elif args.command == "search":
        store = await _loaded(settings, args.name)
        options = SearchOptions(
            role=args.role,
            case_sensitive=args.case_sensitive,
            exact_match=args.exact,
            from_date=args.from_date,
            to_date=args.to_date,
        )
        results = store.search(args.query, options)
        if not results:
            print("No matching messages.")
            return 0
        for m in results:
            print(f"[{m.timestamp}] {m.role}: {m.content[:200]}")

    elif args.command == "stats":
        store = await _loaded(settings, args.name)
        print(json.dumps(store.analytics().to_dict(), indent=2))

    elif args.command == "export":
        store = await _loaded(settings, args.name)
        path = await store.export_conversation(args.format, args.output)
        print(f"Exported to {path}")

    elif args.command == "backup":
        store = await _loaded(settings, args.name)
        path = await store.create_backup()
        print(f"Backup written to {path}" if path else "Nothing to back up.")

    elif args.command == "delete":
        await SessionStore(settings).delete_session(args.name)
        print(f"Deleted session {args.name}.")

    elif args.command == "last":
        name = await SessionStore(settings).get_last_modified_session()
        print(name if name else "No sessions found.")

    elif args.command == "memory-stats":
        stats = await VectorMemoryStore(settings=settings).get_stats()
        print(json.dumps(stats, indent=2))

    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        settings = Settings.from_env()
        if args.save_dir:
            settings = settings.with_save_dir(args.save_dir)
        try:
            configure_logging((args.log_level or "WARNING").upper())
        except ValueError as exc:
            raise ValidationError(f"Invalid log level: {args.log_level!r}") from exc
        return asyncio.run(_run(args, settings))
    except ChatkeepError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
