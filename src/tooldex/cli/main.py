"""Command-line entry point for indexing, retrieval and session upkeep."""

import argparse
import json
import logging
import sys
from typing import Any, Optional

from rich.console import Console
from rich.table import Table

from tooldex.config import DB_PATH, LOG_FILE, LOG_LEVEL
from tooldex.logger import setup_logging

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="tooldex",
        description="Semantic tool index with session-aware retrieval.",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help=f"SQLite database path (default: {DB_PATH})",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log at DEBUG level.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("index", help="Embed live tools missing from the index.")

    retrieve = subparsers.add_parser(
        "retrieve", help="Find tools for one or more capability descriptions."
    )
    retrieve.add_argument("descriptions", nargs="+", metavar="DESCRIPTION")
    retrieve.add_argument("-s", "--session", dest="session_id", default=None)
    retrieve.add_argument(
        "--server",
        dest="server_names",
        action="append",
        metavar="NAME",
        help="Limit results to a server (repeatable).",
    )
    retrieve.add_argument(
        "--group",
        dest="group_names",
        action="append",
        metavar="NAME",
        help="Limit results to a server group (repeatable).",
    )
    retrieve.add_argument("-k", "--top-k", dest="top_k", type=int, default=None)
    retrieve.add_argument(
        "--min-similarity", dest="min_similarity", type=float, default=None
    )

    execute = subparsers.add_parser("execute", help="Run a tool by its fingerprint.")
    execute.add_argument("fingerprint")
    execute.add_argument(
        "-p",
        "--params",
        default="{}",
        help="Tool parameters as a JSON object.",
    )

    status = subparsers.add_parser("status", help="Show index statistics.")
    status.add_argument(
        "--no-index",
        action="store_true",
        help="Skip indexing live tools before reporting.",
    )

    session = subparsers.add_parser("session", help="Inspect or clear a session.")
    session_sub = session.add_subparsers(dest="session_command", required=True)
    show = session_sub.add_parser("show", help="List tools delivered to a session.")
    show.add_argument("session_id")
    clear = session_sub.add_parser("clear", help="Forget a session.")
    clear.add_argument("session_id")

    gc = subparsers.add_parser("gc", help="Delete orphaned vectors.")
    gc.add_argument(
        "--clear-index",
        action="store_true",
        help="Also drop every indexed tool for the active model.",
    )

    return parser.parse_args(argv)


def _print_json(console: Console, payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def _show_session(ledger, session_id: str, console: Console) -> None:
    entries = ledger.history(session_id)
    if not entries:
        console.print(f"No history for session {session_id}.")
        return

    table = Table(title=f"Session {session_id} ({len(entries)} tools)")
    table.add_column("Tool", style="green")
    table.add_column("Fingerprint", style="cyan")
    table.add_column("Retrieved", style="dim")
    for entry in entries:
        table.add_row(
            entry.tool_name,
            entry.fingerprint,
            entry.retrieved_at[:19].replace("T", " "),
        )
    console.print(table)


def run(args: argparse.Namespace, console: Optional[Console] = None) -> int:
    """Execute a parsed command; returns the process exit code."""
    from tooldex.api.factory import build_recommender, build_service
    from tooldex.session.ledger import SessionLedger

    console = console or Console()

    if args.command == "session":
        ledger = SessionLedger(args.db_path or DB_PATH)
        ledger.init_db()
        if args.session_command == "show":
            _show_session(ledger, args.session_id, console)
        else:
            removed = ledger.clear(args.session_id)
            console.print(f"Removed {removed} entries from session {args.session_id}.")
        return 0

    recommender = build_recommender(db_path=args.db_path)
    auto_index = args.command in ("index", "retrieve") or (
        args.command == "status" and not args.no_index
    )
    try:
        report = recommender.initialize(auto_index=auto_index)

        if args.command == "index":
            _print_json(console, report.to_dict() if report else {})
            return 0

        if args.command == "status":
            _print_json(console, recommender.get_status())
            return 0

        if args.command == "gc":
            removed = recommender.clear_index() if args.clear_index else 0
            orphans = recommender.store.collect_orphans()
            console.print(f"Removed {removed} tools and {orphans} orphaned vectors.")
            return 0

        service = build_service(recommender)
        if args.command == "retrieve":
            service.top_k = args.top_k
            service.min_similarity = args.min_similarity
            payload = service.retrieve(
                args.descriptions,
                session_id=args.session_id,
                server_names=args.server_names,
                group_names=args.group_names,
            )
        else:
            try:
                parameters = json.loads(args.params)
            except json.JSONDecodeError as e:
                console.print(f"[red]Error:[/red] invalid --params JSON: {e}")
                return 2
            payload = service.execute(args.fingerprint, parameters)

        _print_json(console, payload)
        return 1 if payload.get("is_error") else 0
    finally:
        recommender.close()


def main() -> None:
    """Main entry point."""
    args = parse_args()
    setup_logging("DEBUG" if args.verbose else LOG_LEVEL, LOG_FILE)
    logger.debug("Running command %s", args.command)
    sys.exit(run(args))
