"""CLI commands for the polling engine.

Commands:
- poll run: Poll every due source of one kind (the cron entry point)
- poll status: Show poll state and next scheduled polls for one kind
"""

from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from signalpoll.polling.config import SourceKind

_KIND_CHOICES = [kind.value for kind in SourceKind]


def register_commands(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    """Add poll subcommands to the main CLI parser."""

    poll_parser = subparsers.add_parser(
        "poll",
        description="Poll external sources for new content.",
        help="Run or inspect source polling.",
    )
    poll_subparsers = poll_parser.add_subparsers(
        dest="poll_command",
        metavar="SUBCOMMAND",
    )
    poll_subparsers.required = True

    def add_common_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--kind",
            choices=_KIND_CHOICES,
            required=True,
            help="Source kind to operate on.",
        )
        parser.add_argument(
            "--state-root",
            type=Path,
            help="Root directory for source registry and poll state.",
        )
        parser.add_argument(
            "--json",
            action="store_true",
            dest="output_json",
            help="Output results in JSON format.",
        )

    # poll run
    run_parser = poll_subparsers.add_parser(
        "run",
        description="Poll every due source of one kind.",
        help="Fetch due sources and record changes.",
    )
    add_common_args(run_parser)
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch and hash without processing or recording state.",
    )
    run_parser.add_argument(
        "--max-sources",
        type=int,
        default=None,
        help="Maximum sources to poll this run (default: 50).",
    )
    run_parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Sources polled in parallel (default: 1).",
    )
    run_parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    run_parser.set_defaults(func=poll_run_cli, poll_command="run")

    # poll status
    status_parser = poll_subparsers.add_parser(
        "status",
        description="Show poll state and upcoming polls for one kind.",
        help="Display source poll state.",
    )
    add_common_args(status_parser)
    status_parser.add_argument(
        "--due-only",
        action="store_true",
        help="Show only sources that are due now.",
    )
    status_parser.set_defaults(func=poll_status_cli, poll_command="status")


def poll_run_cli(args: argparse.Namespace) -> int:
    """Poll all due sources of the requested kind."""
    from signalpoll.config import get_config
    from signalpoll.polling import PollerConfig, PollStateStore, run_poll

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    config = PollerConfig.from_project_config(
        get_config(),
        max_sources_per_run=args.max_sources,
        max_workers=args.workers,
        dry_run=args.dry_run,
    )
    store = PollStateStore(root=args.state_root)

    if not args.output_json:
        print(f"Polling due {args.kind} sources...")
        if args.dry_run:
            print("  [DRY RUN - no changes will be made]")
        print()

    result = run_poll(args.kind, store=store, config=config)

    if args.output_json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        print(result.summary())
        failed = [item for item in result.items if item.status == "error"]
        if failed:
            print("\nErrors encountered:")
            for item in failed:
                print(f"  - {item.name}: {item.error}")

    return 0 if result.failed == 0 else 1


def poll_status_cli(args: argparse.Namespace) -> int:
    """Display poll state for every source of one kind."""
    from signalpoll.polling import PollStateStore

    store = PollStateStore(root=args.state_root)
    kind = SourceKind(args.kind)
    now = datetime.now(timezone.utc)
    due_ids = set(store.list_due(kind, now))

    sources = store.registry.list_sources(kind=kind)
    status = {
        "timestamp": now.isoformat(),
        "kind": kind.value,
        "total_sources": len(sources),
        "active_sources": sum(1 for s in sources if s.status == "active"),
        "due": len(due_ids),
        "sources": [],
    }

    for source in sources:
        state = store.get(source.id, kind)
        info = {
            "id": source.id,
            "name": source.display_name,
            "status": source.status,
            "interval_minutes": source.poll_interval_minutes,
            "is_due": source.id in due_ids,
            "last_polled_at": state.last_polled_at.isoformat() if state and state.last_polled_at else None,
            "next_poll_at": state.next_poll_at.isoformat() if state else None,
            "consecutive_errors": state.consecutive_errors if state else 0,
            "last_error": state.last_error_message if state else None,
        }
        status["sources"].append(info)

    if args.due_only:
        status["sources"] = [s for s in status["sources"] if s["is_due"]]

    if args.output_json:
        print(json.dumps(status, indent=2, default=str))
        return 0

    print(f"Poll status for {kind.value} sources as of {now.strftime('%Y-%m-%d %H:%M:%S UTC')}")
    print("=" * 60)
    print(f"Total sources: {status['total_sources']} ({status['active_sources']} active)")
    print(f"Due now: {status['due']}")
    print()

    for info in status["sources"]:
        marker = "*" if info["is_due"] else " "
        print(f"{marker} {info['name']} [{info['status']}]")
        if info["next_poll_at"]:
            print(f"    next poll: {info['next_poll_at']}")
        else:
            print("    never polled")
        if info["consecutive_errors"]:
            print(f"    errors: {info['consecutive_errors']} ({info['last_error']})")

    return 0
