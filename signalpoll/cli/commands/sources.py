"""CLI commands for registering and inspecting polled sources."""

from __future__ import annotations

import argparse
import json
from pathlib import Path

from signalpoll.polling.config import SourceKind, get_default_interval

_KIND_CHOICES = [kind.value for kind in SourceKind]


def _parse_metadata(pairs: list[str] | None) -> dict[str, str]:
    metadata: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Metadata must be KEY=VALUE, got '{pair}'")
        metadata[key] = value
    return metadata


def register_commands(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    """Add sources subcommands to the main CLI parser."""

    sources_parser = subparsers.add_parser(
        "sources",
        description="Manage the sources the poller knows about.",
        help="Add, list, remove or reactivate sources.",
    )
    sources_subparsers = sources_parser.add_subparsers(
        dest="sources_command",
        metavar="SUBCOMMAND",
    )
    sources_subparsers.required = True

    def add_root_arg(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--state-root",
            type=Path,
            help="Root directory for source registry and poll state.",
        )

    add_parser = sources_subparsers.add_parser("add", help="Register a source.")
    add_root_arg(add_parser)
    add_parser.add_argument("--kind", choices=_KIND_CHOICES, required=True)
    add_parser.add_argument("--id", dest="source_id", required=True, help="Unique source id.")
    add_parser.add_argument("--url", help="Fetch URL.")
    add_parser.add_argument("--name", default="", help="Human-readable name.")
    add_parser.add_argument(
        "--interval",
        type=int,
        help="Poll interval in minutes (default depends on kind).",
    )
    add_parser.add_argument(
        "--meta",
        action="append",
        metavar="KEY=VALUE",
        help="Collaborator metadata, e.g. items_key=data.results (repeatable).",
    )
    add_parser.set_defaults(func=sources_add_cli, sources_command="add")

    list_parser = sources_subparsers.add_parser("list", help="List registered sources.")
    add_root_arg(list_parser)
    list_parser.add_argument("--kind", choices=_KIND_CHOICES)
    list_parser.add_argument("--status", choices=["active", "paused", "error", "disconnected"])
    list_parser.add_argument("--json", action="store_true", dest="output_json")
    list_parser.set_defaults(func=sources_list_cli, sources_command="list")

    remove_parser = sources_subparsers.add_parser(
        "remove",
        help="Delete a source and its poll history.",
    )
    add_root_arg(remove_parser)
    remove_parser.add_argument("--kind", choices=_KIND_CHOICES, required=True)
    remove_parser.add_argument("--id", dest="source_id", required=True)
    remove_parser.set_defaults(func=sources_remove_cli, sources_command="remove")

    reactivate_parser = sources_subparsers.add_parser(
        "reactivate",
        help="Return a source to active and clear its error history.",
    )
    add_root_arg(reactivate_parser)
    reactivate_parser.add_argument("--kind", choices=_KIND_CHOICES, required=True)
    reactivate_parser.add_argument("--id", dest="source_id", required=True)
    reactivate_parser.set_defaults(func=sources_reactivate_cli, sources_command="reactivate")


def sources_add_cli(args: argparse.Namespace) -> int:
    from signalpoll.polling import Source, SourceRegistry

    try:
        metadata = _parse_metadata(args.meta)
        source = Source(
            id=args.source_id,
            kind=SourceKind(args.kind),
            poll_interval_minutes=args.interval or get_default_interval(args.kind),
            url=args.url,
            name=args.name,
            metadata=metadata,
        )
    except ValueError as exc:
        print(f"Error: {exc}")
        return 1

    registry = SourceRegistry(root=args.state_root)
    if registry.source_exists(source.id, source.kind):
        print(f"Updating existing source {source.id}")
    registry.save_source(source)
    print(f"Registered {source.kind.value} source {source.id} (every {source.poll_interval_minutes} min)")
    return 0


def sources_list_cli(args: argparse.Namespace) -> int:
    from signalpoll.polling import SourceRegistry

    registry = SourceRegistry(root=args.state_root)
    sources = registry.list_sources(kind=args.kind, status=args.status)

    if args.output_json:
        print(json.dumps([s.to_dict() for s in sources], indent=2))
        return 0

    if not sources:
        print("No sources registered.")
        return 0
    for source in sources:
        print(f"{source.kind.value:<9} {source.status:<12} {source.id}  {source.display_name}")
    return 0


def sources_remove_cli(args: argparse.Namespace) -> int:
    from signalpoll.polling import PollStateStore
    from signalpoll.polling.state import delete_source_and_state

    store = PollStateStore(root=args.state_root)
    if not delete_source_and_state(store, args.source_id, args.kind):
        print(f"No {args.kind} source with id {args.source_id}")
        return 1
    print(f"Removed {args.kind} source {args.source_id}")
    return 0


def sources_reactivate_cli(args: argparse.Namespace) -> int:
    from signalpoll.polling import PollStateStore
    from signalpoll.polling.state import reactivate_source

    store = PollStateStore(root=args.state_root)
    if not reactivate_source(store, args.source_id, args.kind):
        print(f"No {args.kind} source with id {args.source_id}")
        return 1
    print(f"Reactivated {args.kind} source {args.source_id}")
    return 0
