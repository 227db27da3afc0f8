"""Fetch/process collaborators for each source kind."""

from __future__ import annotations

from pathlib import Path

from signalpoll.polling.config import SourceKind
from signalpoll.polling.poller import Fetcher, Processor

from .feeds import FeedFetcher
from .http_api import JsonApiFetcher
from .inbox import InboxProcessor

_FETCHERS: dict[SourceKind, type] = {
    SourceKind.FEED: FeedFetcher,
    SourceKind.RESEARCH: JsonApiFetcher,
    SourceKind.EVENT: JsonApiFetcher,
    SourceKind.CALENDAR: JsonApiFetcher,
}


def build_collaborators(
    kind: SourceKind | str,
    root: Path | None = None,
) -> tuple[Fetcher, Processor]:
    """Return the default ``(fetcher, processor)`` pair for a source kind."""
    fetcher_cls = _FETCHERS[SourceKind(kind)]
    return fetcher_cls(), InboxProcessor(root=root)


__all__ = [
    "build_collaborators",
    "FeedFetcher",
    "InboxProcessor",
    "JsonApiFetcher",
]
