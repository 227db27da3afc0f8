"""RSS/Atom feed fetcher.

Downloads a feed with ``requests``, parses it with ``feedparser`` and reduces
each entry to a small canonical record so that re-fetching an unchanged feed
yields an identical payload (and therefore an identical content hash).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, List

import feedparser
import requests
from bs4 import BeautifulSoup

from signalpoll.errors import FetchError, ParseError
from signalpoll.polling.state import Source

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_SUMMARY_LIMIT = 500


def _clean_text(value: str | None) -> str:
    """Strip markup and collapse whitespace."""
    if not value:
        return ""
    if "<" in value:
        value = BeautifulSoup(value, "html.parser").get_text(" ")
    return _WHITESPACE.sub(" ", value).strip()


def canonicalize_entries(entries: List[Any]) -> List[dict[str, str]]:
    """Reduce feedparser entries to stable, sorted item records.

    Entries without a title and a link are dropped. Items are keyed by their
    guid when the feed provides one, otherwise by link, and sorted by that
    key so feed reordering does not register as a change.
    """
    items: dict[str, dict[str, str]] = {}
    for entry in entries:
        title = _clean_text(entry.get("title"))
        link = (entry.get("link") or "").strip()
        if not title and not link:
            continue
        key = (entry.get("id") or link or title).strip()
        items[key] = {
            "id": key,
            "title": title,
            "link": link,
            "published": (entry.get("published") or entry.get("updated") or "").strip(),
            "summary": _clean_text(entry.get("summary") or entry.get("description"))[:_SUMMARY_LIMIT],
        }
    return [items[key] for key in sorted(items)]


def parse_feed(content: bytes | str) -> List[dict[str, str]]:
    """Parse raw feed content into canonical items.

    Raises:
        ParseError: If the document is not a feed at all.
    """
    feed = feedparser.parse(content)
    if feed.bozo and not feed.entries:
        reason = getattr(feed, "bozo_exception", None)
        raise ParseError(f"Could not parse feed: {reason or 'no entries'}")
    return canonicalize_entries(feed.entries)


@dataclass(slots=True)
class FeedFetcher:
    """Fetcher for :attr:`SourceKind.FEED` sources."""

    user_agent: str = "signalpoll/0.1 (RSS Reader)"
    session: requests.Session | None = None

    def fetch(self, source: Source, timeout: float) -> List[dict[str, str]]:
        if not source.url:
            raise FetchError(f"Feed source {source.id} has no URL")

        http = self.session or requests
        try:
            response = http.get(
                source.url,
                timeout=timeout,
                headers={"User-Agent": self.user_agent},
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise FetchError(f"Failed to fetch feed '{source.url}': {e}") from e

        items = parse_feed(response.content)
        logger.debug("Parsed %d items from %s", len(items), source.url)
        return items
