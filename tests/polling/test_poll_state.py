"""Tests for signalpoll/polling/state.py."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from signalpoll.polling.config import SourceKind
from signalpoll.polling.state import (
    PollState,
    PollStateStore,
    Source,
    SourceRegistry,
    _id_hash,
    delete_source_and_state,
    reactivate_source,
)


NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def registry(tmp_path: Path) -> SourceRegistry:
    return SourceRegistry(root=tmp_path)


@pytest.fixture
def store(tmp_path: Path, registry: SourceRegistry) -> PollStateStore:
    return PollStateStore(root=tmp_path, registry=registry)


def _feed(source_id: str, status: str = "active", interval: int = 15) -> Source:
    return Source(
        id=source_id,
        kind=SourceKind.FEED,
        poll_interval_minutes=interval,
        status=status,
        url=f"https://example.com/{source_id}.xml",
        name=f"Feed {source_id}",
    )


# =============================================================================
# Source
# =============================================================================


class TestSource:
    """Tests for the Source dataclass."""

    def test_round_trip(self) -> None:
        source = Source(
            id="q-1",
            kind=SourceKind.RESEARCH,
            poll_interval_minutes=360,
            url="https://api.example.org/search",
            metadata={"items_key": "data", "params": {"q": "llm"}},
        )
        restored = Source.from_dict(json.loads(json.dumps(source.to_dict())))

        assert restored.id == "q-1"
        assert restored.kind is SourceKind.RESEARCH
        assert restored.metadata == {"items_key": "data", "params": {"q": "llm"}}
        assert restored.added_at == source.added_at

    def test_kind_string_is_coerced(self) -> None:
        source = Source(id="x", kind="calendar", poll_interval_minutes=30)
        assert source.kind is SourceKind.CALENDAR

    def test_invalid_status_rejected(self) -> None:
        with pytest.raises(ValueError):
            Source(id="x", kind=SourceKind.FEED, poll_interval_minutes=15, status="broken")

    def test_non_positive_interval_rejected(self) -> None:
        with pytest.raises(ValueError):
            Source(id="x", kind=SourceKind.FEED, poll_interval_minutes=0)

    def test_display_name_falls_back(self) -> None:
        assert Source(id="x", kind="feed", poll_interval_minutes=1).display_name == "x"
        assert Source(id="x", kind="feed", poll_interval_minutes=1, url="u").display_name == "u"


class TestSourceRegistry:
    """Tests for the file-backed source registry."""

    def test_save_and_get(self, registry: SourceRegistry) -> None:
        registry.save_source(_feed("a"))
        loaded = registry.get_source("a", SourceKind.FEED)

        assert loaded is not None
        assert loaded.name == "Feed a"

    def test_get_missing(self, registry: SourceRegistry) -> None:
        assert registry.get_source("missing", SourceKind.FEED) is None

    def test_same_id_different_kind_is_separate(self, registry: SourceRegistry) -> None:
        registry.save_source(_feed("shared"))
        registry.save_source(Source(id="shared", kind=SourceKind.EVENT, poll_interval_minutes=60))

        assert registry.get_source("shared", SourceKind.FEED).kind is SourceKind.FEED
        assert registry.get_source("shared", SourceKind.EVENT).kind is SourceKind.EVENT

    def test_list_filters(self, registry: SourceRegistry) -> None:
        registry.save_source(_feed("a"))
        registry.save_source(_feed("b", status="paused"))
        registry.save_source(Source(id="c", kind=SourceKind.EVENT, poll_interval_minutes=60))

        assert {s.id for s in registry.list_sources()} == {"a", "b", "c"}
        assert {s.id for s in registry.list_sources(kind=SourceKind.FEED)} == {"a", "b"}
        assert [s.id for s in registry.list_sources(kind="feed", status="active")] == ["a"]

    def test_list_skips_corrupt_files(self, registry: SourceRegistry, tmp_path: Path) -> None:
        registry.save_source(_feed("a"))
        (tmp_path / "sources" / "feed" / "garbage.json").write_text("{not json", encoding="utf-8")

        assert [s.id for s in registry.list_sources(kind=SourceKind.FEED)] == ["a"]

    def test_set_status(self, registry: SourceRegistry) -> None:
        registry.save_source(_feed("a"))

        assert registry.set_status("a", SourceKind.FEED, "error") is True
        assert registry.get_source("a", SourceKind.FEED).status == "error"

    def test_set_status_unknown_source(self, registry: SourceRegistry) -> None:
        assert registry.set_status("nope", SourceKind.FEED, "error") is False

    def test_set_status_rejects_invalid(self, registry: SourceRegistry) -> None:
        registry.save_source(_feed("a"))
        with pytest.raises(ValueError):
            registry.set_status("a", SourceKind.FEED, "exploded")

    def test_delete(self, registry: SourceRegistry) -> None:
        registry.save_source(_feed("a"))

        assert registry.delete_source("a", SourceKind.FEED) is True
        assert registry.delete_source("a", SourceKind.FEED) is False
        assert registry.source_exists("a", SourceKind.FEED) is False

    def test_file_named_by_id_hash(self, registry: SourceRegistry, tmp_path: Path) -> None:
        registry.save_source(_feed("https://weird/id?x=1"))
        expected = tmp_path / "sources" / "feed" / f"{_id_hash('https://weird/id?x=1')}.json"
        assert expected.exists()
        assert not list((tmp_path / "sources" / "feed").glob("*.tmp"))


# =============================================================================
# PollState
# =============================================================================


class TestPollState:
    """Tests for the PollState dataclass."""

    def test_round_trip(self) -> None:
        state = PollState(
            source_id="a",
            kind=SourceKind.FEED,
            next_poll_at=NOW + timedelta(minutes=30),
            last_polled_at=NOW,
            last_content_hash="abc",
            consecutive_errors=2,
            last_error_message="timeout",
        )
        restored = PollState.from_dict(state.to_dict())
        assert restored == state

    def test_never_polled_round_trip(self) -> None:
        state = PollState(source_id="a", kind=SourceKind.FEED, next_poll_at=NOW)
        restored = PollState.from_dict(state.to_dict())

        assert restored.last_polled_at is None
        assert restored.last_content_hash is None

    def test_error_message_requires_errors(self) -> None:
        """consecutive_errors == 0 implies no error message."""
        with pytest.raises(ValueError):
            PollState(
                source_id="a",
                kind=SourceKind.FEED,
                next_poll_at=NOW,
                consecutive_errors=0,
                last_error_message="stale",
            )

    def test_negative_errors_rejected(self) -> None:
        with pytest.raises(ValueError):
            PollState(source_id="a", kind=SourceKind.FEED, next_poll_at=NOW, consecutive_errors=-1)


class TestPollStateStore:
    """Tests for PollStateStore."""

    def test_get_missing(self, store: PollStateStore) -> None:
        assert store.get("a", SourceKind.FEED) is None

    def test_upsert_creates_and_replaces(self, store: PollStateStore) -> None:
        store.upsert(PollState(source_id="a", kind=SourceKind.FEED, next_poll_at=NOW))
        store.upsert(PollState(
            source_id="a",
            kind=SourceKind.FEED,
            next_poll_at=NOW + timedelta(minutes=15),
            last_content_hash="h1",
        ))

        state = store.get("a", SourceKind.FEED)
        assert state.last_content_hash == "h1"
        assert state.next_poll_at == NOW + timedelta(minutes=15)
        assert len(store.list_states(SourceKind.FEED)) == 1

    def test_corrupt_state_reads_as_missing(self, store: PollStateStore, tmp_path: Path) -> None:
        path = tmp_path / "poll_state" / "feed" / f"{_id_hash('a')}.json"
        path.parent.mkdir(parents=True)
        path.write_text("{", encoding="utf-8")

        assert store.get("a", SourceKind.FEED) is None

    def test_delete(self, store: PollStateStore) -> None:
        store.upsert(PollState(source_id="a", kind=SourceKind.FEED, next_poll_at=NOW))
        assert store.delete("a", SourceKind.FEED) is True
        assert store.delete("a", SourceKind.FEED) is False


class TestListDue:
    """Tests for due-source selection."""

    def test_never_polled_source_is_due(self, store: PollStateStore, registry: SourceRegistry) -> None:
        registry.save_source(_feed("a"))
        assert store.list_due(SourceKind.FEED, NOW) == ["a"]

    def test_past_and_exact_due_included(self, store: PollStateStore, registry: SourceRegistry) -> None:
        for source_id in ("past", "exact", "future"):
            registry.save_source(_feed(source_id))
        store.upsert(PollState(source_id="past", kind="feed", next_poll_at=NOW - timedelta(hours=1)))
        store.upsert(PollState(source_id="exact", kind="feed", next_poll_at=NOW))
        store.upsert(PollState(source_id="future", kind="feed", next_poll_at=NOW + timedelta(minutes=1)))

        assert set(store.list_due(SourceKind.FEED, NOW)) == {"past", "exact"}

    def test_only_active_sources(self, store: PollStateStore, registry: SourceRegistry) -> None:
        registry.save_source(_feed("active"))
        registry.save_source(_feed("paused", status="paused"))
        registry.save_source(_feed("error", status="error"))
        registry.save_source(_feed("gone", status="disconnected"))

        assert store.list_due(SourceKind.FEED, NOW) == ["active"]

    def test_only_requested_kind(self, store: PollStateStore, registry: SourceRegistry) -> None:
        registry.save_source(_feed("feed-1"))
        registry.save_source(Source(id="cal-1", kind=SourceKind.CALENDAR, poll_interval_minutes=30))

        assert store.list_due(SourceKind.CALENDAR, NOW) == ["cal-1"]

    def test_ordering_never_polled_then_most_overdue(
        self, store: PollStateStore, registry: SourceRegistry
    ) -> None:
        for source_id in ("recent", "new", "old"):
            registry.save_source(_feed(source_id))
        store.upsert(PollState(source_id="recent", kind="feed", next_poll_at=NOW - timedelta(minutes=5)))
        store.upsert(PollState(source_id="old", kind="feed", next_poll_at=NOW - timedelta(days=2)))

        assert store.list_due(SourceKind.FEED, NOW) == ["new", "old", "recent"]

    def test_claimed_sources_excluded(self, store: PollStateStore, registry: SourceRegistry) -> None:
        registry.save_source(_feed("a"))
        registry.save_source(_feed("b"))

        assert store.claim("a", SourceKind.FEED) is True
        assert store.list_due(SourceKind.FEED, NOW) == ["b"]

        store.release("a", SourceKind.FEED)
        assert set(store.list_due(SourceKind.FEED, NOW)) == {"a", "b"}


class TestClaims:
    """Tests for the per-source in-process lease."""

    def test_second_claim_fails(self, store: PollStateStore) -> None:
        assert store.claim("a", SourceKind.FEED) is True
        assert store.claim("a", SourceKind.FEED) is False

    def test_claims_are_per_kind(self, store: PollStateStore) -> None:
        assert store.claim("a", SourceKind.FEED) is True
        assert store.claim("a", SourceKind.EVENT) is True

    def test_release_allows_reclaim(self, store: PollStateStore) -> None:
        store.claim("a", SourceKind.FEED)
        store.release("a", SourceKind.FEED)
        assert store.claim("a", SourceKind.FEED) is True

    def test_release_unclaimed_is_harmless(self, store: PollStateStore) -> None:
        store.release("never", SourceKind.FEED)


def test_delete_source_and_state(store: PollStateStore, registry: SourceRegistry) -> None:
    """Deleting a source removes its poll history too."""
    registry.save_source(_feed("a"))
    store.upsert(PollState(source_id="a", kind="feed", next_poll_at=NOW))

    assert delete_source_and_state(store, "a", SourceKind.FEED) is True
    assert store.get("a", SourceKind.FEED) is None
    assert registry.get_source("a", SourceKind.FEED) is None


class TestReactivateSource:
    """Tests for returning a source to rotation."""

    def test_clears_error_history(self, store: PollStateStore, registry: SourceRegistry) -> None:
        registry.save_source(_feed("a", status="error"))
        store.upsert(PollState(
            source_id="a",
            kind="feed",
            next_poll_at=NOW + timedelta(hours=4),
            last_polled_at=NOW - timedelta(hours=1),
            last_content_hash="abc123",
            consecutive_errors=10,
            last_error_message="HTTP 503",
        ))

        assert reactivate_source(store, "a", SourceKind.FEED, now=NOW) is True

        state = store.get("a", SourceKind.FEED)
        assert state.consecutive_errors == 0
        assert state.last_error_message is None
        assert state.next_poll_at == NOW
        assert state.last_content_hash == "abc123"
        assert state.last_polled_at == NOW - timedelta(hours=1)
        assert registry.get_source("a", SourceKind.FEED).status == "active"
        assert store.list_due(SourceKind.FEED, NOW) == ["a"]

    def test_source_without_state(self, store: PollStateStore, registry: SourceRegistry) -> None:
        registry.save_source(_feed("a", status="paused"))

        assert reactivate_source(store, "a", SourceKind.FEED) is True
        assert store.get("a", SourceKind.FEED) is None
        assert registry.get_source("a", SourceKind.FEED).status == "active"

    def test_unknown_source(self, store: PollStateStore) -> None:
        assert reactivate_source(store, "missing", SourceKind.FEED) is False
