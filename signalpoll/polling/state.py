"""Storage for polled sources and their per-source polling history.

Two file-backed stores share one state root:

- :class:`SourceRegistry` holds the :class:`Source` records (cadence and
  status) that the scheduler reads.
- :class:`PollStateStore` holds one :class:`PollState` per
  ``(source_id, kind)`` and answers "which sources are due?".

Every write goes to a temporary file that is then renamed over the target,
so a reader never observes a half-written record and two pollers working on
different sources never interfere with each other.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List

from signalpoll import paths

from .config import SourceKind

logger = logging.getLogger(__name__)

SOURCE_STATUSES = ("active", "paused", "error", "disconnected")


def _id_hash(source_id: str) -> str:
    """Generate a consistent filename-safe hash for a source id."""
    return hashlib.sha256(source_id.encode("utf-8")).hexdigest()[:16]


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _atomic_write(path: Path, content: str) -> None:
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(content, encoding="utf-8")
    tmp_path.replace(path)


# =============================================================================
# Sources
# =============================================================================


@dataclass(slots=True)
class Source:
    """An external origin the engine polls.

    Sources are owned by whoever registers them; the engine only reads the
    cadence and status and moves a persistently failing source to ``error``.
    """

    id: str
    kind: SourceKind
    poll_interval_minutes: int
    status: str = "active"  # "active" | "paused" | "error" | "disconnected"
    url: str | None = None  # Fetch target, when the collaborator needs one
    name: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    added_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        self.kind = SourceKind(self.kind)
        if self.poll_interval_minutes <= 0:
            raise ValueError("poll_interval_minutes must be positive")
        if self.status not in SOURCE_STATUSES:
            raise ValueError(f"Invalid status: {self.status}. Must be one of {SOURCE_STATUSES}")

    @property
    def display_name(self) -> str:
        return self.name or self.url or self.id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "poll_interval_minutes": self.poll_interval_minutes,
            "status": self.status,
            "url": self.url,
            "name": self.name,
            "metadata": self.metadata,
            "added_at": self.added_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Source":
        return cls(
            id=payload["id"],
            kind=SourceKind(payload["kind"]),
            poll_interval_minutes=payload["poll_interval_minutes"],
            status=payload.get("status", "active"),
            url=payload.get("url"),
            name=payload.get("name", ""),
            metadata=payload.get("metadata", {}),
            added_at=_parse_datetime(payload.get("added_at")) or datetime.now(timezone.utc),
        )


class SourceRegistry:
    """Manages storage of polled sources, one JSON file per source."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = root or paths.get_state_root()
        self.root = self.root if self.root.is_absolute() else self.root.resolve()
        self._sources_dir = paths.ensure_directory(self.root / "sources")

    def _kind_dir(self, kind: SourceKind | str) -> Path:
        return self._sources_dir / SourceKind(kind).value

    def _get_source_path(self, source_id: str, kind: SourceKind | str) -> Path:
        return self._kind_dir(kind) / f"{_id_hash(source_id)}.json"

    def save_source(self, source: Source) -> None:
        """Save a source entry to storage."""
        paths.ensure_directory(self._kind_dir(source.kind))
        path = self._get_source_path(source.id, source.kind)
        _atomic_write(path, json.dumps(source.to_dict(), indent=2))

    def get_source(self, source_id: str, kind: SourceKind | str) -> Source | None:
        """Retrieve a source entry, or None if missing or unreadable."""
        path = self._get_source_path(source_id, kind)
        if not path.exists():
            return None

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return Source.from_dict(data)
        except (json.JSONDecodeError, KeyError, ValueError):
            logger.warning("Unreadable source record %s", path)
            return None

    def list_sources(
        self,
        kind: SourceKind | str | None = None,
        status: str | None = None,
    ) -> List[Source]:
        """List sources, optionally filtered by kind and status."""
        kinds = [SourceKind(kind)] if kind is not None else list(SourceKind)
        sources: List[Source] = []

        for k in kinds:
            kind_dir = self._kind_dir(k)
            if not kind_dir.exists():
                continue
            for path in sorted(kind_dir.glob("*.json")):
                try:
                    source = Source.from_dict(json.loads(path.read_text(encoding="utf-8")))
                except (json.JSONDecodeError, KeyError, ValueError):
                    logger.warning("Skipping unreadable source record %s", path)
                    continue
                if status is not None and source.status != status:
                    continue
                sources.append(source)

        return sources

    def set_status(self, source_id: str, kind: SourceKind | str, status: str) -> bool:
        """Change a source's status. Returns False if the source is unknown."""
        source = self.get_source(source_id, kind)
        if source is None:
            return False
        if status not in SOURCE_STATUSES:
            raise ValueError(f"Invalid status: {status}. Must be one of {SOURCE_STATUSES}")
        source.status = status
        self.save_source(source)
        return True

    def delete_source(self, source_id: str, kind: SourceKind | str) -> bool:
        """Delete a source entry. Returns True if deleted, False if not found."""
        path = self._get_source_path(source_id, kind)
        if not path.exists():
            return False
        path.unlink()
        return True

    def source_exists(self, source_id: str, kind: SourceKind | str) -> bool:
        return self._get_source_path(source_id, kind).exists()


# =============================================================================
# Poll state
# =============================================================================


@dataclass(slots=True)
class PollState:
    """Polling history for one source.

    Attributes:
        source_id: Id of the owning source.
        kind: Kind of the owning source.
        next_poll_at: Earliest time the source is due again.
        last_polled_at: When the last attempt happened, whatever its outcome.
        last_content_hash: Fingerprint of the last successfully fetched payload.
        consecutive_errors: Failures since the last success.
        last_error_message: Message of the most recent failure; always None
            when ``consecutive_errors`` is 0.
    """

    source_id: str
    kind: SourceKind
    next_poll_at: datetime
    last_polled_at: datetime | None = None
    last_content_hash: str | None = None
    consecutive_errors: int = 0
    last_error_message: str | None = None

    def __post_init__(self) -> None:
        self.kind = SourceKind(self.kind)
        if self.consecutive_errors < 0:
            raise ValueError("consecutive_errors cannot be negative")
        if self.consecutive_errors == 0 and self.last_error_message is not None:
            raise ValueError("last_error_message must be None when there are no errors")

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "kind": self.kind.value,
            "next_poll_at": self.next_poll_at.isoformat(),
            "last_polled_at": self.last_polled_at.isoformat() if self.last_polled_at else None,
            "last_content_hash": self.last_content_hash,
            "consecutive_errors": self.consecutive_errors,
            "last_error_message": self.last_error_message,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "PollState":
        return cls(
            source_id=payload["source_id"],
            kind=SourceKind(payload["kind"]),
            next_poll_at=datetime.fromisoformat(payload["next_poll_at"]),
            last_polled_at=_parse_datetime(payload.get("last_polled_at")),
            last_content_hash=payload.get("last_content_hash"),
            consecutive_errors=payload.get("consecutive_errors", 0),
            last_error_message=payload.get("last_error_message"),
        )


class PollStateStore:
    """Per-source poll state plus the due-source query.

    The store also hands out in-process leases (:meth:`claim` /
    :meth:`release`). A claimed source is excluded from :meth:`list_due` and
    cannot be claimed a second time, which keeps two workers of the same
    process from polling one source at once. Leases are not shared between
    processes; run one poller process per state root.
    """

    def __init__(
        self,
        root: Path | None = None,
        registry: SourceRegistry | None = None,
    ) -> None:
        self.root = root or paths.get_state_root()
        self.root = self.root if self.root.is_absolute() else self.root.resolve()
        self.registry = registry or SourceRegistry(root=self.root)
        self._state_dir = paths.ensure_directory(self.root / "poll_state")
        self._lock = threading.Lock()
        self._in_flight: set[tuple[str, SourceKind]] = set()

    def _get_state_path(self, source_id: str, kind: SourceKind | str) -> Path:
        return self._state_dir / SourceKind(kind).value / f"{_id_hash(source_id)}.json"

    def get(self, source_id: str, kind: SourceKind | str) -> PollState | None:
        """Load poll state for a source, or None if it was never polled."""
        path = self._get_state_path(source_id, kind)
        if not path.exists():
            return None

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return PollState.from_dict(data)
        except (json.JSONDecodeError, KeyError, ValueError):
            logger.warning("Unreadable poll state %s", path)
            return None

    def upsert(self, state: PollState) -> None:
        """Create or replace the poll state for ``state.source_id``."""
        path = self._get_state_path(state.source_id, state.kind)
        paths.ensure_directory(path.parent)
        _atomic_write(path, json.dumps(state.to_dict(), indent=2))

    def delete(self, source_id: str, kind: SourceKind | str) -> bool:
        path = self._get_state_path(source_id, kind)
        if not path.exists():
            return False
        path.unlink()
        return True

    def list_states(self, kind: SourceKind | str) -> List[PollState]:
        """All stored poll states for a kind, in no particular order."""
        kind_dir = self._state_dir / SourceKind(kind).value
        states: List[PollState] = []
        if not kind_dir.exists():
            return states
        for path in kind_dir.glob("*.json"):
            try:
                states.append(PollState.from_dict(json.loads(path.read_text(encoding="utf-8"))))
            except (json.JSONDecodeError, KeyError, ValueError):
                continue
        return states

    def list_due(self, kind: SourceKind | str, now: datetime) -> List[str]:
        """Ids of active sources of ``kind`` whose next poll time has passed.

        Never-polled sources are due immediately and come first; the rest
        are ordered by how long they have been overdue. Sources currently
        claimed by a worker are left out.
        """
        kind = SourceKind(kind)
        due: list[tuple[datetime | None, str]] = []

        for source in self.registry.list_sources(kind=kind, status="active"):
            with self._lock:
                if (source.id, kind) in self._in_flight:
                    continue
            state = self.get(source.id, kind)
            if state is None:
                due.append((None, source.id))
            elif state.next_poll_at <= now:
                due.append((state.next_poll_at, source.id))

        due.sort(key=lambda item: (item[0] is not None, item[0] or now))
        return [source_id for _, source_id in due]

    def claim(self, source_id: str, kind: SourceKind | str) -> bool:
        """Take the in-process lease on a source. False if already held."""
        key = (source_id, SourceKind(kind))
        with self._lock:
            if key in self._in_flight:
                return False
            self._in_flight.add(key)
            return True

    def release(self, source_id: str, kind: SourceKind | str) -> None:
        with self._lock:
            self._in_flight.discard((source_id, SourceKind(kind)))


def delete_source_and_state(store: PollStateStore, source_id: str, kind: SourceKind | str) -> bool:
    """Delete a source together with its poll history."""
    store.delete(source_id, kind)
    return store.registry.delete_source(source_id, kind)


def reactivate_source(
    store: PollStateStore,
    source_id: str,
    kind: SourceKind | str,
    now: datetime | None = None,
) -> bool:
    """Put a source back into rotation with a clean error history.

    The source is marked ``active`` and, if it has poll state, its error
    counter and message are cleared and it becomes due at ``now``. The last
    content hash and poll time are kept.

    Returns:
        False if no such source is registered.
    """
    if not store.registry.set_status(source_id, kind, "active"):
        return False
    state = store.get(source_id, kind)
    if state is not None:
        store.upsert(replace(
            state,
            next_poll_at=now or datetime.now(timezone.utc),
            consecutive_errors=0,
            last_error_message=None,
        ))
    logger.info("Reactivated %s source %s", SourceKind(kind).value, source_id)
    return True
