"""Single-source poll attempt: fetch, detect change, process, record.

Each attempt walks the same states regardless of source kind:

    IDLE -> FETCHING -> SUCCESS | FAILURE -> RECORDED -> IDLE

The kind-specific parts are two collaborators handed to :class:`SourcePoller`:
a :class:`Fetcher` that returns a canonical payload and a :class:`Processor`
that handles payloads whose fingerprint changed. Everything else (backoff,
fingerprint bookkeeping, stale-source detection) lives here once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from signalpoll.errors import FetchError, ProcessingError, SignalPollError

from .backoff import calculate_next_poll
from .change import detect_change
from .config import PollerConfig, SourceKind
from .state import PollState, PollStateStore, Source

logger = logging.getLogger(__name__)


class Fetcher(Protocol):
    """Fetches one source and returns its canonicalized content."""

    def fetch(self, source: Source, timeout: float) -> Any:
        ...


class Processor(Protocol):
    """Handles content that changed since the previous poll.

    Returns the number of items it accepted.
    """

    def process(self, source: Source, payload: Any) -> int:
        ...


@dataclass
class PollOutcome:
    """Typed result of one poll attempt.

    Attributes:
        source_id: The polled source.
        kind: Its kind.
        status: "changed", "unchanged" or "error".
        content_hash: Fingerprint of the fetched payload (None on error).
        items_processed: Items the processor accepted (0 when unchanged).
        error: Captured failure message.
        consecutive_errors: Error count after this attempt.
        next_poll_at: When the source is due again.
        marked_stale: True if this attempt moved the source to ``error``.
    """

    source_id: str
    kind: SourceKind
    status: str  # "changed" | "unchanged" | "error"
    next_poll_at: datetime
    content_hash: str | None = None
    items_processed: int = 0
    error: str | None = None
    consecutive_errors: int = 0
    marked_stale: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status != "error"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.source_id,
            "kind": self.kind.value,
            "status": self.status,
            "content_hash": self.content_hash,
            "items_processed": self.items_processed,
            "error": self.error,
            "consecutive_errors": self.consecutive_errors,
            "next_poll_at": self.next_poll_at.isoformat(),
            "marked_stale": self.marked_stale,
        }


def _error_message(error: BaseException) -> str:
    return str(error) or type(error).__name__


class SourcePoller:
    """Runs poll attempts for sources of one kind.

    Usage:
        poller = SourcePoller(store, FeedFetcher(), InboxProcessor())
        outcome = poller.poll(source)
    """

    def __init__(
        self,
        store: PollStateStore,
        fetcher: Fetcher,
        processor: Processor,
        config: PollerConfig | None = None,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.processor = processor
        self.config = config or PollerConfig()

    def poll(self, source: Source, now: datetime | None = None) -> PollOutcome:
        """Run one attempt for ``source`` and record its state.

        Collaborator failures never escape: they are recorded on the
        source's poll state and reported through the returned outcome.

        Args:
            source: The source to poll.
            now: Attempt time. Defaults to the current UTC time.

        Returns:
            PollOutcome describing what happened.
        """
        now = now or datetime.now(timezone.utc)
        previous = self.store.get(source.id, source.kind)
        previous_hash = previous.last_content_hash if previous else None

        logger.debug("Fetching %s source %s", source.kind.value, source.display_name)
        try:
            payload = self._fetch(source)
            change = detect_change(payload, previous_hash)
            items = 0
            if change.changed and not self.config.dry_run:
                items = self._process(source, payload)
        except SignalPollError as e:
            return self._record_failure(source, previous, now, _error_message(e))

        return self._record_success(source, now, change.content_hash, change.changed, items)

    def _fetch(self, source: Source) -> Any:
        try:
            return self.fetcher.fetch(source, timeout=self.config.fetch_timeout_seconds)
        except SignalPollError:
            raise
        except Exception as e:
            raise FetchError(f"{type(e).__name__}: {e}") from e

    def _process(self, source: Source, payload: Any) -> int:
        try:
            return int(self.processor.process(source, payload) or 0)
        except SignalPollError:
            raise
        except Exception as e:
            raise ProcessingError(f"{type(e).__name__}: {e}") from e

    def _record_success(
        self,
        source: Source,
        now: datetime,
        content_hash: str,
        changed: bool,
        items: int,
    ) -> PollOutcome:
        next_poll_at = calculate_next_poll(
            now,
            source.poll_interval_minutes,
            0,
            max(self.config.max_interval_minutes, source.poll_interval_minutes),
            self.config.jitter_minutes,
        )
        state = PollState(
            source_id=source.id,
            kind=source.kind,
            next_poll_at=next_poll_at,
            last_polled_at=now,
            last_content_hash=content_hash,
            consecutive_errors=0,
            last_error_message=None,
        )
        if not self.config.dry_run:
            self.store.upsert(state)

        if changed:
            logger.info("Change detected in %s (%d items)", source.display_name, items)
        else:
            logger.debug("No change in %s", source.display_name)

        return PollOutcome(
            source_id=source.id,
            kind=source.kind,
            status="changed" if changed else "unchanged",
            next_poll_at=next_poll_at,
            content_hash=content_hash,
            items_processed=items,
        )

    def _record_failure(
        self,
        source: Source,
        previous: PollState | None,
        now: datetime,
        message: str,
    ) -> PollOutcome:
        """Record a failed attempt and back the source off.

        The error counter grows and the next poll is pushed out by the capped
        backoff. ``last_content_hash`` keeps its previous value, so a payload
        that failed to process is treated as changed on the next success. At
        ``error_threshold`` consecutive failures an active source is marked
        ``error``.
        """
        errors = (previous.consecutive_errors if previous else 0) + 1
        next_poll_at = calculate_next_poll(
            now,
            source.poll_interval_minutes,
            errors,
            max(self.config.max_interval_minutes, source.poll_interval_minutes),
            self.config.jitter_minutes,
        )
        state = PollState(
            source_id=source.id,
            kind=source.kind,
            next_poll_at=next_poll_at,
            last_polled_at=now,
            last_content_hash=previous.last_content_hash if previous else None,
            consecutive_errors=errors,
            last_error_message=message,
        )

        marked_stale = False
        if not self.config.dry_run:
            self.store.upsert(state)
            if errors >= self.config.error_threshold and source.status != "error":
                marked_stale = self.store.registry.set_status(source.id, source.kind, "error")
                if marked_stale:
                    logger.warning(
                        "Source %s marked as error after %d consecutive failures",
                        source.display_name,
                        errors,
                    )

        logger.warning(
            "Error polling %s (attempt %d): %s",
            source.display_name,
            errors,
            message,
        )

        return PollOutcome(
            source_id=source.id,
            kind=source.kind,
            status="error",
            next_poll_at=next_poll_at,
            error=message,
            consecutive_errors=errors,
            marked_stale=marked_stale,
        )
