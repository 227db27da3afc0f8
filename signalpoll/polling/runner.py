"""Batch poll runner for one source kind.

This module provides the entry point the periodic trigger calls. It:
1. Lists the sources of a kind that are due
2. Polls each one through :class:`SourcePoller`, sequentially or with a
   bounded worker pool
3. Isolates per-source failures and aggregates them into a report

The same loop serves feeds, research queries, event sources and calendar
connections; only the fetch/process collaborators differ.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List

from .config import PollerConfig, SourceKind
from .poller import PollOutcome, SourcePoller
from .state import PollStateStore

logger = logging.getLogger(__name__)


@dataclass
class PollItemResult:
    """Per-source line of a batch report."""

    source_id: str
    name: str
    status: str  # "changed" | "unchanged" | "error" | "skipped"
    items_processed: int = 0
    consecutive_errors: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status in ("changed", "unchanged")

    @classmethod
    def from_outcome(cls, outcome: PollOutcome, name: str) -> "PollItemResult":
        return cls(
            source_id=outcome.source_id,
            name=name,
            status=outcome.status,
            items_processed=outcome.items_processed,
            consecutive_errors=outcome.consecutive_errors,
            error=outcome.error,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.source_id,
            "name": self.name,
            "status": self.status,
            "itemsProcessed": self.items_processed,
            "consecutiveErrors": self.consecutive_errors,
            "error": self.error,
        }


@dataclass
class PollRunResult:
    """Result of polling every due source of one kind.

    Attributes:
        kind: The source kind that was polled.
        started_at: When the run started.
        completed_at: When the run finished.
        dry_run: Whether state writes and processing were skipped.
        due: Number of due sources found before capping.
        items: Per-source results, in completion order.
    """

    kind: SourceKind
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None
    dry_run: bool = False
    due: int = 0
    items: List[PollItemResult] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return sum(1 for item in self.items if item.status != "skipped")

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.succeeded)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.items if item.status == "error")

    @property
    def changed(self) -> int:
        return sum(1 for item in self.items if item.status == "changed")

    @property
    def unchanged(self) -> int:
        return sum(1 for item in self.items if item.status == "unchanged")

    @property
    def duration_seconds(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the batch poll response shape."""
        return {
            "kind": self.kind.value,
            "sourcesProcessed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "changed": self.changed,
            "unchanged": self.unchanged,
            "due": self.due,
            "dryRun": self.dry_run,
            "durationSeconds": self.duration_seconds,
            "results": [item.to_dict() for item in self.items],
        }

    def summary(self) -> str:
        """Generate a human-readable summary."""
        lines = [
            f"Polled {self.processed} {self.kind.value} sources in {self.duration_seconds:.1f}s"
            + (" (dry run)" if self.dry_run else ""),
            f"  - Changed: {self.changed}",
            f"  - Unchanged: {self.unchanged}",
            f"  - Failed: {self.failed}",
        ]
        if self.due > self.processed:
            lines.append(f"  - Deferred to next run: {self.due - self.processed}")
        return "\n".join(lines)


class PollRunner:
    """Polls all due sources of one kind.

    Usage:
        runner = PollRunner(store, SourcePoller(store, fetcher, processor), config)
        result = runner.run()
    """

    def __init__(
        self,
        store: PollStateStore,
        poller: SourcePoller,
        config: PollerConfig | None = None,
    ) -> None:
        self.store = store
        self.poller = poller
        self.config = config or poller.config

    def run(self, kind: SourceKind | str, now: datetime | None = None) -> PollRunResult:
        """Poll every due source of ``kind``.

        Args:
            kind: Which source kind to poll.
            now: Reference time for due-ness and attempt timestamps.

        Returns:
            PollRunResult; failed sources are reported, never raised.
        """
        kind = SourceKind(kind)
        now = now or datetime.now(timezone.utc)
        result = PollRunResult(kind=kind, started_at=now, dry_run=self.config.dry_run)

        due_ids = self.store.list_due(kind, now)
        result.due = len(due_ids)
        batch = due_ids[: self.config.max_sources_per_run]
        logger.info(
            "Found %d due %s sources, polling %d",
            len(due_ids),
            kind.value,
            len(batch),
        )

        if self.config.max_workers == 1 or len(batch) <= 1:
            for source_id in batch:
                result.items.append(self._poll_one(source_id, kind, now))
        else:
            with ThreadPoolExecutor(
                max_workers=self.config.max_workers,
                thread_name_prefix=f"poll-{kind.value}",
            ) as pool:
                futures = [pool.submit(self._poll_one, source_id, kind, now) for source_id in batch]
                for future in futures:
                    result.items.append(future.result())

        result.completed_at = datetime.now(timezone.utc)
        logger.info(
            "Poll run complete: %d processed, %d changed, %d unchanged, %d failed",
            result.processed,
            result.changed,
            result.unchanged,
            result.failed,
        )
        return result

    def _poll_one(self, source_id: str, kind: SourceKind, now: datetime) -> PollItemResult:
        """Poll one source under its lease, converting any crash into a result."""
        if not self.store.claim(source_id, kind):
            logger.debug("Source %s already being polled, skipping", source_id)
            return PollItemResult(source_id=source_id, name=source_id, status="skipped")

        try:
            source = self.store.registry.get_source(source_id, kind)
            if source is None:
                return PollItemResult(
                    source_id=source_id,
                    name=source_id,
                    status="error",
                    error="Source no longer registered",
                )
            outcome = self.poller.poll(source, now=now)
            return PollItemResult.from_outcome(outcome, source.display_name)
        except Exception as e:
            logger.error("Exception polling %s: %s", source_id, e, exc_info=True)
            return PollItemResult(
                source_id=source_id,
                name=source_id,
                status="error",
                error=str(e) or type(e).__name__,
            )
        finally:
            self.store.release(source_id, kind)


def run_poll(
    kind: SourceKind | str,
    store: PollStateStore | None = None,
    config: PollerConfig | None = None,
    now: datetime | None = None,
) -> PollRunResult:
    """Poll due sources of ``kind`` with the default collaborators for it.

    Convenience wrapper used by the CLI and the batch poll handler.
    """
    from signalpoll.sources import build_collaborators

    config = config or PollerConfig()
    store = store or PollStateStore()
    fetcher, processor = build_collaborators(kind, root=store.root)
    poller = SourcePoller(store, fetcher, processor, config)
    return PollRunner(store, poller, config).run(kind, now=now)
