"""In-process tracking of per-user briefing pipeline runs.

The tracker is best-effort telemetry for polling clients, not the record of
whether a briefing was produced. Runs live in a :class:`RunStore`; the
default :class:`InMemoryRunStore` is a plain dict, so state is lost on
restart and is not shared between processes. A horizontally scaled
deployment needs a shared store (for example a TTL cache) behind the same
interface.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import lru_cache
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(minutes=10)


class PipelineStage(str, Enum):
    STARTING = "starting"
    INGESTING = "ingesting"
    ENRICHING = "enriching"
    SYNTHESIZING = "synthesizing"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STAGES = frozenset({PipelineStage.DONE, PipelineStage.FAILED})

STAGE_LABELS: dict[PipelineStage, str] = {
    PipelineStage.STARTING: "Starting pipeline...",
    PipelineStage.INGESTING: "Pulling latest sources...",
    PipelineStage.ENRICHING: "Enriching signals...",
    PipelineStage.SYNTHESIZING: "Writing your briefing...",
    PipelineStage.PERSISTING: "Saving briefing...",
    PipelineStage.DONE: "Briefing ready",
    PipelineStage.FAILED: "Pipeline failed",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PipelineRun:
    """Progress of one user's briefing generation."""

    user_id: str
    stage: PipelineStage
    started_at: datetime
    updated_at: datetime
    message: str | None = None
    briefing_id: str | None = None
    error: str | None = None
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def running(self) -> bool:
        return self.stage not in TERMINAL_STAGES

    def elapsed(self, now: datetime) -> timedelta:
        return now - self.started_at

    def to_status(self, now: datetime) -> dict[str, Any]:
        """Serialize to the status response shape."""
        return {
            "running": self.running,
            "stage": self.stage.value,
            "message": self.message,
            "elapsedMs": int(self.elapsed(now).total_seconds() * 1000),
            "briefingId": self.briefing_id,
            "error": self.error,
        }


class RunStore(Protocol):
    """Key-value storage for pipeline runs, keyed by user id."""

    def get(self, user_id: str) -> PipelineRun | None:
        ...

    def set(self, user_id: str, run: PipelineRun) -> None:
        ...

    def delete(self, user_id: str) -> None:
        ...


class InMemoryRunStore:
    """Process-local run store. Single-instance deployments only."""

    def __init__(self) -> None:
        self._runs: dict[str, PipelineRun] = {}

    def get(self, user_id: str) -> PipelineRun | None:
        return self._runs.get(user_id)

    def set(self, user_id: str, run: PipelineRun) -> None:
        self._runs[user_id] = run

    def delete(self, user_id: str) -> None:
        self._runs.pop(user_id, None)

    def __len__(self) -> int:
        return len(self._runs)


class PipelineStatusTracker:
    """Start, advance, read and clear per-user pipeline runs.

    All mutations happen under one lock, so each user's entry changes
    atomically. Finished runs not updated for ``ttl`` are dropped on access;
    a run that is still in progress is kept however long its stages take, so
    it keeps blocking :meth:`try_start`. Each run carries a ``run_id``; an
    :meth:`advance` naming a different id comes from a replaced run and is
    ignored.

    Usage:
        tracker = PipelineStatusTracker()
        tracker.start("user-1")
        tracker.advance("user-1", PipelineStage.SYNTHESIZING)
        tracker.read("user-1").running  # True
    """

    def __init__(
        self,
        store: RunStore | None = None,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store if store is not None else InMemoryRunStore()
        self._ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()

    def _live(self, user_id: str, now: datetime) -> PipelineRun | None:
        """Return the stored run unless it finished and expired. Caller holds the lock."""
        run = self._store.get(user_id)
        if run is None:
            return None
        if not run.running and now - run.updated_at > self._ttl:
            logger.debug("Expiring stale pipeline run for %s", user_id)
            self._store.delete(user_id)
            return None
        return run

    def _new_run(self, user_id: str, now: datetime) -> PipelineRun:
        run = PipelineRun(
            user_id=user_id,
            stage=PipelineStage.STARTING,
            started_at=now,
            updated_at=now,
            message=STAGE_LABELS[PipelineStage.STARTING],
        )
        self._store.set(user_id, run)
        return replace(run)

    def start(self, user_id: str) -> PipelineRun:
        """Install a fresh ``starting`` run, replacing any existing one."""
        with self._lock:
            return self._new_run(user_id, self._clock())

    def try_start(self, user_id: str) -> PipelineRun | None:
        """Start a run unless one is already in progress for this user.

        Returns:
            The new run, or None if a non-terminal run exists.
        """
        with self._lock:
            now = self._clock()
            existing = self._live(user_id, now)
            if existing is not None and existing.running:
                return None
            return self._new_run(user_id, now)

    def advance(
        self,
        user_id: str,
        stage: PipelineStage | str,
        message: str | None = None,
        briefing_id: str | None = None,
        error: str | None = None,
        run_id: str | None = None,
    ) -> PipelineRun | None:
        """Move an existing run to ``stage``.

        Does nothing (and returns None) when no run exists for the user, or
        when ``run_id`` is given and belongs to a run that has been replaced.
        """
        stage = PipelineStage(stage)
        with self._lock:
            now = self._clock()
            run = self._live(user_id, now)
            if run is None:
                logger.debug("No pipeline run for %s, ignoring %s", user_id, stage.value)
                return None
            if run_id is not None and run.run_id != run_id:
                logger.debug("Ignoring %s from replaced run %s of %s", stage.value, run_id, user_id)
                return None
            run.stage = stage
            run.message = message or STAGE_LABELS[stage]
            run.updated_at = now
            if briefing_id is not None:
                run.briefing_id = briefing_id
            if error is not None:
                run.error = error
            self._store.set(user_id, run)
            return replace(run)

    def read(self, user_id: str) -> PipelineRun | None:
        """Point-in-time snapshot of the user's run, or None."""
        with self._lock:
            run = self._live(user_id, self._clock())
            return replace(run) if run is not None else None

    def clear(self, user_id: str) -> None:
        with self._lock:
            self._store.delete(user_id)

    def now(self) -> datetime:
        return self._clock()


@lru_cache(maxsize=1)
def get_tracker() -> PipelineStatusTracker:
    """Process-wide tracker instance."""
    from signalpoll.config import get_config

    return PipelineStatusTracker(ttl=timedelta(minutes=get_config().status_ttl_minutes))
