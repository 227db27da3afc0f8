"""Stage sequencing for one user's briefing generation.

The orchestrator knows the order of the stages and reports every transition
to the :class:`PipelineStatusTracker`; the work inside each stage belongs to
collaborators supplied in a :class:`BriefingStages` bundle (news ingestion,
enrichment, LLM synthesis, persistence).

A run is started with :meth:`PipelineOrchestrator.trigger`, which flips the
tracker to ``starting`` and hands the run to a :class:`BackgroundWorker`.
The caller does not wait for it. Any stage failure ends the run in
``failed`` with the error recorded on the tracker; there is no retry inside
a run and nothing is re-raised, because nobody is waiting on the result.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable

from signalpoll.errors import OrchestrationStageError

from .status import PipelineRun, PipelineStage, PipelineStatusTracker, get_tracker
from .worker import BackgroundWorker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BriefingOptions:
    """Options accepted by the trigger.

    Attributes:
        force_generate: Generate a new briefing even when the user already
            has one for the current period.
    """

    force_generate: bool = False


@dataclass
class BriefingStages:
    """External collaborators, one per pipeline stage.

    Attributes:
        ingest: Pulls fresh signals for the user; returns how many.
        enrich: Enriches the ingested signals; returns how many.
        synthesize: Produces the briefing draft.
        persist: Stores the draft and returns the briefing id.
        find_existing: Optional lookup of an already generated briefing for
            the current period. Consulted unless ``force_generate`` is set.
    """

    ingest: Callable[[str, BriefingOptions], int]
    enrich: Callable[[str, BriefingOptions], int]
    synthesize: Callable[[str, BriefingOptions], Any]
    persist: Callable[[str, Any, BriefingOptions], str | None]
    find_existing: Callable[[str], str | None] | None = None


@dataclass
class TriggerResult:
    """What the trigger did.

    Attributes:
        started: Whether a new run was started.
        run: Snapshot of the run as it was right after the trigger.
        future: Handle on the detached run (resolves to the briefing id, or
            None on failure). None when nothing was started.
        reason: Why the trigger was rejected.
    """

    started: bool
    run: PipelineRun | None = None
    future: Future | None = None
    reason: str | None = None


class PipelineOrchestrator:
    """Runs briefing generation for one user at a time per user."""

    def __init__(
        self,
        stages: BriefingStages,
        tracker: PipelineStatusTracker | None = None,
        worker: BackgroundWorker | None = None,
    ) -> None:
        self.stages = stages
        self.tracker = tracker if tracker is not None else get_tracker()
        self.worker = worker or BackgroundWorker()

    def trigger(self, user_id: str, options: BriefingOptions | None = None) -> TriggerResult:
        """Start a detached run for ``user_id`` unless one is in progress.

        Raises:
            ValueError: If ``user_id`` is empty.
        """
        if not user_id:
            raise ValueError("user_id is required")
        options = options or BriefingOptions()

        run = self.tracker.try_start(user_id)
        if run is None:
            current = self.tracker.read(user_id)
            logger.info("Pipeline already running for %s, trigger ignored", user_id)
            return TriggerResult(started=False, run=current, reason="already-running")

        logger.info("Pipeline triggered for %s (force_generate=%s)", user_id, options.force_generate)
        future = self.worker.submit(f"briefing:{user_id}", self.run, user_id, options, run.run_id)
        return TriggerResult(started=True, run=run, future=future)

    def run(
        self,
        user_id: str,
        options: BriefingOptions | None = None,
        run_id: str | None = None,
    ) -> str | None:
        """Run every stage in order, reporting progress to the tracker.

        Progress is reported against ``run_id`` when given, so a run that has
        been replaced on the tracker cannot overwrite its successor.

        Returns:
            The briefing id, or None if a stage failed.
        """
        options = options or BriefingOptions()
        try:
            briefing_id = self._run_stages(user_id, options, run_id)
        except OrchestrationStageError as e:
            logger.error("Pipeline failed for %s at %s: %s", user_id, e.stage, e)
            self.tracker.advance(user_id, PipelineStage.FAILED, error=str(e), run_id=run_id)
            return None

        self.tracker.advance(user_id, PipelineStage.DONE, briefing_id=briefing_id, run_id=run_id)
        logger.info("Pipeline complete for %s: briefing %s", user_id, briefing_id)
        return briefing_id

    def _run_stages(self, user_id: str, options: BriefingOptions, run_id: str | None) -> str:
        if not options.force_generate and self.stages.find_existing is not None:
            existing = self._call(PipelineStage.STARTING, self.stages.find_existing, user_id)
            if existing:
                logger.info("Reusing existing briefing %s for %s", existing, user_id)
                return existing

        self.tracker.advance(user_id, PipelineStage.INGESTING, run_id=run_id)
        ingested = self._call(PipelineStage.INGESTING, self.stages.ingest, user_id, options)

        self.tracker.advance(
            user_id,
            PipelineStage.ENRICHING,
            message=f"Enriching {ingested} signals...",
            run_id=run_id,
        )
        self._call(PipelineStage.ENRICHING, self.stages.enrich, user_id, options)

        self.tracker.advance(user_id, PipelineStage.SYNTHESIZING, run_id=run_id)
        draft = self._call(PipelineStage.SYNTHESIZING, self.stages.synthesize, user_id, options)

        self.tracker.advance(user_id, PipelineStage.PERSISTING, run_id=run_id)
        briefing_id = self._call(PipelineStage.PERSISTING, self.stages.persist, user_id, draft, options)
        if not briefing_id:
            raise OrchestrationStageError(PipelineStage.PERSISTING.value, "No briefing generated")
        return briefing_id

    @staticmethod
    def _call(stage: PipelineStage, fn: Callable[..., Any], *args: Any) -> Any:
        """Invoke a stage collaborator, converting its failure into a stage error."""
        try:
            return fn(*args)
        except Exception as e:
            raise OrchestrationStageError(stage.value, str(e) or type(e).__name__) from e
