"""Per-user briefing pipeline: stage orchestration and live progress tracking."""

from .orchestrator import BriefingOptions, BriefingStages, PipelineOrchestrator, TriggerResult
from .status import (
    InMemoryRunStore,
    PipelineRun,
    PipelineStage,
    PipelineStatusTracker,
    RunStore,
    STAGE_LABELS,
    get_tracker,
)
from .worker import BackgroundWorker

__all__ = [
    "BackgroundWorker",
    "BriefingOptions",
    "BriefingStages",
    "InMemoryRunStore",
    "PipelineOrchestrator",
    "PipelineRun",
    "PipelineStage",
    "PipelineStatusTracker",
    "RunStore",
    "STAGE_LABELS",
    "TriggerResult",
    "get_tracker",
]
