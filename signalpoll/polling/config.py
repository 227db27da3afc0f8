"""Configuration for the polling engine.

This module defines the source kinds the engine knows about and the
settings that control backoff, stale-source detection and fan-out.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from signalpoll.config import ProjectConfig


class SourceKind(str, Enum):
    """Category of external origin being polled."""

    FEED = "feed"
    RESEARCH = "research"
    EVENT = "event"
    CALENDAR = "calendar"


@dataclass(frozen=True)
class PollerConfig:
    """Polling behaviour shared by every source kind.

    Attributes:
        max_interval_minutes: Upper bound on the backoff interval.
        error_threshold: Consecutive failures after which the owning source
            is marked ``error`` and drops out of ``list_due``.
        fetch_timeout_seconds: Timeout handed to each fetch collaborator.
        max_sources_per_run: Due sources beyond this count wait for the
            next invocation.
        max_workers: Sources polled in parallel within one run. 1 means
            strictly sequential.
        jitter_minutes: Maximum random offset added to each next poll time.
            0 keeps scheduling deterministic.
        dry_run: If True, fetch and hash but neither process nor record.
    """

    max_interval_minutes: int = 240
    error_threshold: int = 10
    fetch_timeout_seconds: float = 10.0
    max_sources_per_run: int = 50
    max_workers: int = 1
    jitter_minutes: int = 0
    dry_run: bool = False

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.max_interval_minutes <= 0:
            raise ValueError("max_interval_minutes must be positive")
        if self.error_threshold < 1:
            raise ValueError("error_threshold must be at least 1")
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if self.max_sources_per_run < 1:
            raise ValueError("max_sources_per_run must be at least 1")
        if self.jitter_minutes < 0:
            raise ValueError("jitter_minutes cannot be negative")

    @classmethod
    def from_project_config(cls, project: "ProjectConfig", **overrides) -> "PollerConfig":
        """Build a config from the project settings file, then apply overrides."""
        values = {
            "max_interval_minutes": project.max_interval_minutes,
            "error_threshold": project.error_threshold,
            "fetch_timeout_seconds": project.fetch_timeout_seconds,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


# Base cadence for newly registered sources, by kind
DEFAULT_INTERVALS: dict[SourceKind, int] = {
    SourceKind.FEED: 15,
    SourceKind.RESEARCH: 60 * 6,
    SourceKind.EVENT: 60,
    SourceKind.CALENDAR: 30,
}


def get_default_interval(kind: SourceKind | str) -> int:
    """Get the default poll interval in minutes for a source kind."""
    return DEFAULT_INTERVALS.get(SourceKind(kind), 60)
