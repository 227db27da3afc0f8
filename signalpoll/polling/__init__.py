"""Multi-source polling with change detection and failure backoff.

Usage:
    from signalpoll.polling import PollerConfig, SourceKind, run_poll

    result = run_poll(SourceKind.FEED, config=PollerConfig(max_workers=4))
    print(result.summary())
"""

from .backoff import calculate_backoff_interval, calculate_next_poll
from .change import ChangeResult, content_hash, detect_change
from .config import PollerConfig, SourceKind
from .poller import Fetcher, PollOutcome, Processor, SourcePoller
from .runner import PollItemResult, PollRunner, PollRunResult, run_poll
from .state import PollState, PollStateStore, Source, SourceRegistry

__all__ = [
    # Config
    "PollerConfig",
    "SourceKind",
    # Backoff / change detection
    "calculate_backoff_interval",
    "calculate_next_poll",
    "ChangeResult",
    "content_hash",
    "detect_change",
    # State
    "PollState",
    "PollStateStore",
    "Source",
    "SourceRegistry",
    # Poller
    "Fetcher",
    "Processor",
    "PollOutcome",
    "SourcePoller",
    # Runner
    "PollItemResult",
    "PollRunner",
    "PollRunResult",
    "run_poll",
]
