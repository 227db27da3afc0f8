"""Exception types shared by the polling engine and the briefing pipeline."""

from __future__ import annotations


class SignalPollError(Exception):
    """Base class for all errors raised by this package."""


class FetchError(SignalPollError):
    """Network, HTTP, or timeout failure from a source fetcher."""


class ParseError(SignalPollError):
    """Fetched payload could not be canonicalized or hashed."""


class ProcessingError(SignalPollError):
    """Downstream handling of changed content failed."""


class OrchestrationStageError(SignalPollError):
    """A briefing pipeline stage's collaborator failed.

    Attributes:
        stage: Name of the stage that was running when the failure occurred.
    """

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(message)
        self.stage = stage
