"""Background executor for detached units of work.

Requests that start long jobs hand them to a :class:`BackgroundWorker`
instead of spawning unobserved threads. The caller gets a ``Future`` back
(tests await it; request handlers may ignore it) and any exception the job
lets escape is delivered to the worker's error handler rather than lost.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[str, BaseException], None]


def _log_error(name: str, error: BaseException) -> None:
    logger.error("Background job %s failed: %s", name, error, exc_info=error)


class BackgroundWorker:
    """Thread-pool executor with an explicit error channel."""

    def __init__(
        self,
        max_workers: int = 4,
        on_error: ErrorHandler | None = None,
        thread_name_prefix: str = "briefing",
    ) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=thread_name_prefix,
        )
        self._on_error = on_error or _log_error

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """Schedule ``fn(*args, **kwargs)`` and return its future."""
        future = self._executor.submit(fn, *args, **kwargs)
        future.add_done_callback(lambda f: self._report(name, f))
        return future

    def _report(self, name: str, future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            self._on_error(name, error)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "BackgroundWorker":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown(wait=True)
