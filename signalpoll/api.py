"""Transport-agnostic request handlers.

Each handler takes already-resolved inputs (the authenticated user id, the
raw ``Authorization`` header) and returns ``(status_code, body)``; wiring
them into a web framework is left to the host application.
"""

from __future__ import annotations

import hmac
import logging
from typing import Any, Callable

from signalpoll.briefing.orchestrator import BriefingOptions, PipelineOrchestrator
from signalpoll.briefing.status import PipelineStatusTracker
from signalpoll.polling.config import SourceKind
from signalpoll.polling.runner import PollRunResult

logger = logging.getLogger(__name__)

Response = tuple[int, dict[str, Any]]

_UNAUTHORIZED: Response = (401, {"error": "Unauthorized"})


def handle_trigger(
    orchestrator: PipelineOrchestrator,
    user_id: str | None,
    body: dict[str, Any] | None = None,
) -> Response:
    """Start a briefing run for the caller without waiting for it.

    A trigger while a run is already in progress is rejected with 409 and
    the current stage, so at most one run per user is ever live.
    """
    if not user_id:
        return _UNAUTHORIZED

    options = BriefingOptions(force_generate=bool((body or {}).get("forceGenerate", False)))
    result = orchestrator.trigger(user_id, options)
    if not result.started:
        return 409, {
            "started": False,
            "reason": result.reason,
            "stage": result.run.stage.value if result.run else None,
        }
    return 200, {"started": True}


def handle_status(tracker: PipelineStatusTracker, user_id: str | None) -> Response:
    """Report the caller's current or most recent run."""
    if not user_id:
        return _UNAUTHORIZED

    run = tracker.read(user_id)
    if run is None:
        return 200, {"running": False}
    return 200, run.to_status(tracker.now())


def is_authorized_cron(authorization: str | None, cron_secret: str | None) -> bool:
    """Check a ``Bearer <secret>`` header against the configured secret.

    With no secret configured, batch endpoints are open.
    """
    if not cron_secret:
        return True
    if not authorization:
        return False
    return hmac.compare_digest(authorization.encode("utf-8"), f"Bearer {cron_secret}".encode("utf-8"))


def handle_batch_poll(
    authorization: str | None,
    kind: SourceKind | str,
    run: Callable[[SourceKind], PollRunResult],
    cron_secret: str | None,
) -> Response:
    """Poll every due source of ``kind``.

    Per-source failures are part of the report, so any authorized call
    answers 200.
    """
    if not is_authorized_cron(authorization, cron_secret):
        logger.warning("Rejected batch poll call with bad credentials")
        return _UNAUTHORIZED

    try:
        kind = SourceKind(kind)
    except ValueError:
        return 400, {"error": f"Unknown source kind: {kind}"}

    result = run(kind)
    return 200, result.to_dict()
