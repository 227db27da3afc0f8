"""Tests for signalpoll/api.py."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from signalpoll.api import handle_batch_poll, handle_status, handle_trigger, is_authorized_cron
from signalpoll.briefing.orchestrator import BriefingOptions, TriggerResult
from signalpoll.briefing.status import PipelineRun, PipelineStage, PipelineStatusTracker
from signalpoll.polling.config import SourceKind
from signalpoll.polling.runner import PollItemResult, PollRunResult


T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestHandleTrigger:
    def test_requires_user(self) -> None:
        orchestrator = MagicMock()
        assert handle_trigger(orchestrator, None) == (401, {"error": "Unauthorized"})
        orchestrator.trigger.assert_not_called()

    def test_starts_run(self) -> None:
        orchestrator = MagicMock()
        orchestrator.trigger.return_value = TriggerResult(started=True)

        status, body = handle_trigger(orchestrator, "user-1", {"forceGenerate": True})

        assert (status, body) == (200, {"started": True})
        orchestrator.trigger.assert_called_once_with(
            "user-1", BriefingOptions(force_generate=True)
        )

    def test_missing_body_uses_defaults(self) -> None:
        orchestrator = MagicMock()
        orchestrator.trigger.return_value = TriggerResult(started=True)

        handle_trigger(orchestrator, "user-1")

        orchestrator.trigger.assert_called_once_with("user-1", BriefingOptions())

    def test_conflict_while_running(self) -> None:
        orchestrator = MagicMock()
        orchestrator.trigger.return_value = TriggerResult(
            started=False,
            run=PipelineRun("user-1", PipelineStage.SYNTHESIZING, T0, T0),
            reason="already-running",
        )

        status, body = handle_trigger(orchestrator, "user-1")

        assert status == 409
        assert body == {"started": False, "reason": "already-running", "stage": "synthesizing"}


class TestHandleStatus:
    def test_requires_user(self) -> None:
        assert handle_status(PipelineStatusTracker(), "")[0] == 401

    def test_no_run(self) -> None:
        assert handle_status(PipelineStatusTracker(), "user-1") == (200, {"running": False})

    def test_running(self) -> None:
        now = [T0]
        tracker = PipelineStatusTracker(clock=lambda: now[0])
        tracker.start("user-1")
        tracker.advance("user-1", PipelineStage.SYNTHESIZING)
        now[0] = T0 + timedelta(seconds=5)

        status, body = handle_status(tracker, "user-1")

        assert status == 200
        assert body["running"] is True
        assert body["stage"] == "synthesizing"
        assert body["message"] == "Writing your briefing..."
        assert body["elapsedMs"] == 5000

    def test_done(self) -> None:
        tracker = PipelineStatusTracker()
        tracker.start("user-1")
        tracker.advance("user-1", PipelineStage.DONE, briefing_id="b-42")

        _, body = handle_status(tracker, "user-1")

        assert body["running"] is False
        assert body["briefingId"] == "b-42"


class TestCronAuthorization:
    def test_open_without_secret(self) -> None:
        assert is_authorized_cron(None, None) is True
        assert is_authorized_cron("anything", "") is True

    def test_valid_bearer(self) -> None:
        assert is_authorized_cron("Bearer s3cret", "s3cret") is True

    @pytest.mark.parametrize("header", [None, "", "s3cret", "Bearer wrong", "bearer s3cret"])
    def test_rejected(self, header) -> None:
        assert is_authorized_cron(header, "s3cret") is False


class TestHandleBatchPoll:
    def _result(self) -> PollRunResult:
        result = PollRunResult(kind=SourceKind.FEED, started_at=T0, completed_at=T0, due=2)
        result.items = [
            PollItemResult(source_id="a", name="A", status="changed", items_processed=3),
            PollItemResult(source_id="b", name="B", status="error", consecutive_errors=1, error="x"),
        ]
        return result

    def test_unauthorized(self) -> None:
        run = MagicMock()
        status, _ = handle_batch_poll("Bearer nope", "feed", run, cron_secret="s3cret")

        assert status == 401
        run.assert_not_called()

    def test_unknown_kind(self) -> None:
        run = MagicMock()
        status, body = handle_batch_poll(None, "podcasts", run, cron_secret=None)

        assert status == 400
        assert "podcasts" in body["error"]
        run.assert_not_called()

    def test_reports_results_with_200(self) -> None:
        """Per-source failures do not change the status code."""
        run = MagicMock(return_value=self._result())

        status, body = handle_batch_poll("Bearer s3cret", "feed", run, cron_secret="s3cret")

        assert status == 200
        run.assert_called_once_with(SourceKind.FEED)
        assert body["sourcesProcessed"] == 2
        assert body["succeeded"] == 1
        assert body["failed"] == 1
        assert body["results"][1]["error"] == "x"
