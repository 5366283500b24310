"""Tests for retry supervision of the video processing task."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from celery.exceptions import Retry
from hypothesis import given, settings, strategies as st

from securehls.modules.transcoding import tasks
from securehls.modules.transcoding.errors import (
    AssetNotFoundError,
    EncodeFailedError,
    InputInvalidError,
)
from securehls.modules.transcoding.tasks import (
    RetryPolicy,
    dispatch_video_processing,
    process_lesson_video_task,
)

T0 = 1_700_000_000.0


class TestRetryPolicy:
    """Attempt cap, deadline and retryable errors."""

    def test_retries_until_attempt_cap(self) -> None:
        policy = RetryPolicy(max_attempts=5, delay=30, deadline=14400)
        exc = EncodeFailedError("boom")

        decisions = [policy.should_retry(exc, attempt, T0, T0 + attempt * 30) for attempt in range(1, 6)]

        assert decisions == [True, True, True, True, False]

    def test_deadline_stops_retries(self) -> None:
        policy = RetryPolicy(max_attempts=5, delay=30, deadline=14400)
        exc = EncodeFailedError("boom")

        assert policy.should_retry(exc, 2, T0, T0 + 14370) is True
        assert policy.should_retry(exc, 2, T0, T0 + 14371) is False

    def test_missing_lesson_is_never_retried(self) -> None:
        assert RetryPolicy().should_retry(AssetNotFoundError("gone"), 1, T0, T0) is False

    def test_input_errors_retry_by_default(self) -> None:
        assert RetryPolicy().should_retry(InputInvalidError("bad"), 1, T0, T0) is True

    def test_input_errors_can_fail_fast(self) -> None:
        policy = RetryPolicy(retry_input_errors=False)

        assert policy.should_retry(InputInvalidError("bad"), 1, T0, T0) is False
        assert policy.should_retry(EncodeFailedError("boom"), 1, T0, T0) is True

    def test_unexpected_errors_are_retryable(self) -> None:
        assert RetryPolicy().is_retryable(RuntimeError("db went away"))

    @given(
        max_attempts=st.integers(min_value=1, max_value=10),
        failures=st.integers(min_value=1, max_value=20),
    )
    @settings(max_examples=100)
    def test_attempts_never_exceed_cap(self, max_attempts: int, failures: int) -> None:
        """However many attempts fail, at most max_attempts are ever run."""
        policy = RetryPolicy(max_attempts=max_attempts, delay=30, deadline=10**9)
        exc = EncodeFailedError("boom")

        attempts = 0
        for attempt in range(1, failures + 1):
            attempts = attempt
            if not policy.should_retry(exc, attempt, T0, T0 + attempt * 30):
                break

        assert attempts <= max_attempts


@pytest.fixture
def policy():
    with patch.object(tasks, "get_retry_policy", return_value=RetryPolicy(max_attempts=3, delay=30)) as p:
        yield p


class TestProcessingTask:
    """The Celery task body."""

    def test_success_returns_outcome(self, policy) -> None:
        outcome = {"success": True, "lesson_id": 42}
        with patch.object(tasks, "run_processing_attempt", AsyncMock(return_value=outcome)) as attempt:
            result = process_lesson_video_task.run(lesson_id=42)

        assert result == outcome
        attempt.assert_awaited_once_with(42)

    def test_failure_schedules_retry_with_first_attempt_time(self, policy) -> None:
        failing = AsyncMock(side_effect=EncodeFailedError("boom"))
        with patch.object(tasks, "run_processing_attempt", failing), \
                patch.object(process_lesson_video_task, "retry", side_effect=Retry()) as retry:
            with pytest.raises(Retry):
                process_lesson_video_task.run(lesson_id=42, first_attempted_at=T0)

        kwargs = retry.call_args.kwargs
        assert kwargs["countdown"] == 30
        assert kwargs["max_retries"] == 2
        assert kwargs["kwargs"] == {"lesson_id": 42, "first_attempted_at": T0}

    def test_non_retryable_failure_propagates(self, policy) -> None:
        failing = AsyncMock(side_effect=AssetNotFoundError("gone"))
        with patch.object(tasks, "run_processing_attempt", failing), \
                patch.object(process_lesson_video_task, "retry") as retry:
            with pytest.raises(AssetNotFoundError):
                process_lesson_video_task.run(lesson_id=42)

        retry.assert_not_called()

    def test_terminal_failure_runs_cleanup(self) -> None:
        with patch.object(tasks, "finalize_failure", AsyncMock()) as finalize:
            process_lesson_video_task.on_failure(
                EncodeFailedError("boom"), "task-1", (42,), {}, None
            )

        finalize.assert_awaited_once_with(42)

    def test_terminal_failure_reads_lesson_from_kwargs(self) -> None:
        with patch.object(tasks, "finalize_failure", AsyncMock()) as finalize:
            process_lesson_video_task.on_failure(
                EncodeFailedError("boom"), "task-1", (), {"lesson_id": 7}, None
            )

        finalize.assert_awaited_once_with(7)


def test_dispatch_uses_video_queue() -> None:
    result = MagicMock(id="task-123")
    with patch.object(process_lesson_video_task, "apply_async", return_value=result) as apply_async:
        task_id = dispatch_video_processing(42)

    assert task_id == "task-123"
    apply_async.assert_called_once_with(
        kwargs={"lesson_id": 42}, queue=tasks.settings.VIDEO_QUEUE
    )
