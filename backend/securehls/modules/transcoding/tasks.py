"""Celery task supervising lesson video processing.

The task runs one ``TranscodingJob`` attempt per execution and decides
whether to retry. Attempts are capped and must also start within a deadline
measured from the first attempt. When retries are exhausted the lesson's
output directory is removed and the lesson is left ``failed``.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Optional

import redis.asyncio as redis
from celery import Task
from sqlalchemy.ext.asyncio import async_sessionmaker

from securehls.core.celery_app import celery_app
from securehls.core.config import settings
from securehls.core.database import create_worker_engine
from securehls.core.logging import (
    clear_correlation_id,
    log_error,
    log_warning,
    set_correlation_id,
)
from securehls.core.metrics import VIDEO_JOBS_TOTAL
from securehls.core.redis import RedisKeyValueStore
from securehls.modules.lesson.models import VideoStatus
from securehls.modules.lesson.repository import LessonRepository
from securehls.modules.transcoding.errors import InputInvalidError
from securehls.modules.transcoding.ffmpeg import get_default_encoder
from securehls.modules.transcoding.job import TranscodingJob
from securehls.modules.transcoding.progress import dispatch_marker_key
from securehls.modules.transcoding.storage import get_layout, remove_output_dir

logger = logging.getLogger(__name__)


class RetryPolicy:
    """Fixed-delay retries bounded by attempt count and a deadline."""

    def __init__(
        self,
        max_attempts: int = 5,
        delay: float = 30.0,
        deadline: float = 4 * 3600.0,
        retry_input_errors: bool = True,
    ):
        self.max_attempts = max_attempts
        self.delay = delay
        self.deadline = deadline
        self.retry_input_errors = retry_input_errors

    def is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, InputInvalidError) and not self.retry_input_errors:
            return False
        return getattr(exc, "retryable", True)

    def should_retry(
        self,
        exc: BaseException,
        attempt: int,
        first_attempted_at: float,
        now: float,
    ) -> bool:
        """Decide whether another attempt should be scheduled.

        Args:
            exc: Failure of the attempt that just ran
            attempt: Number of that attempt (1-indexed)
            first_attempted_at: Epoch seconds of the first attempt
            now: Current epoch seconds
        """
        if not self.is_retryable(exc):
            return False
        if attempt >= self.max_attempts:
            return False
        return (now + self.delay) - first_attempted_at <= self.deadline


def get_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.VIDEO_JOB_MAX_ATTEMPTS,
        delay=settings.VIDEO_JOB_RETRY_DELAY_SECONDS,
        deadline=settings.VIDEO_JOB_DEADLINE_SECONDS,
        retry_input_errors=settings.VIDEO_JOB_RETRY_INPUT_ERRORS,
    )


class VideoProcessingTask(Task):
    """Base task for lesson video processing.

    ``on_failure`` only runs once no retry is scheduled, so it does the
    terminal cleanup.
    """
    abstract = True

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Remove partial output and leave the lesson failed."""
        lesson_id = args[0] if args else kwargs.get("lesson_id")
        if lesson_id is None:
            return

        VIDEO_JOBS_TOTAL.labels(outcome="exhausted").inc()
        log_error(
            logger,
            "Video processing gave up",
            exc,
            lesson_id=lesson_id,
            task_id=task_id,
            attempts=self.request.retries + 1,
            error_type=type(exc).__name__,
        )
        asyncio.run(finalize_failure(lesson_id))


async def finalize_failure(lesson_id: int, storage_root: Optional[Path] = None) -> None:
    """Delete the lesson's HLS directory and write a final failed status."""
    remove_output_dir(get_layout(lesson_id, storage_root))

    engine = create_worker_engine()
    redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        await RedisKeyValueStore(redis_client).delete(dispatch_marker_key(lesson_id))
        async with async_sessionmaker(engine, expire_on_commit=False)() as session:
            repo = LessonRepository(session)
            lesson = await repo.get_by_id(lesson_id)
            if lesson is not None:
                await repo.update_video_fields(
                    lesson, video_status=VideoStatus.FAILED.value
                )
    finally:
        await redis_client.aclose()
        await engine.dispose()


async def run_processing_attempt(lesson_id: int) -> dict:
    """Run one job attempt with worker-scoped database and Redis clients."""
    engine = create_worker_engine()
    redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        async with async_sessionmaker(engine, expire_on_commit=False)() as session:
            job = TranscodingJob(
                lessons=LessonRepository(session),
                store=RedisKeyValueStore(redis_client),
                encoder=get_default_encoder(),
                layout_factory=get_layout,
                storage_root=Path(settings.STORAGE_ROOT),
                start_ttl=settings.PROCESSING_START_TTL_SECONDS,
            )
            outcome = await job.run(lesson_id)
            await job.store.delete(dispatch_marker_key(lesson_id))
            return outcome.to_dict()
    finally:
        await redis_client.aclose()
        await engine.dispose()


@celery_app.task(bind=True, base=VideoProcessingTask)
def process_lesson_video_task(
    self: VideoProcessingTask,
    lesson_id: int,
    first_attempted_at: Optional[float] = None,
) -> dict[str, Any]:
    """Process an uploaded lesson video into encrypted HLS.

    Args:
        lesson_id: Lesson whose ``video_path`` points at the uploaded source
        first_attempted_at: Epoch seconds of the first attempt, carried
            across retries

    Returns:
        dict: Processing result
    """
    first_attempted_at = first_attempted_at or time.time()
    attempt = self.request.retries + 1
    set_correlation_id(f"lesson-video-{lesson_id}-{self.request.id}")

    try:
        return asyncio.run(run_processing_attempt(lesson_id))
    except Exception as exc:
        policy = get_retry_policy()
        if not policy.should_retry(exc, attempt, first_attempted_at, time.time()):
            raise

        log_warning(
            logger,
            "Video processing attempt failed, retrying",
            lesson_id=lesson_id,
            attempt=attempt,
            max_attempts=policy.max_attempts,
            retry_in=policy.delay,
            error=str(exc),
        )
        raise self.retry(
            exc=exc,
            countdown=policy.delay,
            max_retries=policy.max_attempts - 1,
            kwargs={"lesson_id": lesson_id, "first_attempted_at": first_attempted_at},
        )
    finally:
        clear_correlation_id()


def dispatch_video_processing(lesson_id: int) -> str:
    """Queue processing for a lesson. Returns the Celery task id."""
    result = process_lesson_video_task.apply_async(
        kwargs={"lesson_id": lesson_id},
        queue=settings.VIDEO_QUEUE,
    )
    return result.id
