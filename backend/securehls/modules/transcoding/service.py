"""Lesson video management: upload, status and deletion."""

import logging
import time
from pathlib import PurePosixPath
from typing import BinaryIO, Callable, Optional

from securehls.core.logging import log_info
from securehls.core.redis import KeyValueStore
from securehls.modules.delivery.gateway import DeliveryUrlBuilder
from securehls.modules.lesson.models import Lesson, VideoStatus
from securehls.modules.lesson.repository import LessonRepository
from securehls.modules.transcoding.progress import (
    NOT_UPLOADED,
    dispatch_marker_key,
    format_duration,
    processing_start_key,
    snapshot,
    source_duration_key,
)
from securehls.modules.transcoding.renditions import RENDITION_LADDER
from securehls.modules.transcoding.schemas import (
    UploadResponse,
    VideoInfo,
    VideoStatusResponse,
)
from securehls.modules.transcoding.storage import (
    LessonVideoLayout,
    LocalBlobStorage,
    format_bytes,
    remove_output_dir,
)

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = frozenset({"mp4", "mov", "avi", "wmv", "webm"})


class VideoServiceError(Exception):
    """Base exception for video management errors."""
    pass


class LessonNotFoundError(VideoServiceError):
    """Raised when the lesson does not exist."""
    pass


class InvalidVideoFileError(VideoServiceError):
    """Raised when an upload is empty, too large or of a disallowed type."""
    pass


class VideoProcessingInProgressError(VideoServiceError):
    """Raised when a processing task is already queued or running."""
    pass


def validate_video_file(filename: Optional[str], size: int, max_bytes: int) -> str:
    """Validate an uploaded file.

    Returns:
        Lower-case extension without the dot

    Raises:
        InvalidVideoFileError: If the file cannot be accepted
    """
    extension = PurePosixPath(filename or "").suffix.lstrip(".").lower()
    if extension not in ALLOWED_EXTENSIONS:
        raise InvalidVideoFileError(
            f"Unsupported file type. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        )
    if size <= 0:
        raise InvalidVideoFileError("The video file is empty")
    if size > max_bytes:
        raise InvalidVideoFileError(
            f"The video file is too large ({format_bytes(size)}, max {format_bytes(max_bytes)})"
        )
    return extension


class VideoService:
    """Service for managing lesson videos."""

    def __init__(
        self,
        lessons: LessonRepository,
        store: KeyValueStore,
        storage: LocalBlobStorage,
        dispatcher: Callable[[int], str],
        layout_factory: Callable[[int], LessonVideoLayout],
        urls: DeliveryUrlBuilder,
        temp_dir: str = "temp_videos",
        max_upload_bytes: int = 200 * 1024 * 1024,
        start_ttl: int = 3600,
        dispatch_ttl: int = 4 * 3600,
        segment_seconds: int = 6,
        clock: Callable[[], float] = time.time,
    ):
        self.lessons = lessons
        self.store = store
        self.storage = storage
        self.dispatcher = dispatcher
        self.layout_factory = layout_factory
        self.urls = urls
        self.temp_dir = temp_dir
        self.max_upload_bytes = max_upload_bytes
        self.start_ttl = start_ttl
        self.dispatch_ttl = dispatch_ttl
        self.segment_seconds = segment_seconds
        self.clock = clock

    async def _get_lesson(self, lesson_id: int) -> Lesson:
        lesson = await self.lessons.get_by_id(lesson_id)
        if lesson is None:
            raise LessonNotFoundError(f"Lesson {lesson_id} not found")
        return lesson

    def _remove_files(self, lesson: Lesson) -> None:
        remove_output_dir(self.layout_factory(lesson.id))
        if lesson.video_path and lesson.video_path.startswith(self.temp_dir.strip("/") + "/"):
            self.storage.delete(lesson.video_path)

    def status_url(self, lesson_id: int) -> str:
        return f"{self.urls.lesson_url(lesson_id)}/video/status"

    async def upload(
        self,
        lesson_id: int,
        source: BinaryIO,
        filename: Optional[str],
        size: int,
    ) -> UploadResponse:
        """Store a new source video and queue it for processing.

        Any previous video of the lesson is removed first.

        Raises:
            InvalidVideoFileError: If the file is rejected
            LessonNotFoundError: If the lesson does not exist
            VideoProcessingInProgressError: If the lesson is already being processed
        """
        extension = validate_video_file(filename, size, self.max_upload_bytes)
        lesson = await self._get_lesson(lesson_id)

        marker = dispatch_marker_key(lesson_id)
        if not await self.store.add(marker, str(self.clock()), self.dispatch_ttl):
            raise VideoProcessingInProgressError(
                f"Lesson {lesson_id} video is already being processed"
            )

        try:
            if lesson.video_path:
                self._remove_files(lesson)

            temp_path = self.storage.write_temp(source, extension, self.temp_dir)
            await self.lessons.update_video_fields(
                lesson,
                video_path=temp_path,
                video_status=VideoStatus.PROCESSING.value,
                video_duration=None,
                video_size=None,
            )
            await self.store.delete(source_duration_key(lesson_id))
            await self.store.put(
                processing_start_key(lesson_id), str(self.clock()), self.start_ttl
            )
            task_id = self.dispatcher(lesson_id)
        except Exception:
            await self.store.delete(marker)
            raise

        log_info(
            logger,
            "Lesson video uploaded and queued",
            lesson_id=lesson_id,
            path=temp_path,
            size=format_bytes(size),
            task_id=task_id,
        )

        return UploadResponse(
            message="Video uploaded, processing has started",
            status=VideoStatus.PROCESSING.value,
            status_url=self.status_url(lesson_id),
            task_id=task_id,
        )

    async def get_status(self, lesson_id: int) -> VideoStatusResponse:
        """Processing status, progress estimate and playback URLs."""
        lesson = await self._get_lesson(lesson_id)
        status = lesson.video_status

        elapsed = None
        started = await self.store.get(processing_start_key(lesson_id))
        if started is not None:
            elapsed = max(0.0, self.clock() - float(started))

        duration = lesson.video_duration
        if duration is None and status == VideoStatus.PROCESSING.value:
            recorded = await self.store.get(source_duration_key(lesson_id))
            duration = int(recorded) if recorded else None

        progress = snapshot(
            status,
            self.layout_factory(lesson_id),
            duration=duration,
            elapsed_seconds=elapsed,
            rendition_count=len(RENDITION_LADDER),
            segment_seconds=self.segment_seconds,
        )

        ready = status == VideoStatus.READY.value
        return VideoStatusResponse(
            lesson_id=lesson_id,
            status=status or NOT_UPLOADED,
            processing_progress=progress.progress,
            video_available=ready,
            message=progress.message,
            estimated_time_remaining=progress.estimated_time_remaining,
            video_info=VideoInfo(
                duration=format_duration(lesson.video_duration),
                size=format_bytes(lesson.video_size) if lesson.video_size else None,
                uploaded_at=lesson.updated_at,
            ),
            playlist_url=self.urls.playlist_url(lesson_id) if ready else None,
            encryption_key_url=self.urls.key_url(lesson_id) if ready else None,
        )

    async def delete(self, lesson_id: int) -> None:
        """Remove the lesson's video files and reset its video fields."""
        lesson = await self._get_lesson(lesson_id)
        self._remove_files(lesson)
        await self.lessons.clear_video(lesson)
        await self.store.delete(processing_start_key(lesson_id))
        await self.store.delete(source_duration_key(lesson_id))

        logger.info("Lesson video deleted", extra={"lesson_id": lesson_id})
