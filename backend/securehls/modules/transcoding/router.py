"""Lesson video management API router."""

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from securehls.core.config import settings
from securehls.core.database import get_db
from securehls.core.redis import KeyValueStore, get_kv_store
from securehls.modules.auth.jwt import get_current_viewer, require_admin
from securehls.modules.delivery.router import get_url_builder
from securehls.modules.lesson.models import User
from securehls.modules.lesson.repository import LessonRepository
from securehls.modules.transcoding.schemas import (
    DeleteVideoResponse,
    UploadResponse,
    VideoStatusResponse,
)
from securehls.modules.transcoding.service import (
    InvalidVideoFileError,
    LessonNotFoundError,
    VideoProcessingInProgressError,
    VideoService,
)
from securehls.modules.transcoding.storage import LocalBlobStorage, get_layout
from securehls.modules.transcoding.tasks import dispatch_video_processing

router = APIRouter(prefix="/lessons", tags=["lesson-videos"])


async def get_video_service(
    db: AsyncSession = Depends(get_db),
    store: KeyValueStore = Depends(get_kv_store),
) -> VideoService:
    return VideoService(
        lessons=LessonRepository(db),
        store=store,
        storage=LocalBlobStorage(),
        dispatcher=dispatch_video_processing,
        layout_factory=get_layout,
        urls=get_url_builder(),
        temp_dir=settings.TEMP_VIDEO_DIR,
        max_upload_bytes=settings.MAX_UPLOAD_BYTES,
        start_ttl=settings.PROCESSING_START_TTL_SECONDS,
        dispatch_ttl=int(settings.VIDEO_JOB_DEADLINE_SECONDS),
        segment_seconds=settings.HLS_SEGMENT_SECONDS,
    )


@router.post("/{lesson_id}/video", response_model=UploadResponse)
async def upload_lesson_video(
    lesson_id: int,
    video: UploadFile = File(...),
    admin: User = Depends(require_admin),
    service: VideoService = Depends(get_video_service),
):
    """Upload a lesson video and queue it for encrypted HLS processing."""
    size = video.size
    if size is None:
        video.file.seek(0, 2)
        size = video.file.tell()
        video.file.seek(0)

    try:
        return await service.upload(lesson_id, video.file, video.filename, size)
    except InvalidVideoFileError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except LessonNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except VideoProcessingInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.get("/{lesson_id}/video/status", response_model=VideoStatusResponse)
async def get_lesson_video_status(
    lesson_id: int,
    viewer: User = Depends(get_current_viewer),
    service: VideoService = Depends(get_video_service),
):
    """Processing status with a progress estimate."""
    try:
        return await service.get_status(lesson_id)
    except LessonNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.delete("/{lesson_id}/video", response_model=DeleteVideoResponse)
async def delete_lesson_video(
    lesson_id: int,
    admin: User = Depends(require_admin),
    service: VideoService = Depends(get_video_service),
):
    """Delete a lesson's video and its encrypted output."""
    try:
        await service.delete(lesson_id)
    except LessonNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return DeleteVideoResponse(message="Video deleted")
