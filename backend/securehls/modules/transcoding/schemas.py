"""Pydantic schemas for lesson video management."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class VideoInfo(BaseModel):
    """Human readable facts about a lesson video."""
    duration: Optional[str] = Field(None, description="MM:SS or H:MM:SS")
    size: Optional[str] = Field(None, description="Formatted size, e.g. 1.5 MB")
    uploaded_at: Optional[datetime] = None


class VideoStatusResponse(BaseModel):
    """Processing status of a lesson video."""
    lesson_id: int
    status: str
    processing_progress: int = Field(..., ge=0, le=100)
    video_available: bool
    message: str
    estimated_time_remaining: Optional[str] = None
    video_info: VideoInfo
    playlist_url: Optional[str] = None
    encryption_key_url: Optional[str] = None


class UploadResponse(BaseModel):
    """Response of a successful upload."""
    success: bool = True
    message: str
    status: str
    upload_progress: int = 100
    processing_progress: int = 0
    status_url: str
    task_id: Optional[str] = None


class DeleteVideoResponse(BaseModel):
    """Response of a video deletion."""
    success: bool = True
    message: str
