"""Progress estimation for lessons whose video is being processed.

The numbers are stage gates read off the output directory, not encoder
telemetry. They only need to be plausible and never go backwards within a run.
"""

import math
from dataclasses import dataclass
from typing import Optional

from securehls.modules.lesson.models import VideoStatus
from securehls.modules.transcoding.storage import LessonVideoLayout

PROCESSING_START_KEY = "video_processing_started_{lesson_id}"
DISPATCH_MARKER_KEY = "video_processing_dispatched_{lesson_id}"
SOURCE_DURATION_KEY = "video_source_duration_{lesson_id}"

PROGRESS_NO_OUTPUT_DIR = 10
PROGRESS_NO_MANIFEST = 25
PROGRESS_NO_SEGMENTS = 40
PROGRESS_SEGMENTS_FLOOR = 50
PROGRESS_SEGMENTS_SPAN = 40
PROGRESS_SEGMENTS_CEILING = 90
PROGRESS_UNKNOWN_EXPECTED = 70

# Below this the ETA is reported as "estimating"
ETA_MIN_PROGRESS = 10

STATUS_MESSAGES = {
    VideoStatus.PROCESSING.value: "Video is being processed",
    VideoStatus.READY.value: "Video is ready to play",
    VideoStatus.FAILED.value: "Video processing failed",
    None: "No video has been uploaded",
}

ESTIMATING = "estimating"

# Reported when video_status is unset
NOT_UPLOADED = "not_uploaded"


def processing_start_key(lesson_id: int) -> str:
    return PROCESSING_START_KEY.format(lesson_id=lesson_id)


def dispatch_marker_key(lesson_id: int) -> str:
    """Set while a processing task is queued or running for the lesson."""
    return DISPATCH_MARKER_KEY.format(lesson_id=lesson_id)


def source_duration_key(lesson_id: int) -> str:
    """Probed duration of the source being processed, in seconds."""
    return SOURCE_DURATION_KEY.format(lesson_id=lesson_id)


@dataclass
class ProgressSnapshot:
    """What the status endpoint reports for a lesson."""
    progress: int
    message: str
    estimated_time_remaining: Optional[str] = None


def expected_segments(duration: Optional[int], segment_seconds: int = 6) -> Optional[int]:
    """Segments one rendition should produce, or None when duration is unknown."""
    if not duration or duration <= 0:
        return None
    return math.ceil(duration / segment_seconds)


def estimate_progress(
    status: Optional[str],
    layout: LessonVideoLayout,
    duration: Optional[int] = None,
    rendition_count: int = 1,
    segment_seconds: int = 6,
) -> int:
    """Estimate processing progress (0-100) from what is on disk.

    Args:
        status: Current ``video_status`` value
        layout: Output layout of the lesson
        duration: Recorded duration in seconds, if known
        rendition_count: Renditions being produced; segments on disk are
            divided by this so multi-tier encodes are measured per rendition
        segment_seconds: Target segment duration
    """
    if status == VideoStatus.READY.value:
        return 100
    if status != VideoStatus.PROCESSING.value:
        return 0

    if not layout.output_dir.is_dir():
        return PROGRESS_NO_OUTPUT_DIR
    # ffmpeg rewrites variant playlists as it goes; the canonical one only
    # appears after the last rendition.
    if not layout.canonical_manifest.exists() and not layout.manifest_files():
        return PROGRESS_NO_MANIFEST

    found = len(layout.segment_files())
    if found == 0:
        return PROGRESS_NO_SEGMENTS

    expected = expected_segments(duration, segment_seconds)
    if expected is None:
        return PROGRESS_UNKNOWN_EXPECTED

    per_rendition = found / max(rendition_count, 1)
    value = PROGRESS_SEGMENTS_FLOOR + per_rendition / expected * PROGRESS_SEGMENTS_SPAN
    return round(min(PROGRESS_SEGMENTS_CEILING, value))


def estimate_time_remaining(progress: int, elapsed_seconds: Optional[float]) -> Optional[float]:
    """Seconds left by linear extrapolation, or None while still estimating."""
    if elapsed_seconds is None or progress <= ETA_MIN_PROGRESS:
        return None
    total = elapsed_seconds / progress * 100
    return max(0.0, total - elapsed_seconds)


def format_eta(remaining_seconds: Optional[float]) -> str:
    """Human readable remaining time."""
    if remaining_seconds is None:
        return ESTIMATING

    minutes = remaining_seconds / 60
    if minutes < 2:
        return "less than 2 minutes"
    if minutes < 60:
        return f"about {round(minutes)} minutes"

    hours, minutes = divmod(int(minutes), 60)
    return f"about {hours} hours and {minutes} minutes"


def status_message(status: Optional[str]) -> str:
    return STATUS_MESSAGES.get(status, STATUS_MESSAGES[None])


def format_duration(seconds: Optional[int]) -> Optional[str]:
    """``MM:SS``, or ``H:MM:SS`` from one hour up."""
    if seconds is None:
        return None
    hours, rest = divmod(int(seconds), 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def snapshot(
    status: Optional[str],
    layout: LessonVideoLayout,
    duration: Optional[int] = None,
    elapsed_seconds: Optional[float] = None,
    rendition_count: int = 1,
    segment_seconds: int = 6,
) -> ProgressSnapshot:
    """Progress, message and ETA for one status poll."""
    progress = estimate_progress(
        status,
        layout,
        duration=duration,
        rendition_count=rendition_count,
        segment_seconds=segment_seconds,
    )

    eta = None
    if status == VideoStatus.PROCESSING.value and elapsed_seconds is not None:
        eta = format_eta(estimate_time_remaining(progress, elapsed_seconds))

    return ProgressSnapshot(
        progress=progress,
        message=status_message(status),
        estimated_time_remaining=eta,
    )
