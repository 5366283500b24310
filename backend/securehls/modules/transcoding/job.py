"""Transcoding job: turn a lesson's uploaded source into an encrypted HLS set.

One call to ``TranscodingJob.run`` is one attempt. Retries, the attempt
cap and the deadline belong to the Celery task in ``tasks.py``.
"""

import logging
import mimetypes
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from securehls.core.metrics import RENDITION_ENCODES_TOTAL, VIDEO_JOBS_TOTAL
from securehls.core.redis import KeyValueStore
from securehls.modules.lesson.models import Lesson, VideoStatus
from securehls.modules.transcoding.errors import (
    AssetNotFoundError,
    EncodeFailedError,
    EnvironmentUnavailableError,
    InputInvalidError,
)
from securehls.modules.transcoding.ffmpeg import FFmpegEncoder
from securehls.modules.transcoding.keys import (
    KeyMaterial,
    discard_key_info,
    generate_key_material,
)
from securehls.modules.transcoding.manifest import (
    discard_stale_manifests,
    promote_single_rendition,
    verify_output,
    write_master_manifest,
)
from securehls.modules.transcoding.progress import (
    processing_start_key,
    source_duration_key,
)
from securehls.modules.transcoding.renditions import (
    BASELINE_RENDITION,
    FALLBACK_PROFILE,
    RENDITION_LADDER,
    Rendition,
    is_baseline,
    validate_ladder,
)
from securehls.modules.transcoding.storage import (
    FALLBACK_SEGMENT_PATTERN,
    LessonVideoLayout,
    format_bytes,
)

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = frozenset({
    "video/mp4",
    "video/quicktime",
    "video/x-msvideo",
    "video/x-ms-wmv",
    "video/webm",
})

# Not in every platform's mime.types
mimetypes.add_type("video/x-ms-wmv", ".wmv")
mimetypes.add_type("video/webm", ".webm")


class LessonStore(Protocol):
    """The part of ``LessonRepository`` the job needs."""

    async def get_by_id(self, lesson_id: int) -> Optional[Lesson]: ...

    async def update_video_fields(self, lesson: Lesson, **fields: Any) -> Lesson: ...


@dataclass
class JobContext:
    """State threaded through the stages of one attempt."""
    lesson_id: int
    layout: LessonVideoLayout
    lesson: Optional[Lesson] = None
    source_path: Optional[Path] = None
    source_size: int = 0
    source_duration: Optional[int] = None
    key_material: Optional[KeyMaterial] = None
    succeeded: list[Rendition] = field(default_factory=list)
    used_fallback: bool = False


@dataclass
class TranscodeOutcome:
    """Result of a successful attempt."""
    lesson_id: int
    status: str
    video_path: str
    renditions: list[str]
    used_fallback: bool
    segment_count: int
    duration: Optional[int]
    size: int

    def to_dict(self) -> dict:
        return {
            "success": True,
            "lesson_id": self.lesson_id,
            "status": self.status,
            "video_path": self.video_path,
            "renditions": self.renditions,
            "used_fallback": self.used_fallback,
            "segment_count": self.segment_count,
            "duration": self.duration,
            "size": self.size,
        }


def default_key_uri(lesson_id: int) -> str:
    """Key URI written into playlists; the gateway replaces it per viewer."""
    from securehls.core.config import settings

    return f"{settings.API_V1_PREFIX}/lessons/{lesson_id}/key"


class TranscodingJob:
    """Runs one processing attempt for a lesson video."""

    def __init__(
        self,
        lessons: LessonStore,
        store: KeyValueStore,
        encoder: FFmpegEncoder,
        layout_factory: Callable[[int], LessonVideoLayout],
        storage_root: Path,
        ladder: tuple[Rendition, ...] = RENDITION_LADDER,
        baseline: str = BASELINE_RENDITION,
        key_uri_builder: Callable[[int], str] = default_key_uri,
        start_ttl: int = 3600,
        clock: Callable[[], float] = time.time,
    ):
        is_valid, errors = validate_ladder(ladder, baseline)
        if not is_valid:
            raise ValueError(f"Invalid rendition ladder: {'; '.join(errors)}")

        self.lessons = lessons
        self.store = store
        self.encoder = encoder
        self.layout_factory = layout_factory
        self.storage_root = Path(storage_root)
        self.ladder = ladder
        self.baseline = baseline
        self.key_uri_builder = key_uri_builder
        self.start_ttl = start_ttl
        self.clock = clock

    async def run(self, lesson_id: int) -> TranscodeOutcome:
        """Process the lesson's source video.

        Raises:
            AssetNotFoundError: If the lesson does not exist
            TranscodingError: Any other failure; the lesson is marked failed
        """
        ctx = JobContext(lesson_id=lesson_id, layout=self.layout_factory(lesson_id))

        ctx.lesson = await self.lessons.get_by_id(lesson_id)
        if ctx.lesson is None:
            VIDEO_JOBS_TOTAL.labels(outcome="not_found").inc()
            raise AssetNotFoundError(f"Lesson {lesson_id} not found")

        try:
            outcome = await self._process(ctx)
        except Exception as e:
            VIDEO_JOBS_TOTAL.labels(outcome="failed").inc()
            logger.error(
                "Video processing failed",
                extra={
                    "lesson_id": lesson_id,
                    "error_type": type(e).__name__,
                    "error": str(e),
                    "stderr": getattr(e, "stderr", None),
                },
            )
            await self.lessons.update_video_fields(
                ctx.lesson, video_status=VideoStatus.FAILED.value
            )
            raise
        finally:
            if ctx.key_material is not None:
                discard_key_info(ctx.key_material)

        VIDEO_JOBS_TOTAL.labels(outcome="ready").inc()
        return outcome

    async def _process(self, ctx: JobContext) -> TranscodeOutcome:
        self._validate_source(ctx)
        self._prepare_environment(ctx)
        self._inspect_source(ctx)

        await self.lessons.update_video_fields(
            ctx.lesson, video_status=VideoStatus.PROCESSING.value
        )
        await self.store.put(
            processing_start_key(ctx.lesson_id), str(self.clock()), self.start_ttl
        )
        if ctx.source_duration:
            await self.store.put(
                source_duration_key(ctx.lesson_id), str(ctx.source_duration), self.start_ttl
            )

        ctx.key_material = generate_key_material(
            ctx.layout, self.key_uri_builder(ctx.lesson_id)
        )

        self._encode_ladder(ctx)
        self._assemble(ctx)
        segment_count = verify_output(ctx.layout)

        duration = ctx.source_duration
        if duration is None:
            duration = self._probe_duration(ctx)

        video_path = ctx.layout.canonical_relative_path
        await self.lessons.update_video_fields(
            ctx.lesson,
            video_status=VideoStatus.READY.value,
            video_duration=duration,
            video_size=ctx.source_size,
            video_path=video_path,
        )
        ctx.source_path.unlink(missing_ok=True)

        logger.info(
            "Video processing completed",
            extra={
                "lesson_id": ctx.lesson_id,
                "renditions": [r.name for r in ctx.succeeded],
                "used_fallback": ctx.used_fallback,
                "segments": segment_count,
                "duration": duration,
            },
        )

        return TranscodeOutcome(
            lesson_id=ctx.lesson_id,
            status=VideoStatus.READY.value,
            video_path=video_path,
            renditions=[r.name for r in ctx.succeeded],
            used_fallback=ctx.used_fallback,
            segment_count=segment_count,
            duration=duration,
            size=ctx.source_size,
        )

    def _validate_source(self, ctx: JobContext) -> None:
        relative = ctx.lesson.video_path
        if not relative:
            raise InputInvalidError(f"Lesson {ctx.lesson_id} has no source video")

        source = self.storage_root / relative
        if not source.is_file():
            raise InputInvalidError(f"Source video not found: {relative}")

        size = source.stat().st_size
        if size == 0:
            raise InputInvalidError(f"Source video is empty: {relative}")

        mime_type, _ = mimetypes.guess_type(str(source))
        if mime_type not in ALLOWED_MIME_TYPES:
            raise InputInvalidError(
                f"Unsupported video type {mime_type or 'unknown'}: {relative}"
            )

        ctx.source_path = source
        ctx.source_size = size

        logger.info(
            "Source video validated",
            extra={
                "lesson_id": ctx.lesson_id,
                "mime_type": mime_type,
                "size": format_bytes(size),
            },
        )

    def _prepare_environment(self, ctx: JobContext) -> None:
        self.encoder.check_available()

        try:
            ctx.layout.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise EnvironmentUnavailableError(
                f"Could not create output directory {ctx.layout.output_dir}: {e}"
            ) from e

    def _inspect_source(self, ctx: JobContext) -> None:
        """Reject sources ffprobe cannot read as video and note their duration.

        An ffprobe that cannot run or times out only costs the early duration;
        the encoder gets to decide about the file.
        """
        result = self.encoder.probe(ctx.source_path)
        relative = ctx.lesson.video_path

        if result.rejected:
            raise InputInvalidError(f"Source is not a readable video: {relative}")
        if not result.ok:
            logger.warning(
                "Could not inspect source video",
                extra={"lesson_id": ctx.lesson_id, "error": result.error},
            )
            return
        if not result.has_video:
            raise InputInvalidError(f"Source has no video stream: {relative}")

        ctx.source_duration = result.duration

    def _encode_ladder(self, ctx: JobContext) -> None:
        for rendition in self.ladder:
            try:
                self.encoder.encode_rendition(
                    ctx.source_path,
                    ctx.layout.output_dir,
                    rendition,
                    ctx.key_material.key_info_file,
                )
            except EncodeFailedError as e:
                RENDITION_ENCODES_TOTAL.labels(rendition=rendition.name, outcome="failed").inc()
                logger.warning(
                    "Rendition encode failed",
                    extra={
                        "lesson_id": ctx.lesson_id,
                        "rendition": rendition.name,
                        "error": str(e),
                        "stderr": e.stderr,
                    },
                )
                if is_baseline(rendition, self.baseline):
                    self._encode_fallback(ctx)
                    return
                continue

            RENDITION_ENCODES_TOTAL.labels(rendition=rendition.name, outcome="ok").inc()
            ctx.succeeded.append(rendition)

    def _encode_fallback(self, ctx: JobContext) -> None:
        """Single-rendition encode straight into the canonical manifest.

        Whatever tiers succeeded before the baseline are dropped from the
        manifest set.
        """
        logger.warning(
            "Baseline rendition failed, falling back to single rendition",
            extra={"lesson_id": ctx.lesson_id, "height": FALLBACK_PROFILE.height},
        )
        self.encoder.encode_fallback(
            ctx.source_path,
            ctx.layout.canonical_manifest,
            ctx.layout.output_dir / FALLBACK_SEGMENT_PATTERN,
            ctx.key_material.key_info_file,
        )
        RENDITION_ENCODES_TOTAL.labels(rendition="fallback", outcome="ok").inc()
        ctx.succeeded = []
        ctx.used_fallback = True

    def _assemble(self, ctx: JobContext) -> None:
        # The fallback wrote the canonical manifest itself and left succeeded empty
        keep = [ctx.layout.canonical_manifest]

        if len(ctx.succeeded) >= 2:
            write_master_manifest(ctx.layout, ctx.succeeded)
            keep.append(ctx.layout.master_manifest)
        elif len(ctx.succeeded) == 1:
            promote_single_rendition(ctx.layout, ctx.succeeded[0])
        elif not ctx.used_fallback:
            raise EncodeFailedError(
                f"No rendition could be encoded for lesson {ctx.lesson_id}"
            )

        keep.extend(ctx.layout.variant_manifest(r.name) for r in ctx.succeeded)
        discard_stale_manifests(ctx.layout, keep)

    def _probe_duration(self, ctx: JobContext) -> Optional[int]:
        result = self.encoder.probe(ctx.source_path)
        if not result.ok:
            logger.warning(
                "Could not probe video duration",
                extra={"lesson_id": ctx.lesson_id, "error": result.error},
            )
            return None
        return result.duration
