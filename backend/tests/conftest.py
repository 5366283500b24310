"""Shared fixtures and fakes for the test suite."""

import math
import os

# Settings requires these; set them before any securehls import.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-hls-tokens")

from pathlib import Path
from typing import Any, Optional

import pytest

from securehls.core.redis import InMemoryKeyValueStore
from securehls.modules.lesson.models import Lesson, TargetGender, User, UserRole
from securehls.modules.lesson.repository import VIDEO_FIELDS
from securehls.modules.transcoding.errors import (
    EncodeFailedError,
    EnvironmentUnavailableError,
)
from securehls.modules.transcoding.ffmpeg import EncodeOutput, ProbeResult
from securehls.modules.transcoding.renditions import Rendition
from securehls.modules.transcoding.storage import LessonVideoLayout

HLS_DIR = "private_videos/hls"


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLessonRepository:
    """In-memory stand-in for LessonRepository."""

    def __init__(self, *lessons: Lesson):
        self.lessons = {lesson.id: lesson for lesson in lessons}
        self.status_history: list[Optional[str]] = []

    async def get_by_id(self, lesson_id: int) -> Optional[Lesson]:
        return self.lessons.get(lesson_id)

    async def update_video_fields(self, lesson: Lesson, **fields: Any) -> Lesson:
        unknown = set(fields) - VIDEO_FIELDS
        if unknown:
            raise ValueError(f"Not a video field: {', '.join(sorted(unknown))}")
        for key, value in fields.items():
            setattr(lesson, key, value)
        if "video_status" in fields:
            self.status_history.append(fields["video_status"])
        return lesson

    async def clear_video(self, lesson: Lesson) -> Lesson:
        return await self.update_video_fields(lesson, video_path=None, video_status=None)


class FakeSubscriptions:
    """Subscription lookup backed by a set of (user_id, course_id)."""

    def __init__(self, *pairs: tuple[int, int]):
        self.pairs = set(pairs)

    async def has_active_subscription(self, user_id: int, course_id: int) -> bool:
        return (user_id, course_id) in self.pairs


def write_playlist(path: Path, segments: list[str], key_uri: str = "/api/v1/lessons/1/key") -> None:
    lines = [
        "#EXTM3U",
        "#EXT-X-VERSION:6",
        "#EXT-X-TARGETDURATION:6",
        "#EXT-X-MEDIA-SEQUENCE:0",
        f'#EXT-X-KEY:METHOD=AES-128,URI="{key_uri}",IV=0x{"0" * 32}',
    ]
    for segment in segments:
        lines.append("#EXTINF:6.000000,")
        lines.append(segment)
    lines.append("#EXT-X-ENDLIST")
    path.write_text("\n".join(lines) + "\n")


class FakeEncoder:
    """Encoder double that writes playlists and empty segments instantly."""

    def __init__(
        self,
        duration: Optional[int] = 60,
        fail: frozenset = frozenset(),
        available: bool = True,
        probe_error: Optional[str] = None,
        write_segments: bool = True,
        segment_seconds: int = 6,
        probe_rejects: bool = False,
        streams: tuple = ("video", "audio"),
    ):
        self.duration = duration
        self.fail = set(fail)
        self.available = available
        self.probe_error = probe_error
        self.write_segments = write_segments
        self.segment_seconds = segment_seconds
        self.probe_rejects = probe_rejects
        self.streams = streams
        self.calls: list[str] = []

    @property
    def segment_count(self) -> int:
        return math.ceil((self.duration or 6) / self.segment_seconds)

    def _write(self, manifest: Path, prefix: str) -> None:
        names = []
        if self.write_segments:
            for i in range(self.segment_count):
                name = f"{prefix}{i:03d}.ts"
                (manifest.parent / name).write_bytes(b"\x47" * 188)
                names.append(name)
        write_playlist(manifest, names)

    def check_available(self) -> str:
        self.calls.append("check")
        if not self.available:
            raise EnvironmentUnavailableError("FFmpeg is not available")
        return "ffmpeg version test"

    def encode_rendition(self, input_path, output_dir, rendition: Rendition, key_info_file) -> EncodeOutput:
        self.calls.append(rendition.name)
        assert Path(key_info_file).is_file()
        if rendition.name in self.fail:
            raise EncodeFailedError(f"Encode {rendition.name} failed", stderr="encoder error")
        manifest = Path(output_dir) / rendition.manifest_name
        self._write(manifest, rendition.segment_prefix)
        return EncodeOutput(manifest_path=manifest, rendition=rendition, elapsed_seconds=0.0)

    def encode_fallback(self, input_path, manifest_path, segment_pattern, key_info_file) -> EncodeOutput:
        self.calls.append("fallback")
        if "fallback" in self.fail:
            raise EncodeFailedError("Encode fallback failed", stderr="encoder error")
        self._write(Path(manifest_path), "segment_")
        return EncodeOutput(manifest_path=Path(manifest_path), rendition=None, elapsed_seconds=0.0)

    def probe(self, input_path) -> ProbeResult:
        self.calls.append("probe")
        if self.probe_rejects:
            return ProbeResult(error="Invalid data found when processing input", rejected=True)
        if self.probe_error:
            return ProbeResult(error=self.probe_error)
        return ProbeResult(data={
            "format": {"duration": f"{self.duration}.040000"},
            "streams": [{"codec_type": codec_type} for codec_type in self.streams],
        })

    @property
    def encode_calls(self) -> list[str]:
        return [c for c in self.calls if c not in ("check", "probe")]


def make_lesson(
    lesson_id: int = 42,
    video_path: Optional[str] = None,
    video_status: Optional[str] = None,
    course_id: int = 7,
    is_free: bool = False,
    target_gender: str = TargetGender.BOTH.value,
) -> Lesson:
    return Lesson(
        id=lesson_id,
        course_id=course_id,
        title=f"Lesson {lesson_id}",
        is_free=is_free,
        target_gender=target_gender,
        video_path=video_path,
        video_status=video_status,
        video_duration=None,
        video_size=None,
    )


def make_user(user_id: int = 5, gender: str = "female", role: str = UserRole.STUDENT.value) -> User:
    return User(id=user_id, gender=gender, role=role, is_active=True)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    root = tmp_path / "storage"
    root.mkdir()
    return root


@pytest.fixture
def layout_factory(storage_root: Path):
    def factory(lesson_id: int) -> LessonVideoLayout:
        return LessonVideoLayout(storage_root=storage_root, hls_dir=HLS_DIR, lesson_id=lesson_id)
    return factory
