"""Tests for the lesson repository's write guard."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import make_lesson
from securehls.modules.lesson.models import VideoStatus
from securehls.modules.lesson.repository import LessonRepository


@pytest.fixture
def session() -> MagicMock:
    session = MagicMock()
    session.commit = AsyncMock()
    session.refresh = AsyncMock()
    return session


class TestUpdateVideoFields:
    """Only the video columns may be written."""

    @pytest.mark.asyncio
    async def test_updates_and_commits(self, session) -> None:
        lesson = make_lesson()

        await LessonRepository(session).update_video_fields(
            lesson, video_status=VideoStatus.READY.value, video_duration=600
        )

        assert lesson.video_status == VideoStatus.READY.value
        assert lesson.video_duration == 600
        session.commit.assert_awaited_once()
        session.refresh.assert_awaited_once_with(lesson)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["title", "is_free", "course_id", "target_gender"])
    async def test_rejects_other_columns(self, session, field: str) -> None:
        lesson = make_lesson()

        with pytest.raises(ValueError):
            await LessonRepository(session).update_video_fields(lesson, **{field: "x"})

        session.commit.assert_not_awaited()
        assert lesson.title == "Lesson 42"

    @pytest.mark.asyncio
    async def test_clear_video(self, session) -> None:
        lesson = make_lesson(video_path="private_videos/hls/lesson_42/index.m3u8", video_status="ready")

        await LessonRepository(session).clear_video(lesson)

        assert lesson.video_path is None
        assert lesson.video_status is None
