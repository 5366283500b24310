"""Repositories for lessons, users and subscriptions."""

from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from securehls.modules.lesson.models import Lesson, Subscription, User

# Columns the video pipeline is allowed to write.
VIDEO_FIELDS = frozenset({"video_path", "video_status", "video_duration", "video_size"})


class LessonRepository:
    """Repository for the video fields of a lesson."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, lesson_id: int) -> Optional[Lesson]:
        result = await self.session.execute(
            select(Lesson).where(Lesson.id == lesson_id)
        )
        return result.scalar_one_or_none()

    async def update_video_fields(self, lesson: Lesson, **fields: Any) -> Lesson:
        """Update video fields and commit immediately.

        Status changes are committed right away because the status endpoint
        polls them while the job is still running.

        Raises:
            ValueError: If a non-video column is passed
        """
        unknown = set(fields) - VIDEO_FIELDS
        if unknown:
            raise ValueError(f"Not a video field: {', '.join(sorted(unknown))}")

        for key, value in fields.items():
            setattr(lesson, key, value)

        await self.session.commit()
        await self.session.refresh(lesson)
        return lesson

    async def clear_video(self, lesson: Lesson) -> Lesson:
        """Reset the video asset to unset."""
        return await self.update_video_fields(
            lesson,
            video_path=None,
            video_status=None,
        )


class UserRepository:
    """Read-only access to viewer accounts."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: int) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()


class SubscriptionRepository:
    """Read-only access to course subscriptions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def has_active_subscription(self, user_id: int, course_id: int) -> bool:
        result = await self.session.execute(
            select(Subscription.id)
            .where(
                Subscription.user_id == user_id,
                Subscription.course_id == course_id,
                Subscription.is_active.is_(True),
                Subscription.is_approved.is_(True),
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None
