"""Who may watch a lesson."""

import logging
from typing import Optional, Protocol

from securehls.modules.delivery.errors import AuthorizationDeniedError
from securehls.modules.lesson.models import Lesson, TargetGender, User

logger = logging.getLogger(__name__)


class SubscriptionLookup(Protocol):
    async def has_active_subscription(self, user_id: int, course_id: int) -> bool: ...


class LessonAccessPolicy:
    """Audience and subscription rules for lesson playback.

    A lesson published for one gender is only visible to viewers of that
    gender. Free lessons are then open to everyone; others need an active,
    approved subscription to the lesson's course.
    """

    def __init__(self, subscriptions: SubscriptionLookup):
        self.subscriptions = subscriptions

    async def can_view(self, user: Optional[User], lesson: Lesson) -> bool:
        if user is None or not user.is_active:
            return False

        if lesson.target_gender != TargetGender.BOTH.value and lesson.target_gender != user.gender:
            return False

        if lesson.is_free:
            return True

        return await self.subscriptions.has_active_subscription(user.id, lesson.course_id)

    async def authorize(self, user: Optional[User], lesson: Lesson) -> None:
        """Raise AuthorizationDeniedError unless the user may view the lesson."""
        if not await self.can_view(user, lesson):
            logger.info(
                "Lesson access denied",
                extra={
                    "lesson_id": lesson.id,
                    "user_id": user.id if user else None,
                },
            )
            raise AuthorizationDeniedError(
                "You do not have permission to watch this lesson"
            )
