"""Lesson catalogue glue: the models and repositories the video pipeline uses."""

from securehls.modules.lesson.models import (
    Lesson,
    Subscription,
    TargetGender,
    User,
    UserRole,
    VideoStatus,
)
from securehls.modules.lesson.repository import (
    LessonRepository,
    SubscriptionRepository,
    UserRepository,
)

__all__ = [
    # Models
    "Lesson",
    "Subscription",
    "TargetGender",
    "User",
    "UserRole",
    "VideoStatus",
    # Repositories
    "LessonRepository",
    "SubscriptionRepository",
    "UserRepository",
]
