"""Lesson, user and subscription models.

These tables belong to the course catalogue; this service only maps the
columns it reads, and only ever writes the ``video_*`` columns of a lesson.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from securehls.core.database import Base


class VideoStatus(str, Enum):
    """Processing status of a lesson video. ``None`` in the column means unset."""

    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class TargetGender(str, Enum):
    """Audience a lesson is published for."""

    MALE = "male"
    FEMALE = "female"
    BOTH = "both"


class UserRole(str, Enum):
    """Roles relevant to video management."""

    ADMIN = "admin"
    STUDENT = "student"


class User(Base):
    """Viewer account (read-only here)."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    gender: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    role: Mapped[str] = mapped_column(String(20), default=UserRole.STUDENT.value)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    def __repr__(self) -> str:
        return f"<User {self.id} - {self.role}>"


class Lesson(Base):
    """Lesson with its video asset fields."""

    __tablename__ = "lessons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    course_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    is_free: Mapped[bool] = mapped_column(Boolean, default=False)
    target_gender: Mapped[str] = mapped_column(
        String(10), default=TargetGender.BOTH.value
    )

    # Video asset
    video_path: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    video_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    video_duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # seconds
    video_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)  # bytes

    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<Lesson {self.id} - video: {self.video_status}>"


class Subscription(Base):
    """Course subscription (read-only here)."""

    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    course_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    is_approved: Mapped[bool] = mapped_column(Boolean, default=False)
