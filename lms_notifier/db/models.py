import enum
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    String,
    Boolean,
    Integer,
    Text,
    ForeignKey,
    Enum,
    Index,
    func,
    UniqueConstraint,
    CheckConstraint,
    DateTime,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


# Enums
class ActivityType(enum.Enum):
    ASSIGNMENT = "assignment"
    QUIZ = "quiz"
    QUIZ_RESULT = "quiz-result"
    DISCUSSION_BOARD = "discussion-board"
    DISCUSSION_BOARD_RESULT = "discussion-board-result"
    PENDING_FEE = "pending-fee"
    PRACTICAL = "practical"
    UNKNOWN = "unknown"


class NotificationType(enum.Enum):
    START = "start"
    REMINDER = "reminder"


class NotificationStatus(enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# Base model with common audit fields
class AuditMixin:
    """Mixin for common audit fields"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )


# Models
class Subject(Base, AuditMixin):
    """A monitored student. Never deleted; only the destination is refreshed."""

    __tablename__ = "subjects"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    identifier: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    credential_ref: Mapped[Optional[str]] = mapped_column(String(255))
    destination: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    activities: Mapped[List["Activity"]] = relationship(back_populates="subject")
    notifications: Mapped[List["Notification"]] = relationship(
        back_populates="subject"
    )

    __table_args__ = (
        Index("idx_subjects_is_active", "is_active"),
    )


class Activity(Base, AuditMixin):
    """A deadline-bearing item observed for a subject. Immutable after insert."""

    __tablename__ = "activities"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    subject_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("subjects.id"), nullable=False
    )
    course_code: Mapped[str] = mapped_column(String(50), nullable=False)
    activity_type: Mapped[ActivityType] = mapped_column(
        Enum(
            ActivityType,
            values_callable=_enum_values,
            native_enum=False,
            length=40,
        ),
        default=ActivityType.UNKNOWN,
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    start_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    due_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    link: Mapped[str] = mapped_column(Text, nullable=False)
    content_identity: Mapped[str] = mapped_column(String(64), nullable=False)

    # Relationships
    subject: Mapped["Subject"] = relationship(back_populates="activities")
    notifications: Mapped[List["Notification"]] = relationship(
        back_populates="activity"
    )

    __table_args__ = (
        UniqueConstraint("content_identity", name="uq_activities_content_identity"),
        Index("idx_activities_subject_due", "subject_id", "due_at"),
        Index("idx_activities_due_at", "due_at"),
    )


class Notification(Base, AuditMixin):
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    activity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("activities.id"), nullable=False
    )
    subject_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("subjects.id"), nullable=False
    )
    notification_type: Mapped[NotificationType] = mapped_column(
        Enum(
            NotificationType,
            values_callable=_enum_values,
            native_enum=False,
            length=20,
        ),
        nullable=False,
    )
    scheduled_for: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[NotificationStatus] = mapped_column(
        Enum(
            NotificationStatus,
            values_callable=_enum_values,
            native_enum=False,
            length=20,
        ),
        default=NotificationStatus.PENDING,
        nullable=False,
    )
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    error: Mapped[Optional[str]] = mapped_column(Text)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Relationships
    activity: Mapped["Activity"] = relationship(back_populates="notifications")
    subject: Mapped["Subject"] = relationship(back_populates="notifications")

    __table_args__ = (
        UniqueConstraint(
            "activity_id",
            "notification_type",
            name="uq_notifications_activity_type",
        ),
        CheckConstraint("attempts >= 0", name="ck_notifications_attempts"),
        Index("idx_notifications_status_scheduled", "status", "scheduled_for"),
        Index("idx_notifications_subject_id", "subject_id"),
    )
