"""SQLAlchemy ORM Models for ConsensusHub.

Membership tables (users, departments, roles) are read-only to the
discussion engine. Discussions, participants, responses and notifications
are owned by it.
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, JSONType, TimestampMixin, UTCDateTime, UUIDMixin, utcnow


# =============================================================================
# ENUMS
# =============================================================================


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


class Urgency(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DiscussionStatus(str, PyEnum):
    OPEN = "open"
    CLOSED = "closed"  # Terminal


class ClosureCause(str, PyEnum):
    DEADLINE = "deadline"
    ALL_RESPONSES = "all_responses"
    MANUAL = "manual"


class NotificationType(str, PyEnum):
    INVITATION = "invitation"
    CLOSURE = "closure"
    REMINDER = "reminder"


# =============================================================================
# USERS & MEMBERSHIP
# =============================================================================


class User(Base, UUIDMixin):
    """Application user."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    department_memberships: Mapped[list["UserDepartment"]] = relationship(
        back_populates="user"
    )
    role_memberships: Mapped[list["UserRole"]] = relationship(back_populates="user")


class Department(Base, UUIDMixin):
    """Organizational department."""

    __tablename__ = "departments"

    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)

    members: Mapped[list["UserDepartment"]] = relationship(back_populates="department")


class Role(Base, UUIDMixin):
    """Job role that cuts across departments."""

    __tablename__ = "roles"

    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)

    members: Mapped[list["UserRole"]] = relationship(back_populates="role")


class UserDepartment(Base, UUIDMixin):
    __tablename__ = "user_departments"

    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    department_id: Mapped[UUID] = mapped_column(
        ForeignKey("departments.id", ondelete="CASCADE"), nullable=False
    )

    user: Mapped["User"] = relationship(back_populates="department_memberships")
    department: Mapped["Department"] = relationship(back_populates="members")

    __table_args__ = (
        UniqueConstraint("user_id", "department_id"),
        Index("idx_user_departments_department", "department_id"),
    )


class UserRole(Base, UUIDMixin):
    __tablename__ = "user_roles"

    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    role_id: Mapped[UUID] = mapped_column(
        ForeignKey("roles.id", ondelete="CASCADE"), nullable=False
    )

    user: Mapped["User"] = relationship(back_populates="role_memberships")
    role: Mapped["Role"] = relationship(back_populates="members")

    __table_args__ = (
        UniqueConstraint("user_id", "role_id"),
        Index("idx_user_roles_role", "role_id"),
    )


# =============================================================================
# DISCUSSIONS
# =============================================================================


class Discussion(Base, UUIDMixin, TimestampMixin):
    """A question posed to a fixed audience.

    status/closed_by/closed_at/results_summary are written only by the
    lifecycle engine; ai_analysis additionally by on-demand analysis.
    """

    __tablename__ = "discussions"

    owner_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    start_date: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    deadline_at: Mapped[datetime | None] = mapped_column()
    urgency: Mapped[Urgency] = mapped_column(
        Enum(Urgency, name="urgency", values_callable=_enum_values),
        default=Urgency.MEDIUM,
        nullable=False,
    )
    allow_anonymous: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    likes_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[DiscussionStatus] = mapped_column(
        Enum(DiscussionStatus, name="discussion_status", values_callable=_enum_values),
        default=DiscussionStatus.OPEN,
        nullable=False,
    )
    closed_by: Mapped[ClosureCause | None] = mapped_column(
        Enum(ClosureCause, name="closure_cause", values_callable=_enum_values),
        nullable=True,
    )
    closed_at: Mapped[datetime | None] = mapped_column()
    results_summary: Mapped[str | None] = mapped_column(Text)
    ai_analysis: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    # Relationships
    owner: Mapped["User"] = relationship(foreign_keys=[owner_id])
    participants: Mapped[list["DiscussionParticipant"]] = relationship(
        back_populates="discussion"
    )
    responses: Mapped[list["Response"]] = relationship(back_populates="discussion")

    __table_args__ = (
        Index("idx_discussions_owner", "owner_id"),
        Index("idx_discussions_status_deadline", "status", "deadline_at"),
    )

    @property
    def is_open(self) -> bool:
        return self.status == DiscussionStatus.OPEN


class DiscussionParticipant(Base, UUIDMixin):
    """Fixed audience member. responded only ever flips false -> true."""

    __tablename__ = "discussion_participants"

    discussion_id: Mapped[UUID] = mapped_column(
        ForeignKey("discussions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    invited_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    responded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    responded_at: Mapped[datetime | None] = mapped_column()

    discussion: Mapped["Discussion"] = relationship(back_populates="participants")
    user: Mapped["User"] = relationship()

    __table_args__ = (
        UniqueConstraint("discussion_id", "user_id"),
        Index("idx_participants_user", "user_id"),
    )


class Response(Base, UUIDMixin):
    """A participant's answer. One per (discussion, user)."""

    __tablename__ = "responses"

    discussion_id: Mapped[UUID] = mapped_column(
        ForeignKey("discussions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    is_anonymous: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    discussion: Mapped["Discussion"] = relationship(back_populates="responses")
    author: Mapped["User"] = relationship()

    __table_args__ = (
        UniqueConstraint("discussion_id", "user_id"),
        Index("idx_responses_discussion_created", "discussion_id", "created_at"),
    )


# =============================================================================
# NOTIFICATIONS
# =============================================================================


class Notification(Base, UUIDMixin):
    """In-app message. Append-only apart from the read flag."""

    __tablename__ = "notifications"

    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    discussion_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("discussions.id", ondelete="CASCADE"), nullable=True
    )
    notification_type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType, name="notification_type", values_callable=_enum_values),
        nullable=False,
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_notifications_user_created", "user_id", "created_at"),
        Index("idx_notifications_discussion", "discussion_id"),
    )


class ScheduledNotification(Base, UUIDMixin):
    """Deadline reminder due at notify_at. Consumed exactly once."""

    __tablename__ = "scheduled_notifications"

    discussion_id: Mapped[UUID] = mapped_column(
        ForeignKey("discussions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    notify_at: Mapped[datetime] = mapped_column(nullable=False)
    sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column()

    discussion: Mapped["Discussion"] = relationship()

    __table_args__ = (
        UniqueConstraint("discussion_id", "user_id"),
        Index("idx_scheduled_notifications_due", "sent", "notify_at"),
    )
