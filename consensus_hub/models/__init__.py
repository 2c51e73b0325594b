"""SQLAlchemy ORM Models for ConsensusHub."""

from .base import Base, TimestampMixin, UTCDateTime, UUIDMixin, utcnow
from .models import (
    # Enums
    ClosureCause,
    DiscussionStatus,
    NotificationType,
    Urgency,
    # Users & membership
    Department,
    Role,
    User,
    UserDepartment,
    UserRole,
    # Discussions
    Discussion,
    DiscussionParticipant,
    Response,
    # Notifications
    Notification,
    ScheduledNotification,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "UTCDateTime",
    "utcnow",
    # Enums
    "Urgency",
    "DiscussionStatus",
    "ClosureCause",
    "NotificationType",
    # Users & membership
    "User",
    "Department",
    "Role",
    "UserDepartment",
    "UserRole",
    # Discussions
    "Discussion",
    "DiscussionParticipant",
    "Response",
    # Notifications
    "Notification",
    "ScheduledNotification",
]
