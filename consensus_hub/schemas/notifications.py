"""Pydantic schemas for the notification inbox."""

from datetime import datetime
from uuid import UUID

from .base import HubBaseModel, NotificationType


class NotificationOut(HubBaseModel):
    """A single in-app notification."""

    id: UUID
    user_id: UUID
    discussion_id: UUID | None = None
    notification_type: NotificationType
    message: str
    read: bool
    created_at: datetime


class MarkAllReadResult(HubBaseModel):
    updated: int


class ReminderJobResult(HubBaseModel):
    """Outcome of one scheduled-notification run."""

    discussions_closed: int
    reminders_dispatched: int
    reminders_skipped: int
