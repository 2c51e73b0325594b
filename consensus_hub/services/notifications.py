"""
Notification Dispatcher: in-app messages for discussion lifecycle events.

Three event classes, each with its own template:
1. Invitation - once per resolved participant when a discussion is created
2. Closure - once per participant when the lifecycle engine closes it
3. Reminder - once per scheduled row, emitted by the reminder sweep

Dispatch only appends rows to the caller's session; the caller's transaction
decides whether a whole batch lands or none of it does.
"""

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Discussion, Notification, NotificationType, Urgency
from ..schemas.analysis import ConsensusAnalysis
from .errors import NotificationNotFoundError

logger = logging.getLogger(__name__)


# =============================================================================
# MESSAGE TEMPLATES
# =============================================================================


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'}"


def format_time_remaining(deadline: datetime | None, now: datetime) -> str:
    """Human-readable time left before a deadline, as shown in invitations."""
    if deadline is None:
        return "No deadline"

    remaining = (deadline - now).total_seconds()
    if remaining < 0:
        return "Expired"

    days, rest = divmod(int(remaining), 86400)
    hours, rest = divmod(rest, 3600)
    minutes = rest // 60

    if days > 0:
        return (
            f"{_plural(days, 'day')}, {_plural(hours, 'hour')}, "
            f"{_plural(minutes, 'minute')} left"
        )
    return f"{_plural(hours, 'hour')}, {_plural(minutes, 'minute')} left"


def format_reminder_time(deadline: datetime, now: datetime) -> str:
    """Minutes (rounded up) under an hour, otherwise rounded-up hours."""
    minutes = max(0, math.ceil((deadline - now).total_seconds() / 60))
    if minutes < 60:
        return _plural(minutes, "minute")
    return _plural(math.ceil(minutes / 60), "hour")


def invitation_message(
    inviter_name: str,
    title: str,
    deadline: datetime | None,
    urgency: Urgency | str,
    now: datetime,
) -> str:
    urgency_text = Urgency(urgency).value.upper()
    return (
        f'{inviter_name} invited you to "{title}" - '
        f"{format_time_remaining(deadline, now)} to respond | Urgency: {urgency_text}"
    )


def closure_message(
    title: str,
    results_summary: str,
    analysis: ConsensusAnalysis | None,
) -> str:
    if analysis is not None:
        outcome = f"Consensus reached: {analysis.consensus.label}"
    else:
        outcome = results_summary
    return f'Discussion "{title}" has been closed. {outcome}'


def reminder_message(title: str, deadline: datetime, now: datetime) -> str:
    return f'⏰ Reminder: "{title}" deadline in {format_reminder_time(deadline, now)}'


# =============================================================================
# DISPATCHER
# =============================================================================


@dataclass
class NotificationMessage:
    """One message addressed to one user."""
    user_id: UUID
    discussion_id: UUID | None
    notification_type: NotificationType
    message: str


class NotificationDispatcher:
    """Appends unread Notification rows, one per message."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def dispatch(self, messages: Iterable[NotificationMessage]) -> list[Notification]:
        notifications = [
            Notification(
                user_id=m.user_id,
                discussion_id=m.discussion_id,
                notification_type=m.notification_type,
                message=m.message,
                read=False,
            )
            for m in messages
        ]
        if not notifications:
            return []

        self._session.add_all(notifications)
        await self._session.flush()
        return notifications

    async def notify_invitations(
        self,
        discussion: Discussion,
        inviter_name: str,
        participant_ids: Iterable[UUID],
        now: datetime | None = None,
    ) -> list[Notification]:
        now = now or datetime.now(timezone.utc)
        text = invitation_message(
            inviter_name, discussion.title, discussion.deadline_at, discussion.urgency, now
        )
        notifications = await self.dispatch(
            NotificationMessage(
                user_id=user_id,
                discussion_id=discussion.id,
                notification_type=NotificationType.INVITATION,
                message=text,
            )
            for user_id in sorted(set(participant_ids), key=str)
        )
        logger.info(
            f"Sent {len(notifications)} invitations for discussion {discussion.id}"
        )
        return notifications

    async def notify_closure(
        self,
        discussion: Discussion,
        participant_ids: Iterable[UUID],
        analysis: ConsensusAnalysis | None,
    ) -> list[Notification]:
        text = closure_message(
            discussion.title, discussion.results_summary or "", analysis
        )
        notifications = await self.dispatch(
            NotificationMessage(
                user_id=user_id,
                discussion_id=discussion.id,
                notification_type=NotificationType.CLOSURE,
                message=text,
            )
            for user_id in sorted(set(participant_ids), key=str)
        )
        logger.info(
            f"Sent {len(notifications)} closure notifications for discussion {discussion.id}"
        )
        return notifications

    async def notify_reminder(
        self,
        discussion: Discussion,
        user_id: UUID,
        now: datetime,
    ) -> Notification:
        deadline = discussion.deadline_at or now
        [notification] = await self.dispatch([
            NotificationMessage(
                user_id=user_id,
                discussion_id=discussion.id,
                notification_type=NotificationType.REMINDER,
                message=reminder_message(discussion.title, deadline, now),
            )
        ])
        return notification

    # =========================================================================
    # INBOX
    # =========================================================================

    async def list_for_user(
        self,
        user_id: UUID,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Notification]:
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.read.is_(False))
        query = (
            query.order_by(Notification.created_at.desc(), Notification.id)
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def mark_read(self, notification_id: UUID, user_id: UUID) -> Notification:
        result = await self._session.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")

        notification.read = True
        await self._session.flush()
        return notification

    async def mark_all_read(self, user_id: UUID) -> int:
        result = await self._session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
            .values(read=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
