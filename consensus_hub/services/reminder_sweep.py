"""
Reminder Sweep: delivers scheduled deadline reminders exactly once.

Rows are created when a discussion is created with a reminder lead time
(notify_at = deadline - lead). The sweep runs on an interval, independent of
request handling, and may overlap with itself:

1. Select due rows (sent = false, notify_at <= now)
2. Claim each row: UPDATE ... SET sent = true WHERE id = :id AND sent = false
3. Emit the reminder only if this sweep's claim hit the row

Claim and emission share one transaction, so a crashed sweep leaves the row
unclaimed and a committed one leaves it sent with its notification.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Discussion, DiscussionStatus, ScheduledNotification
from .notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class SweepConfig:
    """Configuration for reminder sweep behavior."""

    # Maximum rows handled per run; the rest wait for the next run
    batch_size: int = 500


DEFAULT_CONFIG = SweepConfig()


@dataclass
class SweepResult:
    """Outcome of one sweep run."""
    dispatched: int = 0
    skipped: int = 0
    claimed_ids: list[UUID] = field(default_factory=list)


# =============================================================================
# REMINDER SWEEP
# =============================================================================


class ReminderSweep:
    """Schedules reminders at creation time and dispatches them when due."""

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: NotificationDispatcher | None = None,
        config: SweepConfig = DEFAULT_CONFIG,
    ):
        self._session = session
        self._dispatcher = dispatcher or NotificationDispatcher(session)
        self._config = config

    async def schedule(
        self,
        discussion: Discussion,
        participant_ids: Iterable[UUID],
        lead_time: timedelta,
    ) -> list[ScheduledNotification]:
        """One reminder per participant at deadline - lead_time. No deadline, no reminders."""
        if discussion.deadline_at is None:
            return []

        notify_at = discussion.deadline_at - lead_time
        rows = [
            ScheduledNotification(
                discussion_id=discussion.id,
                user_id=user_id,
                notify_at=notify_at,
                sent=False,
            )
            for user_id in sorted(set(participant_ids), key=str)
        ]
        self._session.add_all(rows)
        await self._session.flush()

        logger.debug(
            f"Scheduled {len(rows)} reminders for discussion {discussion.id} at {notify_at.isoformat()}"
        )
        return rows

    async def run(self, now: datetime | None = None) -> SweepResult:
        """
        Dispatch every due, unsent reminder this run manages to claim.

        Rows belonging to discussions that are already closed, or whose
        deadline has passed, are claimed and skipped without a message.
        """
        now = now or datetime.now(timezone.utc)
        outcome = SweepResult()

        due_result = await self._session.execute(
            select(
                ScheduledNotification.id,
                ScheduledNotification.discussion_id,
                ScheduledNotification.user_id,
            )
            .where(
                ScheduledNotification.sent.is_(False),
                ScheduledNotification.notify_at <= now,
            )
            .order_by(ScheduledNotification.notify_at.asc())
            .limit(self._config.batch_size)
        )
        due = due_result.all()
        if not due:
            return outcome

        discussions: dict[UUID, Discussion | None] = {}

        for row_id, discussion_id, user_id in due:
            if not await self._claim(row_id, now):
                logger.debug(f"Reminder {row_id} already claimed by another sweep")
                continue
            outcome.claimed_ids.append(row_id)

            if discussion_id not in discussions:
                discussions[discussion_id] = await self._session.get(Discussion, discussion_id)
            discussion = discussions[discussion_id]

            if (
                discussion is None
                or discussion.status == DiscussionStatus.CLOSED
                or (discussion.deadline_at is not None and discussion.deadline_at < now)
            ):
                outcome.skipped += 1
                continue

            await self._dispatcher.notify_reminder(discussion, user_id, now)
            outcome.dispatched += 1

        logger.info(
            f"Reminder sweep: {outcome.dispatched} dispatched, {outcome.skipped} skipped, "
            f"{len(due) - len(outcome.claimed_ids)} lost to concurrent sweeps"
        )
        return outcome

    async def _claim(self, row_id: UUID, now: datetime) -> bool:
        result = await self._session.execute(
            update(ScheduledNotification)
            .where(
                ScheduledNotification.id == row_id,
                ScheduledNotification.sent.is_(False),
            )
            .values(sent=True, sent_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
