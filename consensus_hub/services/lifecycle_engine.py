"""
Lifecycle Engine: the discussion state machine.

    open --(deadline | all_responses | manual)--> closed

closed is terminal. Closure is decided by evaluate_closure(), which is safe to
call redundantly and concurrently from any request handler or job:

1. Triggers are checked in precedence order: a past deadline wins over
   "everyone responded".
2. The row is locked with SELECT ... FOR UPDATE SKIP LOCKED, so a caller
   that finds another transaction holding it returns at once instead of
   waiting for that transaction's analysis call. The transition itself is a
   single conditional UPDATE
   (... SET status = 'closed' WHERE id = :id AND status = 'open').
   Exactly one caller sees rowcount == 1; everyone else gets
   ConcurrencyConflict internally and does nothing further.
3. Only the winner writes the results summary, attempts consensus analysis
   (best-effort, never reverts the closure) and sends one closure
   notification per participant.

All writes go through the caller's session, so the transition and its side
effects commit together.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import and_, exists, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    ClosureCause,
    Discussion,
    DiscussionParticipant,
    DiscussionStatus,
    Response,
)
from ..schemas.analysis import ConsensusAnalysis
from .consensus_analyzer import ConsensusAnalyzerService
from .errors import (
    ConcurrencyConflict,
    DiscussionNotFoundError,
    InvalidOperationError,
    PermissionDeniedError,
)
from .notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class ClosureResult:
    """Outcome of a closure evaluation or manual close."""
    discussion_id: UUID
    closed: bool
    closed_by: ClosureCause | None = None
    results_summary: str | None = None
    analysis: ConsensusAnalysis | None = None
    notifications_sent: int = 0
    already_closed: bool = False


SUMMARY_CAUSE_TEXT = {
    ClosureCause.DEADLINE: "due to deadline expiration",
    ClosureCause.ALL_RESPONSES: "after all participants responded",
    ClosureCause.MANUAL: "manually by the owner",
}


def build_results_summary(cause: ClosureCause, total_responses: int) -> str:
    return (
        f"Discussion closed {SUMMARY_CAUSE_TEXT[cause]}. "
        f"Total responses: {total_responses}"
    )


def determine_closure_cause(
    deadline_at: datetime | None,
    responded_flags: list[bool],
    now: datetime,
) -> ClosureCause | None:
    """First satisfied trigger wins: deadline, then all_responses."""
    if deadline_at is not None and deadline_at < now:
        return ClosureCause.DEADLINE
    if responded_flags and all(responded_flags):
        return ClosureCause.ALL_RESPONSES
    return None


# =============================================================================
# LIFECYCLE ENGINE
# =============================================================================


class LifecycleEngine:
    """
    Owns open -> closed transitions.

    Guarantees:
    1. A closed discussion never reopens
    2. Under any number of concurrent evaluations, one closure summary and
       one closure notification batch are produced
    3. Analysis failure never blocks or reverts a closure
    """

    def __init__(
        self,
        session: AsyncSession,
        analyzer: ConsensusAnalyzerService | None = None,
        dispatcher: NotificationDispatcher | None = None,
    ):
        self._session = session
        self._analyzer = analyzer
        self._dispatcher = dispatcher or NotificationDispatcher(session)

    # =========================================================================
    # EVALUATION
    # =========================================================================

    async def evaluate_closure(
        self,
        discussion_id: UUID,
        now: datetime | None = None,
    ) -> ClosureResult:
        """
        Close the discussion if a trigger holds; otherwise do nothing.

        Returns a ClosureResult with closed=True only for the caller that
        performed the transition.
        """
        now = now or datetime.now(timezone.utc)
        discussion = await self._get_discussion_or_raise(discussion_id)

        if discussion.status == DiscussionStatus.CLOSED:
            return ClosureResult(
                discussion_id=discussion_id,
                closed=False,
                closed_by=discussion.closed_by,
                results_summary=discussion.results_summary,
                already_closed=True,
            )

        flags = await self._responded_flags(discussion_id)
        cause = determine_closure_cause(discussion.deadline_at, flags, now)
        if cause is None:
            return ClosureResult(discussion_id=discussion_id, closed=False)

        if not await self._lock_if_open(discussion_id):
            logger.debug(f"Discussion {discussion_id} is locked by another transaction")
            return ClosureResult(discussion_id=discussion_id, closed=False)

        try:
            await self._claim_closure(discussion_id, cause, now)
        except ConcurrencyConflict:
            logger.debug(f"Discussion {discussion_id} already closed by another caller")
            return ClosureResult(discussion_id=discussion_id, closed=False, already_closed=True)

        return await self._finalize_closure(discussion_id, cause)

    async def close_manually(
        self,
        discussion_id: UUID,
        user_id: UUID,
        now: datetime | None = None,
    ) -> ClosureResult:
        """
        Owner-initiated closure.

        Raises:
            PermissionDeniedError: caller is not the owner
            InvalidOperationError: discussion is already closed
            ConcurrencyConflict: it was closed concurrently
        """
        now = now or datetime.now(timezone.utc)
        discussion = await self._get_discussion_or_raise(discussion_id)

        if discussion.owner_id != user_id:
            raise PermissionDeniedError("Only the discussion owner can close it")
        if discussion.status == DiscussionStatus.CLOSED:
            raise InvalidOperationError("Discussion is already closed")

        await self._claim_closure(discussion_id, ClosureCause.MANUAL, now)
        return await self._finalize_closure(discussion_id, ClosureCause.MANUAL)

    async def due_for_closure(self, now: datetime | None = None) -> list[UUID]:
        """
        Ids of open discussions a closure trigger already holds for.

        Covers past deadlines and discussions where every participant has
        responded but no evaluation closed them (e.g. two final submissions
        that committed side by side).
        """
        now = now or datetime.now(timezone.utc)
        has_participants = exists().where(DiscussionParticipant.discussion_id == Discussion.id)
        has_unanswered = exists().where(
            DiscussionParticipant.discussion_id == Discussion.id,
            DiscussionParticipant.responded.is_(False),
        )
        result = await self._session.execute(
            select(Discussion.id)
            .where(
                Discussion.status == DiscussionStatus.OPEN,
                or_(
                    and_(Discussion.deadline_at.isnot(None), Discussion.deadline_at < now),
                    and_(has_participants, ~has_unanswered),
                ),
            )
            .order_by(Discussion.created_at.asc())
        )
        return list(result.scalars().all())

    async def close_expired_discussions(
        self,
        now: datetime | None = None,
    ) -> list[ClosureResult]:
        """
        Evaluate every open discussion returned by due_for_closure().

        Called by the periodic job so deadlines close even when nobody
        visits the discussion.
        """
        now = now or datetime.now(timezone.utc)
        closed = []
        for discussion_id in await self.due_for_closure(now):
            outcome = await self.evaluate_closure(discussion_id, now=now)
            if outcome.closed:
                closed.append(outcome)
        return closed

    # =========================================================================
    # TRANSITION
    # =========================================================================

    async def _lock_if_open(self, discussion_id: UUID) -> bool:
        """
        Row-lock the discussion without waiting.

        False when it is no longer open or another transaction holds the
        lock. SQLite has no row locks and always reports an open row.
        """
        result = await self._session.execute(
            select(Discussion.id)
            .where(
                Discussion.id == discussion_id,
                Discussion.status == DiscussionStatus.OPEN,
            )
            .with_for_update(skip_locked=True)
        )
        return result.scalar_one_or_none() is not None

    async def _claim_closure(
        self,
        discussion_id: UUID,
        cause: ClosureCause,
        now: datetime,
    ) -> None:
        """Compare-and-swap open -> closed. Raises ConcurrencyConflict on loss."""
        result = await self._session.execute(
            update(Discussion)
            .where(
                Discussion.id == discussion_id,
                Discussion.status == DiscussionStatus.OPEN,
            )
            .values(
                status=DiscussionStatus.CLOSED,
                closed_by=cause,
                closed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrencyConflict(f"Discussion {discussion_id} is no longer open")

        logger.info(f"Discussion {discussion_id} closed ({cause.value})")

    async def _finalize_closure(
        self,
        discussion_id: UUID,
        cause: ClosureCause,
    ) -> ClosureResult:
        """Side effects reserved for the caller that won the transition."""
        discussion = await self._get_discussion_or_raise(discussion_id)
        texts = await self._ordered_response_texts(discussion_id)

        discussion.results_summary = build_results_summary(cause, len(texts))

        analysis = await self._try_analysis(discussion, texts)
        if analysis is not None:
            discussion.ai_analysis = analysis.model_dump()
        await self._session.flush()

        participant_ids = await self._participant_ids(discussion_id)
        notifications = await self._dispatcher.notify_closure(
            discussion, participant_ids, analysis
        )

        return ClosureResult(
            discussion_id=discussion_id,
            closed=True,
            closed_by=cause,
            results_summary=discussion.results_summary,
            analysis=analysis,
            notifications_sent=len(notifications),
        )

    async def _try_analysis(
        self,
        discussion: Discussion,
        texts: list[str],
    ) -> ConsensusAnalysis | None:
        if self._analyzer is None or not texts:
            return None
        try:
            return await self._analyzer.analyze_best_effort(discussion.prompt, texts)
        except Exception:
            # The closure stands no matter what the analyzer does
            logger.exception(f"Unexpected analysis failure for discussion {discussion.id}")
            return None

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _get_discussion_or_raise(self, discussion_id: UUID) -> Discussion:
        result = await self._session.execute(
            select(Discussion)
            .where(Discussion.id == discussion_id)
            .execution_options(populate_existing=True)
        )
        discussion = result.scalar_one_or_none()
        if discussion is None:
            raise DiscussionNotFoundError(f"Discussion {discussion_id} not found")
        return discussion

    async def _responded_flags(self, discussion_id: UUID) -> list[bool]:
        result = await self._session.execute(
            select(DiscussionParticipant.responded).where(
                DiscussionParticipant.discussion_id == discussion_id
            )
        )
        return list(result.scalars().all())

    async def _participant_ids(self, discussion_id: UUID) -> list[UUID]:
        result = await self._session.execute(
            select(DiscussionParticipant.user_id).where(
                DiscussionParticipant.discussion_id == discussion_id
            )
        )
        return list(result.scalars().all())

    async def _ordered_response_texts(self, discussion_id: UUID) -> list[str]:
        result = await self._session.execute(
            select(Response.text)
            .where(Response.discussion_id == discussion_id)
            .order_by(Response.created_at.asc(), Response.id.asc())
        )
        return list(result.scalars().all())
