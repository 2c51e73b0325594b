"""Discussion service: creation, responses, viewing and on-demand analysis.

This is the entry point request handlers use. It wires the audience
resolver, moderation, the lifecycle engine, the notification dispatcher and
the reminder scheduler together inside the caller's session.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    Discussion,
    DiscussionParticipant,
    DiscussionStatus,
    Response,
    Urgency,
    User,
)
from ..schemas.analysis import ConsensusAnalysis
from .audience import AudienceCriteria, AudienceResolver, MembershipDirectory, SqlMembershipDirectory
from .consensus_analyzer import ConsensusAnalyzerService
from .errors import (
    AnalysisUnavailableError,
    ContentRejectedError,
    DiscussionNotFoundError,
    DuplicateResponseError,
    InvalidOperationError,
    PermissionDeniedError,
    ValidationError,
)
from .lifecycle_engine import ClosureResult, LifecycleEngine
from .moderation import ModerationService
from .notifications import NotificationDispatcher
from .reminder_sweep import ReminderSweep

logger = logging.getLogger(__name__)


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class CreateDiscussionInput:
    """Input for creating a discussion."""
    title: str
    prompt: str
    user_ids: list[UUID] = field(default_factory=list)
    department_ids: list[UUID] = field(default_factory=list)
    role_ids: list[UUID] = field(default_factory=list)
    creator_participates: bool = False
    start_date: datetime | None = None
    deadline_at: datetime | None = None
    urgency: Urgency = Urgency.MEDIUM
    allow_anonymous: bool = False
    likes_enabled: bool = False
    reminder_lead_minutes: int | None = None


@dataclass
class SubmitResponseInput:
    """Input for answering a discussion."""
    text: str
    is_anonymous: bool = False


@dataclass
class CreatedDiscussion:
    discussion: Discussion
    participant_ids: list[UUID]
    invitations_sent: int
    reminders_scheduled: int


@dataclass
class SubmittedResponse:
    response: Response
    closure: ClosureResult


@dataclass
class DiscussionView:
    """A discussion as seen by one user."""
    discussion: Discussion
    participant_count: int
    response_count: int
    is_owner: bool
    is_participant: bool
    user_responded: bool


# =============================================================================
# DISCUSSION SERVICE
# =============================================================================


class DiscussionService:
    """Request-scoped orchestration over one session."""

    def __init__(
        self,
        session: AsyncSession,
        analyzer: ConsensusAnalyzerService | None = None,
        moderation: ModerationService | None = None,
        directory: MembershipDirectory | None = None,
    ):
        self._session = session
        self._analyzer = analyzer
        self._moderation = moderation
        self._dispatcher = NotificationDispatcher(session)
        self._resolver = AudienceResolver(directory or SqlMembershipDirectory(session))
        self._lifecycle = LifecycleEngine(session, analyzer=analyzer, dispatcher=self._dispatcher)
        self._reminders = ReminderSweep(session, dispatcher=self._dispatcher)

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_discussion(
        self,
        input: CreateDiscussionInput,
        creator: User,
        now: datetime | None = None,
    ) -> CreatedDiscussion:
        """
        Create a discussion with its fixed audience.

        Flow:
        1. Validate fields and resolve the audience (nothing persisted yet)
        2. Insert the discussion and one participant row per resolved user
        3. Send invitations
        4. Schedule deadline reminders when a lead time was requested

        Raises:
            ValidationError: invalid fields or audience
        """
        now = now or datetime.now(timezone.utc)
        self._validate_create_input(input, now)

        audience = await self._resolver.resolve(
            AudienceCriteria(
                creator_id=creator.id,
                user_ids=input.user_ids,
                department_ids=input.department_ids,
                role_ids=input.role_ids,
                creator_participates=input.creator_participates,
            )
        )
        participant_ids = sorted(audience.participant_ids, key=str)

        discussion = Discussion(
            owner_id=creator.id,
            title=input.title.strip(),
            prompt=input.prompt.strip(),
            start_date=input.start_date or now,
            deadline_at=input.deadline_at,
            urgency=input.urgency,
            allow_anonymous=input.allow_anonymous,
            likes_enabled=input.likes_enabled,
            status=DiscussionStatus.OPEN,
        )
        self._session.add(discussion)
        await self._session.flush()  # Get the ID

        self._session.add_all(
            DiscussionParticipant(
                discussion_id=discussion.id,
                user_id=user_id,
                invited_at=now,
                responded=False,
            )
            for user_id in participant_ids
        )
        await self._session.flush()

        invitations = await self._dispatcher.notify_invitations(
            discussion, creator.name, participant_ids, now=now
        )

        reminders = []
        if input.reminder_lead_minutes:
            reminders = await self._reminders.schedule(
                discussion,
                participant_ids,
                timedelta(minutes=input.reminder_lead_minutes),
            )

        logger.info(
            f"Discussion {discussion.id} created by {creator.id} with "
            f"{len(participant_ids)} participants"
        )

        return CreatedDiscussion(
            discussion=discussion,
            participant_ids=participant_ids,
            invitations_sent=len(invitations),
            reminders_scheduled=len(reminders),
        )

    def _validate_create_input(self, input: CreateDiscussionInput, now: datetime) -> None:
        if not input.title or not input.title.strip():
            raise ValidationError("Title is required")
        if not input.prompt or not input.prompt.strip():
            raise ValidationError("Prompt is required")

        start = input.start_date or now
        if input.deadline_at is not None:
            if input.deadline_at <= now:
                raise ValidationError("Deadline must be in the future")
            if input.deadline_at <= start:
                raise ValidationError("Deadline must be after the start date")

        if input.reminder_lead_minutes is not None and input.reminder_lead_minutes <= 0:
            raise ValidationError("Reminder lead time must be positive")

    # =========================================================================
    # RESPONSES
    # =========================================================================

    async def submit_response(
        self,
        discussion_id: UUID,
        user_id: UUID,
        input: SubmitResponseInput,
        now: datetime | None = None,
    ) -> SubmittedResponse:
        """
        Record a participant's response, then evaluate closure.

        The discussion row is locked first, so final submissions run one after
        another and the last of them sees every responded flag. Moderation
        runs before anything is written. A submission after the deadline
        commits the deadline closure before it is rejected.

        Raises:
            DiscussionNotFoundError, PermissionDeniedError, ValidationError,
            InvalidOperationError, DuplicateResponseError, ContentRejectedError,
            ModerationUnavailableError
        """
        now = now or datetime.now(timezone.utc)
        discussion = await self._get_discussion_or_raise(discussion_id, lock=True)

        participant = await self._get_participant(discussion_id, user_id)
        if participant is None:
            raise PermissionDeniedError("Only invited participants can respond")

        if discussion.status == DiscussionStatus.CLOSED:
            raise InvalidOperationError("Discussion is closed")
        if discussion.start_date > now:
            raise InvalidOperationError("Discussion has not started yet")
        if discussion.deadline_at is not None and discussion.deadline_at < now:
            await self._lifecycle.evaluate_closure(discussion_id, now=now)
            await self._session.commit()
            raise InvalidOperationError("The deadline for this discussion has passed")

        text = (input.text or "").strip()
        if not text:
            raise ValidationError("Please enter a response")
        if input.is_anonymous and not discussion.allow_anonymous:
            raise ValidationError("This discussion does not allow anonymous responses")

        if participant.responded or await self._has_response(discussion_id, user_id):
            raise DuplicateResponseError("You have already responded to this discussion")

        if self._moderation is not None:
            verdict = await self._moderation.check(discussion.prompt, text)
            if not verdict.permitted:
                logger.info(f"Response by {user_id} to {discussion_id} rejected by moderation")
                raise ContentRejectedError(verdict.user_message, verdict.reason)

        response = Response(
            discussion_id=discussion_id,
            user_id=user_id,
            text=text,
            is_anonymous=input.is_anonymous,
            created_at=now,
        )
        self._session.add(response)
        try:
            await self._session.flush()
        except IntegrityError as e:
            # Concurrent duplicate submission hit the unique constraint
            raise DuplicateResponseError(
                "You have already responded to this discussion"
            ) from e

        await self._session.execute(
            update(DiscussionParticipant)
            .where(
                DiscussionParticipant.discussion_id == discussion_id,
                DiscussionParticipant.user_id == user_id,
                DiscussionParticipant.responded.is_(False),
            )
            .values(responded=True, responded_at=now)
            .execution_options(synchronize_session=False)
        )

        closure = await self._lifecycle.evaluate_closure(discussion_id, now=now)
        return SubmittedResponse(response=response, closure=closure)

    async def list_responses(self, discussion_id: UUID, user_id: UUID) -> list[Response]:
        """Responses in submission order, for the owner and participants."""
        await self.get_discussion(discussion_id, user_id, evaluate=False)
        result = await self._session.execute(
            select(Response)
            .where(Response.discussion_id == discussion_id)
            .order_by(Response.created_at.asc(), Response.id.asc())
        )
        return list(result.scalars().all())

    # =========================================================================
    # VIEWING
    # =========================================================================

    async def get_discussion(
        self,
        discussion_id: UUID,
        user_id: UUID,
        now: datetime | None = None,
        evaluate: bool = True,
    ) -> DiscussionView:
        """
        Load a discussion for its owner or a participant.

        Viewing an open discussion re-evaluates closure, so an expired
        deadline closes it on first view.
        """
        discussion = await self._get_discussion_or_raise(discussion_id)
        participant = await self._get_participant(discussion_id, user_id)
        is_owner = discussion.owner_id == user_id

        if not is_owner and participant is None:
            raise PermissionDeniedError("You are not part of this discussion")

        if evaluate and discussion.status == DiscussionStatus.OPEN:
            outcome = await self._lifecycle.evaluate_closure(discussion_id, now=now)
            if outcome.closed or outcome.already_closed:
                discussion = await self._get_discussion_or_raise(discussion_id)

        return await self._build_view(discussion, user_id, participant)

    async def list_discussions_for_user(
        self,
        user_id: UUID,
        now: datetime | None = None,
    ) -> list[DiscussionView]:
        """Discussions the user owns or participates in, newest first."""
        participating = select(DiscussionParticipant.discussion_id).where(
            DiscussionParticipant.user_id == user_id
        )
        result = await self._session.execute(
            select(Discussion)
            .where(or_(Discussion.owner_id == user_id, Discussion.id.in_(participating)))
            .order_by(Discussion.created_at.desc())
        )
        discussions = list(result.scalars().all())

        views = []
        for discussion in discussions:
            if discussion.status == DiscussionStatus.OPEN:
                outcome = await self._lifecycle.evaluate_closure(discussion.id, now=now)
                if outcome.closed or outcome.already_closed:
                    discussion = await self._get_discussion_or_raise(discussion.id)
            participant = await self._get_participant(discussion.id, user_id)
            views.append(await self._build_view(discussion, user_id, participant))
        return views

    async def close_discussion(self, discussion_id: UUID, user_id: UUID) -> ClosureResult:
        """Owner closes the discussion now."""
        return await self._lifecycle.close_manually(discussion_id, user_id)

    # =========================================================================
    # ON-DEMAND ANALYSIS
    # =========================================================================

    async def regenerate_analysis(
        self,
        discussion_id: UUID,
        user_id: UUID,
    ) -> ConsensusAnalysis:
        """
        (Re)generate consensus analysis for a closed discussion.

        Unlike the closure path, failures propagate to the caller.

        Raises:
            InvalidOperationError: discussion open or without responses
            AnalysisUnavailableError: analyzer missing or failed
        """
        view = await self.get_discussion(discussion_id, user_id, evaluate=False)
        discussion = view.discussion

        if discussion.status != DiscussionStatus.CLOSED:
            raise InvalidOperationError("Analysis is only available once the discussion is closed")

        result = await self._session.execute(
            select(Response.text)
            .where(Response.discussion_id == discussion_id)
            .order_by(Response.created_at.asc(), Response.id.asc())
        )
        texts = list(result.scalars().all())
        if not texts:
            raise InvalidOperationError("No responses to analyze")
        if self._analyzer is None:
            raise AnalysisUnavailableError("Consensus analysis is not configured")

        analysis = await self._analyzer.analyze(discussion.prompt, texts)
        discussion.ai_analysis = analysis.model_dump()
        await self._session.flush()

        logger.info(f"Regenerated analysis for discussion {discussion_id}")
        return analysis

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _get_discussion_or_raise(
        self, discussion_id: UUID, lock: bool = False
    ) -> Discussion:
        query = (
            select(Discussion)
            .where(Discussion.id == discussion_id)
            .execution_options(populate_existing=True)
        )
        if lock:
            query = query.with_for_update()
        result = await self._session.execute(query)
        discussion = result.scalar_one_or_none()
        if discussion is None:
            raise DiscussionNotFoundError(f"Discussion {discussion_id} not found")
        return discussion

    async def _get_participant(
        self, discussion_id: UUID, user_id: UUID
    ) -> DiscussionParticipant | None:
        result = await self._session.execute(
            select(DiscussionParticipant)
            .where(
                DiscussionParticipant.discussion_id == discussion_id,
                DiscussionParticipant.user_id == user_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _has_response(self, discussion_id: UUID, user_id: UUID) -> bool:
        result = await self._session.execute(
            select(func.count())
            .select_from(Response)
            .where(Response.discussion_id == discussion_id, Response.user_id == user_id)
        )
        return result.scalar_one() > 0

    async def _build_view(
        self,
        discussion: Discussion,
        user_id: UUID,
        participant: DiscussionParticipant | None,
    ) -> DiscussionView:
        participant_count = (
            await self._session.execute(
                select(func.count())
                .select_from(DiscussionParticipant)
                .where(DiscussionParticipant.discussion_id == discussion.id)
            )
        ).scalar_one()
        response_count = (
            await self._session.execute(
                select(func.count())
                .select_from(Response)
                .where(Response.discussion_id == discussion.id)
            )
        ).scalar_one()

        return DiscussionView(
            discussion=discussion,
            participant_count=participant_count,
            response_count=response_count,
            is_owner=discussion.owner_id == user_id,
            is_participant=participant is not None,
            user_responded=bool(participant and participant.responded),
        )
