"""
Tests for the Discussion Service.

These tests verify:
1. CREATE: audience resolved, invitations sent, reminders scheduled
2. SUBMIT: ordered rejections, moderation before persistence, auto-closure
3. VIEW: expired deadlines close on first view; outsiders are refused
4. ANALYSIS: on-demand regeneration surfaces failures
"""

from datetime import timedelta
from uuid import uuid4

import httpx
import pytest
from sqlalchemy import func, select

from consensus_hub.models import (
    ClosureCause,
    Discussion,
    DiscussionParticipant,
    DiscussionStatus,
    Notification,
    NotificationType,
    Response,
    ScheduledNotification,
    Urgency,
)
from consensus_hub.services.discussions import (
    CreateDiscussionInput,
    DiscussionService,
    SubmitResponseInput,
)
from consensus_hub.services.errors import (
    AnalysisUnavailableError,
    ContentRejectedError,
    DiscussionNotFoundError,
    DuplicateResponseError,
    InvalidOperationError,
    ModerationUnavailableError,
    PermissionDeniedError,
    ValidationError,
)


async def count(session, model, *where) -> int:
    result = await session.execute(select(func.count()).select_from(model).where(*where))
    return result.scalar_one()


@pytest.fixture
def lunch_input(now, bob, carol):
    def factory(**overrides) -> CreateDiscussionInput:
        fields = dict(
            title="Lunch",
            prompt="Where should we eat?",
            user_ids=[bob.id, carol.id],
            deadline_at=now + timedelta(days=1),
            urgency=Urgency.HIGH,
        )
        fields.update(overrides)
        return CreateDiscussionInput(**fields)

    return factory


# =============================================================================
# TEST: CREATE
# =============================================================================


class TestCreateDiscussion:

    async def test_creates_participants_and_invitations(
        self, session, alice, bob, carol, lunch_input, now
    ):
        service = DiscussionService(session)

        created = await service.create_discussion(lunch_input(), creator=alice, now=now)

        assert created.discussion.status == DiscussionStatus.OPEN
        assert set(created.participant_ids) == {bob.id, carol.id}
        assert created.invitations_sent == 2
        assert created.reminders_scheduled == 0

        invitations = (
            await session.execute(
                select(Notification).where(
                    Notification.notification_type == NotificationType.INVITATION
                )
            )
        ).scalars().all()
        assert {n.user_id for n in invitations} == {bob.id, carol.id}
        assert invitations[0].message == (
            'Alice invited you to "Lunch" - 1 day, 0 hours, 0 minutes left to respond '
            "| Urgency: HIGH"
        )

    async def test_department_audience_with_creator(
        self, session, alice, bob, carol, make_department, lunch_input, now
    ):
        team = await make_department("Team", [bob, carol])
        service = DiscussionService(session)

        created = await service.create_discussion(
            lunch_input(user_ids=[bob.id], department_ids=[team.id], creator_participates=True),
            creator=alice,
            now=now,
        )

        assert set(created.participant_ids) == {alice.id, bob.id, carol.id}
        assert await count(
            session,
            DiscussionParticipant,
            DiscussionParticipant.discussion_id == created.discussion.id,
        ) == 3

    async def test_schedules_reminders(self, session, alice, lunch_input, now):
        service = DiscussionService(session)

        created = await service.create_discussion(
            lunch_input(reminder_lead_minutes=60), creator=alice, now=now
        )

        assert created.reminders_scheduled == 2
        rows = (await session.execute(select(ScheduledNotification))).scalars().all()
        assert all(r.notify_at == now + timedelta(hours=23) for r in rows)

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"title": "   "}, "Title"),
            ({"prompt": ""}, "Prompt"),
            ({"reminder_lead_minutes": 0}, "Reminder"),
        ],
    )
    async def test_invalid_fields_persist_nothing(
        self, session, alice, lunch_input, now, overrides, message
    ):
        service = DiscussionService(session)

        with pytest.raises(ValidationError, match=message):
            await service.create_discussion(lunch_input(**overrides), creator=alice, now=now)

        assert await count(session, Discussion) == 0
        assert await count(session, Notification) == 0

    async def test_past_deadline_rejected(self, session, alice, lunch_input, now):
        service = DiscussionService(session)

        with pytest.raises(ValidationError, match="future"):
            await service.create_discussion(
                lunch_input(deadline_at=now - timedelta(minutes=1)), creator=alice, now=now
            )

    async def test_deadline_before_start_rejected(self, session, alice, lunch_input, now):
        service = DiscussionService(session)

        with pytest.raises(ValidationError, match="start date"):
            await service.create_discussion(
                lunch_input(
                    start_date=now + timedelta(days=2),
                    deadline_at=now + timedelta(days=1),
                ),
                creator=alice,
                now=now,
            )

    async def test_too_small_audience_persists_nothing(self, session, alice, bob, lunch_input, now):
        service = DiscussionService(session)

        with pytest.raises(ValidationError, match="At least 2"):
            await service.create_discussion(lunch_input(user_ids=[bob.id]), creator=alice, now=now)

        assert await count(session, Discussion) == 0


# =============================================================================
# TEST: SUBMIT RESPONSE
# =============================================================================


class TestSubmitResponse:

    @pytest.fixture
    async def lunch(self, session, alice, lunch_input, now):
        service = DiscussionService(session)
        created = await service.create_discussion(lunch_input(), creator=alice, now=now)
        return created.discussion

    async def test_last_response_closes_discussion(self, session, lunch, bob, carol, now):
        service = DiscussionService(session)
        later = now + timedelta(minutes=5)

        first = await service.submit_response(lunch.id, bob.id, SubmitResponseInput("Sushi"), now=later)
        assert first.closure.closed is False

        second = await service.submit_response(lunch.id, carol.id, SubmitResponseInput("Pizza"), now=later)

        assert second.closure.closed is True
        assert second.closure.closed_by == ClosureCause.ALL_RESPONSES
        assert second.closure.results_summary == (
            "Discussion closed after all participants responded. Total responses: 2"
        )
        assert await count(
            session,
            Notification,
            Notification.notification_type == NotificationType.CLOSURE,
        ) == 2

    async def test_response_marks_participant_responded(self, session, lunch, bob, now):
        service = DiscussionService(session)

        await service.submit_response(lunch.id, bob.id, SubmitResponseInput("  Sushi  "), now=now)

        view = await service.get_discussion(lunch.id, bob.id, now=now)
        assert view.user_responded is True
        stored = (await session.execute(select(Response.text))).scalar_one()
        assert stored == "Sushi"

    async def test_non_participant_rejected(self, session, lunch, alice, now):
        service = DiscussionService(session)

        with pytest.raises(PermissionDeniedError):
            await service.submit_response(lunch.id, alice.id, SubmitResponseInput("Sushi"), now=now)

    async def test_unknown_discussion(self, session, bob, now):
        service = DiscussionService(session)

        with pytest.raises(DiscussionNotFoundError):
            await service.submit_response(uuid4(), bob.id, SubmitResponseInput("Sushi"), now=now)

    async def test_empty_text_rejected(self, session, lunch, bob, now):
        service = DiscussionService(session)

        with pytest.raises(ValidationError, match="enter a response"):
            await service.submit_response(lunch.id, bob.id, SubmitResponseInput("   "), now=now)

    async def test_anonymous_not_allowed(self, session, lunch, bob, now):
        service = DiscussionService(session)

        with pytest.raises(ValidationError, match="anonymous"):
            await service.submit_response(
                lunch.id, bob.id, SubmitResponseInput("Sushi", is_anonymous=True), now=now
            )

    async def test_duplicate_rejected(self, session, lunch, bob, now):
        service = DiscussionService(session)
        await service.submit_response(lunch.id, bob.id, SubmitResponseInput("Sushi"), now=now)

        with pytest.raises(DuplicateResponseError):
            await service.submit_response(lunch.id, bob.id, SubmitResponseInput("Pizza"), now=now)

        assert await count(session, Response) == 1

    async def test_after_deadline_rejected(self, session, lunch, bob, now):
        service = DiscussionService(session)

        with pytest.raises(InvalidOperationError, match="deadline"):
            await service.submit_response(
                lunch.id, bob.id, SubmitResponseInput("Sushi"), now=now + timedelta(days=2)
            )

    async def test_late_submission_still_closes_at_deadline(self, session, lunch, bob, now):
        service = DiscussionService(session)

        with pytest.raises(InvalidOperationError, match="deadline"):
            await service.submit_response(
                lunch.id, bob.id, SubmitResponseInput("Sushi"), now=now + timedelta(days=2)
            )
        # The request transaction rolls back on the error
        await session.rollback()

        stored = await session.get(Discussion, lunch.id)
        assert stored.status == DiscussionStatus.CLOSED
        assert stored.closed_by == ClosureCause.DEADLINE
        assert await count(session, Response) == 0
        assert await count(
            session,
            Notification,
            Notification.notification_type == NotificationType.CLOSURE,
        ) == 2

    async def test_closed_discussion_rejected(self, session, lunch, alice, bob, now):
        service = DiscussionService(session)
        await service.close_discussion(lunch.id, alice.id)

        with pytest.raises(InvalidOperationError, match="closed"):
            await service.submit_response(lunch.id, bob.id, SubmitResponseInput("Sushi"), now=now)

    async def test_not_started_rejected(self, session, alice, bob, lunch_input, now):
        service = DiscussionService(session)
        created = await service.create_discussion(
            lunch_input(start_date=now + timedelta(hours=1)), creator=alice, now=now
        )

        with pytest.raises(InvalidOperationError, match="not started"):
            await service.submit_response(
                created.discussion.id, bob.id, SubmitResponseInput("Sushi"), now=now
            )

    async def test_moderation_rejects_before_persisting(
        self, session, lunch, bob, make_moderation, chat_reply, now
    ):
        moderation = make_moderation(
            lambda r: chat_reply({
                "original_text": "rude",
                "status": "not_permitted",
                "reason": "insult",
                "user_message": "Please keep it respectful.",
            })
        )
        service = DiscussionService(session, moderation=moderation)

        with pytest.raises(ContentRejectedError) as exc_info:
            await service.submit_response(lunch.id, bob.id, SubmitResponseInput("rude"), now=now)

        assert exc_info.value.user_message == "Please keep it respectful."
        assert await count(session, Response) == 0

    async def test_moderation_outage_fails_closed(self, session, lunch, bob, make_moderation, now):
        service = DiscussionService(
            session, moderation=make_moderation(lambda r: httpx.Response(503))
        )

        with pytest.raises(ModerationUnavailableError):
            await service.submit_response(lunch.id, bob.id, SubmitResponseInput("Sushi"), now=now)

        assert await count(session, Response) == 0

    async def test_permitted_by_moderation(self, session, lunch, bob, permit_all, now):
        service = DiscussionService(session, moderation=permit_all)

        submitted = await service.submit_response(
            lunch.id, bob.id, SubmitResponseInput("Sushi"), now=now
        )

        assert submitted.response.text == "Sushi"


# =============================================================================
# TEST: VIEW & LIST
# =============================================================================


class TestViewDiscussion:

    async def test_expired_discussion_closes_on_view(
        self, session, alice, bob, lunch_input, now
    ):
        service = DiscussionService(session)
        created = await service.create_discussion(lunch_input(), creator=alice, now=now)

        view = await service.get_discussion(
            created.discussion.id, bob.id, now=now + timedelta(days=2)
        )

        assert view.discussion.status == DiscussionStatus.CLOSED
        assert view.discussion.closed_by == ClosureCause.DEADLINE
        assert view.discussion.results_summary.startswith(
            "Discussion closed due to deadline expiration"
        )

    async def test_outsider_cannot_view(self, session, alice, lunch_input, make_user, now):
        service = DiscussionService(session)
        created = await service.create_discussion(lunch_input(), creator=alice, now=now)
        mallory = await make_user("Mallory")

        with pytest.raises(PermissionDeniedError):
            await service.get_discussion(created.discussion.id, mallory.id, now=now)

    async def test_owner_view_counts(self, session, alice, bob, lunch_input, now):
        service = DiscussionService(session)
        created = await service.create_discussion(lunch_input(), creator=alice, now=now)
        await service.submit_response(created.discussion.id, bob.id, SubmitResponseInput("Sushi"), now=now)

        view = await service.get_discussion(created.discussion.id, alice.id, now=now)

        assert view.is_owner is True
        assert view.is_participant is False
        assert view.participant_count == 2
        assert view.response_count == 1

    async def test_list_owned_and_participating(
        self, session, alice, bob, carol, lunch_input, make_user, now
    ):
        dave = await make_user("Dave")
        service = DiscussionService(session)
        mine = await service.create_discussion(lunch_input(), creator=alice, now=now)
        theirs = await service.create_discussion(
            lunch_input(title="Offsite", user_ids=[alice.id, dave.id]), creator=bob, now=now
        )
        await service.create_discussion(
            lunch_input(title="Other", user_ids=[carol.id, dave.id]), creator=bob, now=now
        )

        views = await service.list_discussions_for_user(alice.id, now=now)

        assert {v.discussion.id for v in views} == {mine.discussion.id, theirs.discussion.id}
        by_id = {v.discussion.id: v for v in views}
        assert by_id[mine.discussion.id].is_owner is True
        assert by_id[theirs.discussion.id].is_participant is True


# =============================================================================
# TEST: ON-DEMAND ANALYSIS
# =============================================================================


class TestRegenerateAnalysis:

    @pytest.fixture
    async def closed_lunch(self, session, alice, bob, carol, lunch_input, now):
        service = DiscussionService(session)
        created = await service.create_discussion(lunch_input(), creator=alice, now=now)
        await service.submit_response(created.discussion.id, bob.id, SubmitResponseInput("Sushi"), now=now)
        await service.submit_response(created.discussion.id, carol.id, SubmitResponseInput("Sushi"), now=now)
        return created.discussion

    async def test_open_discussion_rejected(self, session, alice, lunch_input, make_analyzer, now):
        service = DiscussionService(session, analyzer=make_analyzer(lambda r: httpx.Response(500)))
        created = await service.create_discussion(lunch_input(), creator=alice, now=now)

        with pytest.raises(InvalidOperationError, match="closed"):
            await service.regenerate_analysis(created.discussion.id, alice.id)

    async def test_regenerated_analysis_is_stored(
        self, session, closed_lunch, alice, make_analyzer, chat_reply
    ):
        payload = {
            "question": "Where should we eat?",
            "groups": [
                {"id": "sushi", "label": "Sushi", "criteria": "Sushi", "members": [1, 2], "count": 2}
            ],
            "consensus": {
                "group_id": "sushi",
                "label": "Sushi",
                "confidence": 1.0,
                "reasoning": "Unanimous",
            },
        }
        service = DiscussionService(session, analyzer=make_analyzer(lambda r: chat_reply(payload)))

        analysis = await service.regenerate_analysis(closed_lunch.id, alice.id)

        assert analysis.consensus.confidence == 1.0
        stored = await session.get(Discussion, closed_lunch.id)
        assert stored.ai_analysis["consensus"]["group_id"] == "sushi"

    async def test_failure_is_surfaced(self, session, closed_lunch, alice, make_analyzer):
        service = DiscussionService(session, analyzer=make_analyzer(lambda r: httpx.Response(500)))

        with pytest.raises(AnalysisUnavailableError):
            await service.regenerate_analysis(closed_lunch.id, alice.id)

    async def test_without_analyzer(self, session, closed_lunch, alice):
        service = DiscussionService(session)

        with pytest.raises(AnalysisUnavailableError, match="not configured"):
            await service.regenerate_analysis(closed_lunch.id, alice.id)
