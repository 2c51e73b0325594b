"""
Discussion API Routes.

1. POST /discussions - Create a discussion and invite its audience
2. GET /discussions - Discussions I own or take part in
3. GET /discussions/{id} - View one (re-evaluates closure)
4. POST /discussions/{id}/responses - Answer (moderated, may close it)
5. POST /discussions/{id}/close - Owner closes it now
6. POST /discussions/{id}/analysis - Regenerate consensus analysis
"""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from ..core import CurrentUserDep, SessionDep, SettingsDep
from ..models import Response
from ..schemas import (
    AnalysisOut,
    ClosureResultOut,
    DiscussionCreate,
    DiscussionCreated,
    DiscussionResponse,
    DiscussionSummary,
    ResponseCreate,
    ResponseOut,
    ResponseSubmitted,
)
from ..services import (
    AnalysisConfig,
    ClosureResult,
    ConcurrencyConflict,
    ConsensusAnalyzerService,
    ContentRejectedError,
    CreateDiscussionInput,
    DiscussionError,
    DiscussionNotFoundError,
    DiscussionService,
    DiscussionView,
    ExternalServiceError,
    InvalidOperationError,
    ModerationConfig,
    ModerationService,
    ModerationUnavailableError,
    NotificationNotFoundError,
    PermissionDeniedError,
    SubmitResponseInput,
    ValidationError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/discussions", tags=["discussions"])


def get_analyzer(settings: SettingsDep) -> ConsensusAnalyzerService:
    return ConsensusAnalyzerService(AnalysisConfig.from_settings(settings))


def get_moderation(settings: SettingsDep) -> ModerationService:
    return ModerationService(ModerationConfig.from_settings(settings))


def get_discussion_service(
    session: SessionDep,
    analyzer: Annotated[ConsensusAnalyzerService, Depends(get_analyzer)],
    moderation: Annotated[ModerationService, Depends(get_moderation)],
) -> DiscussionService:
    return DiscussionService(session, analyzer=analyzer, moderation=moderation)


DiscussionServiceDep = Annotated[DiscussionService, Depends(get_discussion_service)]


# =============================================================================
# HELPERS
# =============================================================================


def to_http_exception(error: DiscussionError) -> HTTPException:
    """Map a service exception to the HTTP status callers see."""
    if isinstance(error, ContentRejectedError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": error.user_message or str(error), "reason": error.reason},
        )
    if isinstance(error, ValidationError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(error, (DiscussionNotFoundError, NotificationNotFoundError)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, PermissionDeniedError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(error, (InvalidOperationError, ConcurrencyConflict)):
        code = status.HTTP_409_CONFLICT
    elif isinstance(error, ModerationUnavailableError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(error, ExternalServiceError):
        code = status.HTTP_502_BAD_GATEWAY
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(error))


def view_to_response(view: DiscussionView) -> DiscussionResponse:
    d = view.discussion
    return DiscussionResponse(
        id=d.id,
        owner_id=d.owner_id,
        title=d.title,
        prompt=d.prompt,
        start_date=d.start_date,
        deadline_at=d.deadline_at,
        urgency=d.urgency,
        allow_anonymous=d.allow_anonymous,
        likes_enabled=d.likes_enabled,
        status=d.status,
        closed_by=d.closed_by,
        closed_at=d.closed_at,
        results_summary=d.results_summary,
        ai_analysis=d.ai_analysis,
        created_at=d.created_at,
        participant_count=view.participant_count,
        response_count=view.response_count,
        is_owner=view.is_owner,
        is_participant=view.is_participant,
        user_responded=view.user_responded,
    )


def view_to_summary(view: DiscussionView) -> DiscussionSummary:
    d = view.discussion
    return DiscussionSummary(
        id=d.id,
        title=d.title,
        status=d.status,
        urgency=d.urgency,
        deadline_at=d.deadline_at,
        closed_by=d.closed_by,
        participant_count=view.participant_count,
        response_count=view.response_count,
        is_owner=view.is_owner,
        user_responded=view.user_responded,
    )


def response_to_out(response: Response, viewer_id: UUID) -> ResponseOut:
    """Anonymous responses only reveal their author to the author."""
    hide_author = response.is_anonymous and response.user_id != viewer_id
    return ResponseOut(
        id=response.id,
        discussion_id=response.discussion_id,
        user_id=None if hide_author else response.user_id,
        text=response.text,
        is_anonymous=response.is_anonymous,
        created_at=response.created_at,
    )


def closure_to_out(result: ClosureResult) -> ClosureResultOut:
    return ClosureResultOut(
        discussion_id=result.discussion_id,
        closed=result.closed,
        closed_by=result.closed_by,
        results_summary=result.results_summary,
        analysis=result.analysis,
        notifications_sent=result.notifications_sent,
        already_closed=result.already_closed,
    )


# =============================================================================
# DISCUSSIONS
# =============================================================================


@router.post("", response_model=DiscussionCreated, status_code=status.HTTP_201_CREATED)
async def create_discussion(
    data: DiscussionCreate,
    current_user: CurrentUserDep,
    service: DiscussionServiceDep,
):
    """Create a discussion, resolve its audience and send invitations."""
    try:
        created = await service.create_discussion(
            CreateDiscussionInput(
                title=data.title,
                prompt=data.prompt,
                user_ids=data.user_ids,
                department_ids=data.department_ids,
                role_ids=data.role_ids,
                creator_participates=data.creator_participates,
                start_date=data.start_date,
                deadline_at=data.deadline_at,
                urgency=data.urgency,
                allow_anonymous=data.allow_anonymous,
                likes_enabled=data.likes_enabled,
                reminder_lead_minutes=data.reminder_lead_minutes,
            ),
            creator=current_user.user,
        )
        view = await service.get_discussion(
            created.discussion.id, current_user.id, evaluate=False
        )
    except DiscussionError as e:
        raise to_http_exception(e)

    return DiscussionCreated(
        discussion=view_to_response(view),
        participant_ids=created.participant_ids,
        invitations_sent=created.invitations_sent,
        reminders_scheduled=created.reminders_scheduled,
    )


@router.get("", response_model=list[DiscussionSummary])
async def list_discussions(
    current_user: CurrentUserDep,
    service: DiscussionServiceDep,
):
    """Discussions the caller owns or was invited to."""
    views = await service.list_discussions_for_user(current_user.id)
    return [view_to_summary(v) for v in views]


@router.get("/{discussion_id}", response_model=DiscussionResponse)
async def get_discussion(
    discussion_id: UUID,
    current_user: CurrentUserDep,
    service: DiscussionServiceDep,
):
    """View a discussion. An expired deadline closes it here."""
    try:
        view = await service.get_discussion(discussion_id, current_user.id)
    except DiscussionError as e:
        raise to_http_exception(e)
    return view_to_response(view)


@router.post("/{discussion_id}/close", response_model=ClosureResultOut)
async def close_discussion(
    discussion_id: UUID,
    current_user: CurrentUserDep,
    service: DiscussionServiceDep,
):
    """Owner closes the discussion before its deadline."""
    try:
        result = await service.close_discussion(discussion_id, current_user.id)
    except DiscussionError as e:
        raise to_http_exception(e)
    return closure_to_out(result)


@router.post("/{discussion_id}/analysis", response_model=AnalysisOut)
async def regenerate_analysis(
    discussion_id: UUID,
    current_user: CurrentUserDep,
    service: DiscussionServiceDep,
):
    """Run consensus analysis again for a closed discussion."""
    try:
        analysis = await service.regenerate_analysis(discussion_id, current_user.id)
    except DiscussionError as e:
        raise to_http_exception(e)
    return AnalysisOut(discussion_id=discussion_id, analysis=analysis)


# =============================================================================
# RESPONSES
# =============================================================================


@router.post(
    "/{discussion_id}/responses",
    response_model=ResponseSubmitted,
    status_code=status.HTTP_201_CREATED,
)
async def submit_response(
    discussion_id: UUID,
    data: ResponseCreate,
    current_user: CurrentUserDep,
    service: DiscussionServiceDep,
):
    """Answer a discussion. The last expected answer closes it."""
    try:
        submitted = await service.submit_response(
            discussion_id,
            current_user.id,
            SubmitResponseInput(text=data.text, is_anonymous=data.is_anonymous),
        )
    except DiscussionError as e:
        raise to_http_exception(e)

    return ResponseSubmitted(
        response=response_to_out(submitted.response, current_user.id),
        closure=closure_to_out(submitted.closure),
    )


@router.get("/{discussion_id}/responses", response_model=list[ResponseOut])
async def list_responses(
    discussion_id: UUID,
    current_user: CurrentUserDep,
    service: DiscussionServiceDep,
):
    try:
        responses = await service.list_responses(discussion_id, current_user.id)
    except DiscussionError as e:
        raise to_http_exception(e)
    return [response_to_out(r, current_user.id) for r in responses]
