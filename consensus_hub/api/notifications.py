"""API routes for the caller's notification inbox."""

from uuid import UUID

from fastapi import APIRouter, Query

from ..core import CurrentUserDep, SessionDep
from ..schemas import MarkAllReadResult, NotificationOut
from ..services import NotificationDispatcher, NotificationNotFoundError
from .discussions import to_http_exception

router = APIRouter(prefix="/me", tags=["notifications"])


@router.get("/notifications", response_model=list[NotificationOut])
async def list_notifications(
    current_user: CurrentUserDep,
    session: SessionDep,
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    """Newest first."""
    dispatcher = NotificationDispatcher(session)
    return await dispatcher.list_for_user(
        current_user.id, unread_only=unread_only, limit=limit, offset=offset
    )


@router.post("/notifications/{notification_id}/read", response_model=NotificationOut)
async def mark_notification_read(
    notification_id: UUID,
    current_user: CurrentUserDep,
    session: SessionDep,
):
    dispatcher = NotificationDispatcher(session)
    try:
        return await dispatcher.mark_read(notification_id, current_user.id)
    except NotificationNotFoundError as e:
        raise to_http_exception(e)


@router.post("/notifications/read-all", response_model=MarkAllReadResult)
async def mark_all_notifications_read(
    current_user: CurrentUserDep,
    session: SessionDep,
):
    dispatcher = NotificationDispatcher(session)
    updated = await dispatcher.mark_all_read(current_user.id)
    return MarkAllReadResult(updated=updated)
