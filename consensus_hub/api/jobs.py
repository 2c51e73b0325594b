"""Trigger for the scheduled-notification job, for external schedulers."""

from typing import Annotated

from fastapi import APIRouter, Depends

from ..core import CronSecretDep, SessionDep
from ..jobs.reminder_cron import run_scheduled_notifications
from ..schemas import ReminderJobResult
from ..services import ConsensusAnalyzerService
from .discussions import get_analyzer

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("/scheduled-notifications", response_model=ReminderJobResult)
async def trigger_scheduled_notifications(
    _: CronSecretDep,
    session: SessionDep,
    analyzer: Annotated[ConsensusAnalyzerService, Depends(get_analyzer)],
):
    """Close expired discussions and deliver due reminders. Safe to call repeatedly."""
    counts = await run_scheduled_notifications(session, analyzer=analyzer)
    return ReminderJobResult(**counts)
