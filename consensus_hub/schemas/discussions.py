"""Pydantic schemas for discussions, responses and closure outcomes."""

from datetime import datetime
from uuid import UUID

from pydantic import Field, field_validator, model_validator

from .analysis import ConsensusAnalysis
from .base import (
    ClosureCause,
    DiscussionStatus,
    HubBaseModel,
    Urgency,
    as_utc,
)


# =============================================================================
# DISCUSSION SCHEMAS
# =============================================================================


class DiscussionCreate(HubBaseModel):
    """Schema for creating a discussion."""

    title: str = Field(..., min_length=1, max_length=500)
    prompt: str = Field(..., min_length=1, description="The question participants answer")

    # Audience: any combination; departments and roles expand to members
    user_ids: list[UUID] = Field(default_factory=list)
    department_ids: list[UUID] = Field(default_factory=list)
    role_ids: list[UUID] = Field(default_factory=list)
    creator_participates: bool = False

    start_date: datetime | None = Field(
        default=None,
        description="When responses open; defaults to now",
    )
    deadline_at: datetime | None = None
    urgency: Urgency = Urgency.MEDIUM
    allow_anonymous: bool = False
    likes_enabled: bool = False
    reminder_lead_minutes: int | None = Field(
        default=None,
        gt=0,
        le=60 * 24 * 30,
        description="Send each participant a reminder this many minutes before the deadline",
    )

    @field_validator("title", "prompt")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("start_date", "deadline_at")
    @classmethod
    def normalize_timezone(cls, v: datetime | None) -> datetime | None:
        return as_utc(v)

    @model_validator(mode="after")
    def check_dates(self) -> "DiscussionCreate":
        if self.start_date and self.deadline_at and self.deadline_at <= self.start_date:
            raise ValueError("deadline_at must be after start_date")
        return self


class DiscussionResponse(HubBaseModel):
    """Full discussion as seen by its owner or a participant."""

    id: UUID
    owner_id: UUID
    title: str
    prompt: str
    start_date: datetime
    deadline_at: datetime | None = None
    urgency: Urgency
    allow_anonymous: bool
    likes_enabled: bool
    status: DiscussionStatus
    closed_by: ClosureCause | None = None
    closed_at: datetime | None = None
    results_summary: str | None = None
    ai_analysis: ConsensusAnalysis | None = None
    created_at: datetime

    # Viewer-specific
    participant_count: int = 0
    response_count: int = 0
    is_owner: bool = False
    is_participant: bool = False
    user_responded: bool = False


class DiscussionSummary(HubBaseModel):
    """Abbreviated discussion for lists."""

    id: UUID
    title: str
    status: DiscussionStatus
    urgency: Urgency
    deadline_at: datetime | None = None
    closed_by: ClosureCause | None = None
    participant_count: int = 0
    response_count: int = 0
    is_owner: bool = False
    user_responded: bool = False


class DiscussionCreated(HubBaseModel):
    """Result of creating a discussion."""

    discussion: DiscussionResponse
    participant_ids: list[UUID]
    invitations_sent: int
    reminders_scheduled: int


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================


class ResponseCreate(HubBaseModel):
    """Schema for answering a discussion."""

    text: str = Field(..., max_length=10000)
    is_anonymous: bool = False


class ResponseOut(HubBaseModel):
    """A response; user_id is hidden for anonymous answers."""

    id: UUID
    discussion_id: UUID
    user_id: UUID | None = None
    text: str
    is_anonymous: bool
    created_at: datetime


# =============================================================================
# CLOSURE & ANALYSIS
# =============================================================================


class ClosureResultOut(HubBaseModel):
    """Outcome of a closure evaluation."""

    discussion_id: UUID
    closed: bool
    closed_by: ClosureCause | None = None
    results_summary: str | None = None
    analysis: ConsensusAnalysis | None = None
    notifications_sent: int = 0
    already_closed: bool = False


class ResponseSubmitted(HubBaseModel):
    """Result of submitting a response."""

    response: ResponseOut
    closure: ClosureResultOut


class AnalysisOut(HubBaseModel):
    """Freshly generated analysis for a closed discussion."""

    discussion_id: UUID
    analysis: ConsensusAnalysis
