"""Base schemas and common types for the ConsensusHub API."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict


# =============================================================================
# ENUMS (Mirror database enums)
# =============================================================================


class Urgency(str, Enum):
    """How pressing a discussion is."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DiscussionStatus(str, Enum):
    """Lifecycle state of a discussion. closed is terminal."""

    OPEN = "open"
    CLOSED = "closed"


class ClosureCause(str, Enum):
    """Why a discussion closed."""

    DEADLINE = "deadline"
    ALL_RESPONSES = "all_responses"
    MANUAL = "manual"


class NotificationType(str, Enum):
    INVITATION = "invitation"
    CLOSURE = "closure"
    REMINDER = "reminder"


# =============================================================================
# BASE SCHEMAS
# =============================================================================


class HubBaseModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,  # Enable ORM mode
        populate_by_name=True,
        use_enum_values=True,
    )


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes from clients as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# ERROR RESPONSES
# =============================================================================


class ErrorDetail(HubBaseModel):
    """Detailed error information."""

    field: str | None = None
    message: str
    code: str


class ErrorResponse(HubBaseModel):
    """Standard error response format."""

    error: str
    message: str
    details: list[ErrorDetail] = []
    request_id: str | None = None

