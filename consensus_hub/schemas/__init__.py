"""ConsensusHub API Schemas.

Schemas are organized by domain:
- base: Common types, enums, errors
- analysis: Consensus analysis value object
- discussions: Discussions, responses, closure outcomes
- notifications: Inbox and job results
"""

from .analysis import ConsensusAnalysis, ConsensusGroup, ConsensusRecord
from .base import (
    # Enums
    ClosureCause,
    DiscussionStatus,
    NotificationType,
    Urgency,
    # Base classes
    HubBaseModel,
    as_utc,
    # Errors
    ErrorDetail,
    ErrorResponse,
)
from .discussions import (
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
from .notifications import MarkAllReadResult, NotificationOut, ReminderJobResult

__all__ = [
    # Enums
    "Urgency",
    "DiscussionStatus",
    "ClosureCause",
    "NotificationType",
    # Base
    "HubBaseModel",
    "as_utc",
    "ErrorDetail",
    "ErrorResponse",
    # Analysis
    "ConsensusAnalysis",
    "ConsensusGroup",
    "ConsensusRecord",
    # Discussions
    "DiscussionCreate",
    "DiscussionCreated",
    "DiscussionResponse",
    "DiscussionSummary",
    "ResponseCreate",
    "ResponseOut",
    "ResponseSubmitted",
    "ClosureResultOut",
    "AnalysisOut",
    # Notifications
    "NotificationOut",
    "MarkAllReadResult",
    "ReminderJobResult",
]
