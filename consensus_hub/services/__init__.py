"""Business logic services for ConsensusHub."""

from .audience import (
    AudienceCriteria,
    AudienceResolver,
    MembershipDirectory,
    ResolvedAudience,
    SqlMembershipDirectory,
)
from .consensus_analyzer import AnalysisConfig, ConsensusAnalyzerService
from .discussions import (
    CreateDiscussionInput,
    CreatedDiscussion,
    DiscussionService,
    DiscussionView,
    SubmitResponseInput,
    SubmittedResponse,
)
from .errors import (
    AnalysisUnavailableError,
    ConcurrencyConflict,
    ContentRejectedError,
    DiscussionError,
    DiscussionNotFoundError,
    DuplicateResponseError,
    ExternalServiceError,
    InvalidOperationError,
    ModerationUnavailableError,
    NotificationNotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from .lifecycle_engine import ClosureResult, LifecycleEngine
from .moderation import ModerationConfig, ModerationResult, ModerationService
from .notifications import NotificationDispatcher
from .reminder_sweep import ReminderSweep, SweepConfig, SweepResult

__all__ = [
    # Discussions (primary)
    "DiscussionService",
    "CreateDiscussionInput",
    "CreatedDiscussion",
    "SubmitResponseInput",
    "SubmittedResponse",
    "DiscussionView",
    # Audience
    "AudienceCriteria",
    "AudienceResolver",
    "MembershipDirectory",
    "SqlMembershipDirectory",
    "ResolvedAudience",
    # Lifecycle
    "LifecycleEngine",
    "ClosureResult",
    # Analysis & moderation
    "AnalysisConfig",
    "ConsensusAnalyzerService",
    "ModerationConfig",
    "ModerationResult",
    "ModerationService",
    # Notifications
    "NotificationDispatcher",
    "ReminderSweep",
    "SweepConfig",
    "SweepResult",
    # Errors
    "DiscussionError",
    "ValidationError",
    "DiscussionNotFoundError",
    "NotificationNotFoundError",
    "PermissionDeniedError",
    "InvalidOperationError",
    "DuplicateResponseError",
    "ConcurrencyConflict",
    "ContentRejectedError",
    "ExternalServiceError",
    "AnalysisUnavailableError",
    "ModerationUnavailableError",
]
