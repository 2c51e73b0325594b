"""Exceptions raised by the discussion services.

Routers translate these into HTTP responses; jobs log them.
"""


class DiscussionError(Exception):
    """Base exception for discussion operations."""
    pass


class ValidationError(DiscussionError):
    """Request is invalid; nothing was persisted."""
    pass


class DiscussionNotFoundError(DiscussionError):
    """Discussion does not exist."""
    pass


class NotificationNotFoundError(DiscussionError):
    """Notification does not exist or belongs to someone else."""
    pass


class PermissionDeniedError(DiscussionError):
    """Caller is not allowed to perform the operation."""
    pass


class InvalidOperationError(DiscussionError):
    """Operation not allowed in current state."""
    pass


class DuplicateResponseError(InvalidOperationError):
    """User already responded to this discussion."""
    pass


class ConcurrencyConflict(DiscussionError):
    """Lost the open -> closed race; another caller already closed it."""
    pass


class ContentRejectedError(DiscussionError):
    """Moderation refused the response text."""

    def __init__(self, user_message: str, reason: str = ""):
        super().__init__(user_message or "Your response was not permitted")
        self.user_message = user_message
        self.reason = reason


class ExternalServiceError(DiscussionError):
    """An external collaborator failed, timed out or answered garbage."""
    pass


class AnalysisUnavailableError(ExternalServiceError):
    """Consensus analysis could not be produced."""
    pass


class ModerationUnavailableError(ExternalServiceError):
    """Moderation could not reach a decision."""
    pass
