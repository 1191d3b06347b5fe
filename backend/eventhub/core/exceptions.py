"""
Custom exception classes for unified error handling.

Every engine error carries an HTTP-equivalent status code and a retryable flag so
the router (and any other caller) can decide whether to resubmit.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone

from fastapi import HTTPException, status


class AppBaseError(Exception):
    """Base exception for all application errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    retryable: bool = False

    def __init__(self, message: str, detail: str | None = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class NotFoundError(AppBaseError):
    """Raised when an event, attendee or reminder does not exist."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            message=f"{resource} not found",
            detail=f"No {resource.lower()} with id '{resource_id}'.",
        )
        self.resource = resource
        self.resource_id = resource_id


class ForbiddenError(AppBaseError):
    """Raised when the permission gate denies a mutation."""

    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "You don't have permission to perform this action"):
        super().__init__(message=message)


class ValidationError(AppBaseError):
    """Raised for malformed input: unknown enum values, negative counts, bad rules."""

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(message=message, detail=detail)


class InvalidTimeWindowError(AppBaseError):
    """Raised when end is before start, start is in the past, or a reminder is late."""

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(message=message, detail=detail)


class EventEndedError(InvalidTimeWindowError):
    """Raised when an RSVP targets an event that has already ended."""

    def __init__(self):
        super().__init__(message="Cannot RSVP to an event that has ended")


class CapacityExceededError(AppBaseError):
    """Raised when a 'going' RSVP would exceed max_attendees."""

    def __init__(self, max_attendees: int):
        super().__init__(
            message="Event has reached maximum capacity",
            detail=(
                f"All {max_attendees} spots are taken. "
                "RSVP as 'interested' with join_waitlist to be put on the waitlist."
            ),
        )
        self.max_attendees = max_attendees


class EventStateError(AppBaseError):
    """Raised when the event's lifecycle status forbids the operation."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str):
        super().__init__(message=message)


class PermissionCheckFailedError(AppBaseError):
    """Raised when a role or group oracle fails. Never treated as allow or deny."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable = True

    def __init__(self, original_error: str):
        super().__init__(
            message="Failed to check permissions",
            detail=original_error,
        )


class CounterRecomputeError(AppBaseError):
    """Raised when RSVP counters could not be recomputed after a successful RSVP write."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True

    def __init__(self, event_id: str, original_error: str):
        super().__init__(
            message="RSVP saved but attendee counts could not be updated",
            detail=original_error,
        )
        self.event_id = event_id


class ConcurrencyConflictError(AppBaseError):
    """Reserved for stores that apply optimistic concurrency on event writes."""

    status_code = status.HTTP_409_CONFLICT
    retryable = True

    def __init__(self, event_id: str):
        super().__init__(
            message="Event was modified concurrently",
            detail=f"Reload event '{event_id}' and retry.",
        )


@dataclass
class CascadeFailure:
    """A child-level failure during a cascade. Logged and returned as a warning."""

    operation: str
    event_id: str
    error: str
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_warning(self) -> dict:
        return {
            "operation": self.operation,
            "event_id": self.event_id,
            "error": self.error,
        }


# ── Utility: convert to HTTPException ────────────────────

def app_error_to_http(error: AppBaseError, status_code: int | None = None) -> HTTPException:
    """Convert an AppBaseError to an HTTPException with consistent JSON body."""
    return HTTPException(
        status_code=status_code or error.status_code,
        detail={
            "error": error.message,
            "detail": error.detail,
            "type": type(error).__name__,
            "retryable": error.retryable,
        },
    )
