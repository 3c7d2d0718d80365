"""Domain errors raised by the query and membership layers."""

from __future__ import annotations


class EventHubError(Exception):
    """Base class for errors the API maps onto client-facing responses."""

    error = "EventHubError"
    status_code = 500
    default_message = "Something went wrong."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def as_payload(self) -> dict[str, str]:
        return {"error": self.error, "message": self.message}


class EventValidationError(EventHubError, ValueError):
    """A field failed its length, format, category or future-date check."""

    error = "ValidationError"
    status_code = 400
    default_message = "Validation failed"

    def __init__(self, message: str | None = None, *, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)

    def as_payload(self) -> dict[str, str]:
        payload = super().as_payload()
        if self.field:
            payload["field"] = self.field
        return payload


class EventNotFoundError(EventHubError):
    error = "NotFound"
    status_code = 404
    default_message = "Event not found"


class ForbiddenError(EventHubError):
    error = "Forbidden"
    status_code = 403
    default_message = "Only the event creator can change this event."


class AlreadyMemberError(EventHubError):
    error = "AlreadyMember"
    status_code = 400
    default_message = "You have already joined this event."


class NotMemberError(EventHubError):
    error = "NotMember"
    status_code = 400
    default_message = "You are not attending this event."


class CapacityExceededError(EventHubError):
    error = "CapacityExceeded"
    status_code = 400
    default_message = "This event has reached its maximum number of attendees."


class StorageUnavailableError(EventHubError):
    error = "StorageUnavailable"
    status_code = 503
    default_message = "The event store is unavailable. Please try again shortly."
