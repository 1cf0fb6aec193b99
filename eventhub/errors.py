class EventHubError(Exception):
    """Base class for every error the event core reports to its callers.

    Each kind carries a stable ``code`` and HTTP ``status_code`` so the
    transport layer can map it without inspecting the message text.
    """

    code = "internal_error"
    status_code = 500
    retryable = False
    default_message = "Internal error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(EventHubError):
    code = "not_found"
    status_code = 404
    default_message = "The requested event does not exist"


class Unauthorized(EventHubError):
    code = "unauthorized"
    status_code = 403
    default_message = "Only the event creator can modify this event"


class Unauthenticated(EventHubError):
    code = "unauthenticated"
    status_code = 401
    default_message = "Authentication required"


class EventFull(EventHubError):
    code = "event_full"
    status_code = 409
    default_message = "This event has reached maximum capacity"


class AlreadyJoined(EventHubError):
    code = "already_joined"
    status_code = 409
    default_message = "You are already attending this event"


class NotAttending(EventHubError):
    code = "not_attending"
    status_code = 409
    default_message = "You are not attending this event"


class InvalidDate(EventHubError):
    code = "invalid_date"
    status_code = 400
    default_message = "Event date cannot be in the past"


class NoUpdates(EventHubError):
    code = "no_updates"
    status_code = 400
    default_message = "No fields to update"


class ConstraintConflict(EventHubError):
    code = "constraint_conflict"
    status_code = 409
    default_message = "Resource already exists"


class StorageError(EventHubError):
    """Transient I/O or timeout failure; the only kind worth retrying."""

    code = "storage_error"
    status_code = 503
    retryable = True
    default_message = "Storage backend unavailable"
