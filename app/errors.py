"""
Error taxonomy for the guestbook service.

The storage layer raises these; the exception handlers registered in
app.main turn them into JSON error responses.
"""


class GuestbookError(Exception):
    """Base class for errors raised by the message store."""

    status_code = 500
    error = "Internal server error"

    def __init__(self, message: str, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class MessageValidationError(GuestbookError):
    """Missing or oversized field. Raised before any database access."""

    status_code = 400
    error = "Validation failed"


class MessageNotFoundError(GuestbookError):
    """No message exists for the requested id."""

    status_code = 404
    error = "Not found"

    def __init__(self, message_id: int):
        super().__init__("Message not found")
        self.message_id = message_id


class StorageError(GuestbookError):
    """Database unreachable, query failure or pool exhaustion."""
