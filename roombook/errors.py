"""Error taxonomy for the booking core.

Every error carries a stable ``code`` so the HTTP layer can map it to a
status code and clients can branch on it without parsing messages.
"""

from __future__ import annotations


class BookingError(Exception):
    """Base class for all recoverable booking-core errors."""

    code = "BOOKING_ERROR"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class AuthRequired(BookingError):
    """No valid calendar session; remote operations are paused."""

    code = "AUTH_REQUIRED"


class SlotConflict(BookingError):
    """A requested range is not entirely free at commit time."""

    code = "SLOT_CONFLICT"


class NotHeadSlot(BookingError):
    """The targeted slot is the continuation of a span, not its head."""

    code = "NOT_HEAD_SLOT"


class RemoteSyncFailure(BookingError):
    """A remote fetch, create or delete call failed."""

    code = "REMOTE_SYNC_FAILURE"


class BookingValidationError(BookingError):
    code = "VALIDATION_ERROR"


class CancelForbidden(BookingError):
    """The requester is not the organizer of the booking."""

    code = "CANCEL_FORBIDDEN"
