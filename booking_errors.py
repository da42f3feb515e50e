"""
Error taxonomy for the seat-booking load test.

Every failure here is local to one virtual user. The engine counts aborts by
``reason`` and keeps the other users running.
"""

from typing import Optional


class BookingTestError(Exception):
    """Base class for failures raised inside a virtual user's workflow."""

    reason = "error"

    def __init__(self, message: str = "", status_code: Optional[int] = None):
        super().__init__(message or self.reason)
        self.status_code = status_code


class InvalidRangeError(BookingTestError, ValueError):
    """Delay range with min >= max."""

    reason = "invalid_range"


class DecodeError(BookingTestError):
    """Seat-status payload could not be decoded. Recovered as an empty or stale view."""

    reason = "decode_error"


class ConflictError(BookingTestError):
    """Seat was claimed by someone else first (HTTP 409)."""

    reason = "conflict"


class RetryExhausted(BookingTestError):
    """Too many conflicts while trying to book one seat."""

    reason = "retry_exhausted"

    def __init__(self, attempts: int, message: str = ""):
        super().__init__(message or f"gave up after {attempts} attempts")
        self.attempts = attempts


class PermissionDenied(BookingTestError):
    """Booking permission check failed for the target event."""

    reason = "permission_denied"


class NoSeatsAvailable(BookingTestError):
    """The availability snapshot was empty when a seat had to be picked."""

    reason = "no_seats_available"


class FatalTransportError(BookingTestError):
    """Any request failure that is not a seat conflict. Never retried."""

    reason = "fatal_transport_error"
