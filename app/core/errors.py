from typing import Any, Optional


class BookingEngineError(Exception):
    """Base class for every failure the booking engine reports to callers."""
    code = "booking_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidInput(BookingEngineError):
    """Malformed request data: non-positive quantity or price, bad stock values."""
    code = "invalid_input"
    status_code = 400


class InvalidRange(InvalidInput):
    """Date range whose start is not strictly before its end."""
    code = "invalid_range"


class NotFound(BookingEngineError):
    code = "not_found"
    status_code = 404


class CapacityExceeded(BookingEngineError):
    """Not enough free units of a tool for the requested window."""
    code = "capacity_exceeded"
    status_code = 409


class InvalidTransition(BookingEngineError):
    """Status change that is not in the transition table."""
    code = "invalid_transition"
    status_code = 409


class AlreadyConfirmed(BookingEngineError):
    code = "already_confirmed"
    status_code = 409


class AlreadyExpired(BookingEngineError):
    code = "already_expired"
    status_code = 410
