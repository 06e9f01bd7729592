"""
Booking error taxonomy.

Every failure the lifecycle can surface to a caller is one of these.  The
API layer maps them to HTTP responses; the expiry sweep logs them and moves
on to the next booking.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional


class BookingError(Exception):
    """Base class for recoverable booking failures."""

    code = "BOOKING_ERROR"

    def context(self) -> dict:
        return {}


class ValidationError(BookingError):
    """Bad input shape or range (radius out of bounds, missing vehicle class...)."""

    code = "VALIDATION_ERROR"


class ConfigurationError(BookingError):
    """A money-affecting lookup found nothing usable, e.g. no active pricing."""

    code = "CONFIGURATION_ERROR"


class NotFoundError(BookingError):
    code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: object):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} {resource_id!r} not found")

    def context(self) -> dict:
        return {"resource": self.resource, "resource_id": str(self.resource_id)}


class InvalidStateTransitionError(BookingError):
    """The event is not valid for the booking's current status."""

    code = "INVALID_STATE_TRANSITION"

    def __init__(self, current_status, event, reason: Optional[str] = None):
        self.current_status = current_status
        self.event = event
        self.reason = reason
        message = f"Cannot apply {_value(event)} to a booking in status {_value(current_status)}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)

    def context(self) -> dict:
        return {
            "current_status": _value(self.current_status),
            "event": _value(self.event),
        }


class DeadlineExceededError(InvalidStateTransitionError):
    """The relevant deadline lapsed but the sweep has not caught up yet."""

    code = "DEADLINE_EXCEEDED"

    def __init__(self, current_status, event, deadline: datetime):
        self.deadline = deadline
        super().__init__(
            current_status, event, reason=f"deadline {deadline.isoformat()} has passed"
        )

    def context(self) -> dict:
        return {**super().context(), "deadline": self.deadline.isoformat()}


class AlreadyAssignedError(BookingError):
    """Lost the acceptance race: another driver already holds the booking."""

    code = "ALREADY_ASSIGNED"

    def __init__(self, booking_id: int):
        self.booking_id = booking_id
        super().__init__(f"Booking {booking_id} is already assigned to a driver")

    def context(self) -> dict:
        return {"booking_id": self.booking_id}


def _value(item) -> str:
    return getattr(item, "value", str(item))
