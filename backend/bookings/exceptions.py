from __future__ import annotations

from typing import Iterable


class BookingError(Exception):
    """Base class for booking failures surfaced to API callers.

    ``kind`` is the machine-checkable reason and ``status_code`` the HTTP
    status the API layer responds with.
    """

    kind = "booking_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def as_payload(self) -> dict:
        return {"kind": self.kind, "detail": self.message}


class BookingValidationError(BookingError):
    kind = "validation_error"


class PastSessionError(BookingValidationError):
    kind = "past_session"

    def __init__(self, message: str = "Cannot book for past dates."):
        super().__init__(message)


class DuplicateBookingError(BookingError):
    kind = "duplicate_booking"
    status_code = 409

    def __init__(self, message: str = "You already have an active booking for this class."):
        super().__init__(message)


class CapacityExceededError(BookingError):
    kind = "class_full"
    status_code = 409

    def __init__(self, message: str = "Class is full."):
        super().__init__(message)


class BookingNotFound(BookingError):
    kind = "booking_not_found"
    status_code = 404

    def __init__(self, booking_id):
        super().__init__(f"Booking {booking_id} not found.")
        self.booking_id = booking_id


class StateConflictError(BookingError):
    """A guarded transition was attempted from the wrong state."""

    kind = "state_conflict"
    status_code = 409

    def __init__(
        self,
        booking_id,
        *,
        field: str,
        current: str,
        expected: Iterable[str],
        message: str | None = None,
    ):
        self.booking_id = booking_id
        self.field = field
        self.current = current
        self.expected = list(expected)
        super().__init__(
            message
            or f"Booking {booking_id} has {field}={current}; expected one of {', '.join(self.expected) or 'none'}."
        )

    def as_payload(self) -> dict:
        payload = super().as_payload()
        payload.update({"field": self.field, "current": self.current, "expected": self.expected})
        return payload


class StaleBookingError(StateConflictError):
    """The booking changed underneath us between read and write."""

    kind = "stale_booking"

    def __init__(self, booking_id, version: int):
        super().__init__(
            booking_id,
            field="version",
            current=str(version),
            expected=[str(version)],
            message=f"Booking {booking_id} was modified concurrently; retry the operation.",
        )
