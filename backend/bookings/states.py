"""
Booking and payment states plus the transition table that guards them.

Booking status and payment status move independently but every change to
either one is checked here first, so an illegal move (for example anything
out of a terminal booking state) fails loudly instead of being written.
"""

from __future__ import annotations

from django.db import models

from bookings.exceptions import StateConflictError


class BookingStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    CONFIRMED = "CONFIRMED", "Confirmed"
    CANCELLED = "CANCELLED", "Cancelled"
    COMPLETED = "COMPLETED", "Completed"
    NO_SHOW = "NO_SHOW", "No show"


class PaymentStatus(models.TextChoices):
    UNPAID = "UNPAID", "Unpaid"
    AUTHORIZATION_PENDING = "AUTHORIZATION_PENDING", "Authorization pending"
    HELD = "HELD", "Held"
    PAID = "PAID", "Paid"
    FAILED = "FAILED", "Failed"
    REFUNDED = "REFUNDED", "Refunded"


STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.COMPLETED, BookingStatus.NO_SHOW, BookingStatus.CANCELLED}
    ),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
}

PAYMENT_TRANSITIONS: dict[str, frozenset[str]] = {
    PaymentStatus.UNPAID: frozenset({PaymentStatus.AUTHORIZATION_PENDING, PaymentStatus.HELD}),
    # REFUNDED: captured after the booking was cancelled and handed straight back.
    PaymentStatus.AUTHORIZATION_PENDING: frozenset(
        {PaymentStatus.HELD, PaymentStatus.FAILED, PaymentStatus.REFUNDED}
    ),
    PaymentStatus.HELD: frozenset({PaymentStatus.PAID, PaymentStatus.REFUNDED}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in STATUS_TRANSITIONS.items() if not targets
)
COLLECTED_PAYMENT_STATUSES = frozenset({PaymentStatus.HELD, PaymentStatus.PAID})


def can_transition_status(current: str, target: str) -> bool:
    return target in STATUS_TRANSITIONS.get(current, frozenset())


def can_transition_payment(current: str, target: str) -> bool:
    return target in PAYMENT_TRANSITIONS.get(current, frozenset())


def _expected_sources(table: dict[str, frozenset[str]], target: str) -> list[str]:
    return sorted(source for source, targets in table.items() if target in targets)


def ensure_status_transition(booking, target: str) -> None:
    if not can_transition_status(booking.status, target):
        raise StateConflictError(
            booking.pk,
            field="status",
            current=booking.status,
            expected=_expected_sources(STATUS_TRANSITIONS, target),
        )


def ensure_payment_transition(booking, target: str) -> None:
    if not can_transition_payment(booking.payment_status, target):
        raise StateConflictError(
            booking.pk,
            field="payment_status",
            current=booking.payment_status,
            expected=_expected_sources(PAYMENT_TRANSITIONS, target),
        )


def ensure_payment_status(booking, *allowed: str) -> None:
    """Guard for operations that need the payment in one of ``allowed`` states."""
    if booking.payment_status not in allowed:
        raise StateConflictError(
            booking.pk,
            field="payment_status",
            current=booking.payment_status,
            expected=sorted(allowed),
        )


def ensure_status(booking, *allowed: str) -> None:
    if booking.status not in allowed:
        raise StateConflictError(
            booking.pk,
            field="status",
            current=booking.status,
            expected=sorted(allowed),
        )
