"""Pricing and cancellation-refund rules for class bookings."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from django.conf import settings

FULL_REFUND_WINDOW = timedelta(hours=24)
PARTIAL_REFUND_WINDOW = timedelta(hours=2)
PARTIAL_REFUND_PERCENT = 50


@dataclass(frozen=True)
class BookingPrice:
    base_price_cents: int
    service_fee_cents: int
    total_amount_cents: int


def service_fee_cents() -> int:
    return int(getattr(settings, "BOOKING_SERVICE_FEE_CENTS", 199))


def price_booking(base_price_cents: int) -> BookingPrice:
    """One fixed service fee per booking, regardless of participant count."""
    if base_price_cents < 0:
        raise ValueError("base_price_cents cannot be negative.")
    fee = service_fee_cents()
    return BookingPrice(
        base_price_cents=base_price_cents,
        service_fee_cents=fee,
        total_amount_cents=base_price_cents + fee,
    )


def refund_percent_for(time_until_session: timedelta) -> int:
    if time_until_session > FULL_REFUND_WINDOW:
        return 100
    if time_until_session > PARTIAL_REFUND_WINDOW:
        return PARTIAL_REFUND_PERCENT
    return 0


def refund_amount_for(total_amount_cents: int, session_start: datetime, now: datetime) -> int:
    """Refund owed when cancelling at ``now``; fractional cents round down."""
    percent = refund_percent_for(session_start - now)
    return total_amount_cents * percent // 100
