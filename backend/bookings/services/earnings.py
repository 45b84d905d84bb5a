from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from django.conf import settings
from django.db.models import Count, Sum

from bookings.models import Booking
from bookings.states import PaymentStatus
from payments.models import ScheduledFundsRelease


@dataclass
class UpcomingRelease:
    booking_id: str
    booking_number: str
    class_title: str
    amount_cents: int
    release_at: datetime


@dataclass
class HeldFundsSummary:
    currency: str
    held_cents: int = 0
    held_count: int = 0
    released_cents: int = 0
    released_count: int = 0
    upcoming: list[UpcomingRelease] = field(default_factory=list)


def _totals(queryset) -> tuple[int, int]:
    totals = queryset.aggregate(amount=Sum("base_price_cents"), count=Count("pk"))
    return totals["amount"] or 0, totals["count"]


def held_funds_for_provider(provider) -> HeldFundsSummary:
    """Provider earnings still held in escrow, already released, and due soon."""

    bookings = Booking.objects.filter(class_session__provider=provider)
    held_cents, held_count = _totals(bookings.filter(payment_status=PaymentStatus.HELD))
    released_cents, released_count = _totals(bookings.filter(funds_released=True))

    pending = (
        ScheduledFundsRelease.objects.filter(
            booking__class_session__provider=provider,
            status=ScheduledFundsRelease.Status.SCHEDULED,
        )
        .select_related("booking", "booking__class_session")
        .order_by("release_at")
    )
    upcoming = [
        UpcomingRelease(
            booking_id=str(entry.booking_id),
            booking_number=entry.booking.booking_number,
            class_title=entry.booking.class_session.title,
            amount_cents=entry.booking.base_price_cents,
            release_at=entry.release_at,
        )
        for entry in pending
    ]
    return HeldFundsSummary(
        currency=settings.PAYMENT_CURRENCY,
        held_cents=held_cents,
        held_count=held_count,
        released_cents=released_cents,
        released_count=released_count,
        upcoming=upcoming,
    )
