"""Persistence helpers for bookings with per-record optimistic concurrency."""

from __future__ import annotations

from typing import Iterable

from django.core.exceptions import ValidationError
from django.db.models import F
from django.utils import timezone

from bookings.exceptions import BookingNotFound, StaleBookingError
from bookings.models import Booking
from bookings.states import BookingStatus, PaymentStatus


def get_booking(booking_id) -> Booking:
    queryset = Booking.objects.select_related("class_session", "class_session__provider", "booker")
    try:
        return queryset.get(pk=booking_id)
    except (Booking.DoesNotExist, ValueError, ValidationError):
        raise BookingNotFound(booking_id) from None


def compare_and_set(booking: Booking, fields: Iterable[str]) -> Booking:
    """
    Write ``fields`` from the in-memory booking only if nobody else has
    written it since it was loaded. Bumps ``version`` and ``updated_at``.
    """

    now = timezone.now()
    values = {name: getattr(booking, name) for name in fields}
    values["updated_at"] = now
    updated = Booking.objects.filter(pk=booking.pk, version=booking.version).update(
        version=F("version") + 1,
        **values,
    )
    if not updated:
        raise StaleBookingError(booking.pk, booking.version)
    booking.version += 1
    booking.updated_at = now
    return booking


def find_by_payment_intent(intent_ref: str) -> Booking | None:
    if not intent_ref:
        return None
    return Booking.objects.filter(payment_intent_ref=intent_ref).first()


def find_by_charge(charge_ref: str) -> Booking | None:
    if not charge_ref:
        return None
    return Booking.objects.filter(charge_ref=charge_ref).first()


def active_booking_exists(*, booker, class_session) -> bool:
    return (
        Booking.objects.filter(booker=booker, class_session=class_session)
        .exclude(status=BookingStatus.CANCELLED)
        .exclude(payment_status=PaymentStatus.FAILED)
        .exists()
    )
