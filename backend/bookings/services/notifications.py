from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from django.conf import settings
from django.core.mail import send_mail
from django.db import transaction

from bookings.models import Booking

logger = logging.getLogger(__name__)


class NotificationEvent(str, Enum):
    BOOKING_CREATED = "BOOKING_CREATED"
    BOOKING_CANCELLED = "BOOKING_CANCELLED"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    PAYOUT_RELEASED = "PAYOUT_RELEASED"


@dataclass
class Notification:
    event: NotificationEvent
    booking_id: str
    booking_number: str
    class_title: str
    session_start: object
    booker_name: str
    provider_name: str
    total_amount_cents: int
    currency: str
    recipients: list[str] = field(default_factory=list)
    refund_amount_cents: int | None = None
    payout_amount_cents: int | None = None


def _format_from_email(provider_name: str) -> str:
    default_from = settings.DEFAULT_FROM_EMAIL
    email_addr = default_from
    if '<' in default_from and default_from.endswith('>'):
        email_addr = default_from.split('<', 1)[1].rstrip('>')
    return f"{provider_name} via Classbook <{email_addr}>"


def _money(cents: int | None, currency: str) -> str:
    return f"{(cents or 0) / 100:.2f} {currency.upper()}"


def build_notification(event: NotificationEvent, booking: Booking) -> Notification:
    class_session = booking.class_session
    provider = class_session.provider
    recipients = {
        NotificationEvent.BOOKING_CREATED: [booking.booker.email],
        NotificationEvent.BOOKING_CANCELLED: [booking.booker.email, provider.email],
        NotificationEvent.PAYMENT_RECEIVED: [booking.booker.email, provider.email],
        NotificationEvent.PAYOUT_RELEASED: [provider.email],
    }[event]
    return Notification(
        event=event,
        booking_id=str(booking.pk),
        booking_number=booking.booking_number,
        class_title=class_session.title,
        session_start=booking.session_start,
        booker_name=booking.booker.public_name,
        provider_name=provider.public_name,
        total_amount_cents=booking.total_amount_cents,
        currency=booking.currency,
        recipients=[address for address in recipients if address],
        refund_amount_cents=booking.refund_amount_cents,
        payout_amount_cents=booking.base_price_cents,
    )


def _render(notification: Notification) -> tuple[str, list[str]]:
    n = notification
    when = f"{n.session_start:%A %d %B %Y at %H:%M} UTC"
    if n.event is NotificationEvent.BOOKING_CREATED:
        subject = f"{n.class_title}: booking {n.booking_number} received"
        lines = [
            f"Hi {n.booker_name},",
            "",
            f"Your booking for {n.class_title} with {n.provider_name} on {when} has been reserved.",
            f"Amount due: {_money(n.total_amount_cents, n.currency)}.",
            "Complete payment to confirm your places.",
        ]
    elif n.event is NotificationEvent.PAYMENT_RECEIVED:
        subject = f"{n.class_title}: booking {n.booking_number} confirmed"
        lines = [
            f"Hi {n.booker_name},",
            "",
            f"We received {_money(n.total_amount_cents, n.currency)} for {n.class_title} on {when}.",
            "The payment is held until the class has taken place.",
        ]
    elif n.event is NotificationEvent.BOOKING_CANCELLED:
        subject = f"{n.class_title}: booking {n.booking_number} cancelled"
        lines = [
            f"Booking {n.booking_number} for {n.class_title} on {when} has been cancelled.",
            f"Refund: {_money(n.refund_amount_cents, n.currency)}.",
        ]
    else:
        subject = f"{n.class_title}: payout for booking {n.booking_number}"
        lines = [
            f"Hi {n.provider_name},",
            "",
            f"{_money(n.payout_amount_cents, n.currency)} for booking {n.booking_number} has been released to your account.",
        ]
    lines.extend(["", "- The Classbook Team"])
    return subject, lines


def deliver(notification: Notification) -> bool:
    """Send one notification. Delivery problems are logged, never raised."""

    if not notification.recipients:
        logger.info(
            "No recipients for %s on booking %s; skipping.",
            notification.event.value,
            notification.booking_id,
        )
        return False
    subject, lines = _render(notification)
    try:
        send_mail(
            subject,
            "\n".join(lines),
            _format_from_email(notification.provider_name),
            notification.recipients,
            fail_silently=False,
        )
    except Exception:
        logger.exception(
            "Failed to deliver %s for booking %s",
            notification.event.value,
            notification.booking_id,
        )
        return False
    return True


def notify(event: NotificationEvent, booking: Booking) -> None:
    """Queue ``event`` for delivery once the current transaction commits."""

    notification = build_notification(event, booking)
    transaction.on_commit(lambda: deliver(notification))
