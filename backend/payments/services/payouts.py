from __future__ import annotations

import logging

from bookings.models import Booking
from payments.gateway import PaymentGateway, get_gateway
from payments.models import PaymentTransaction

logger = logging.getLogger(__name__)


def payout_idempotency_key(booking: Booking) -> str:
    return f"payout-{booking.pk}"


def trigger_provider_payout(booking: Booking, *, gateway: PaymentGateway | None = None) -> str:
    """
    Transfer the provider's share of a booking (the base price; the platform
    keeps the service fee) to their connected account.

    Safe to call again after a partial failure: a recorded payout is returned
    as-is, and the gateway call carries a per-booking idempotency key.
    """

    existing = booking.transactions.filter(kind=PaymentTransaction.Kind.PAYOUT).first()
    if existing:
        logger.info("Payout for booking %s already recorded as %s", booking.pk, existing.reference)
        return existing.reference

    gateway = gateway or get_gateway()
    provider = booking.class_session.provider
    reference = gateway.transfer(
        amount_cents=booking.base_price_cents,
        currency=booking.currency,
        destination=provider.stripe_account_id or None,
        metadata={
            "booking_id": str(booking.pk),
            "booking_number": booking.booking_number,
            "provider_id": str(provider.pk),
        },
        idempotency_key=payout_idempotency_key(booking),
    )
    PaymentTransaction.objects.create(
        booking=booking,
        kind=PaymentTransaction.Kind.PAYOUT,
        reference=reference,
        amount_cents=booking.base_price_cents,
        currency=booking.currency,
        status="paid",
    )
    logger.info(
        "Paid out %s %s to provider %s for booking %s (%s)",
        booking.base_price_cents,
        booking.currency,
        provider.pk,
        booking.pk,
        reference,
    )
    return reference
