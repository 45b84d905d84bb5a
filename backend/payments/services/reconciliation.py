from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from django.conf import settings
from django.utils import timezone

from bookings.exceptions import StateConflictError
from bookings.models import Booking
from bookings.services import lifecycle
from bookings.states import PaymentStatus
from payments.gateway import GatewayError, PaymentGateway, get_gateway

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationReport:
    checked: int = 0
    authorized: int = 0
    failed: int = 0
    refunded: int = 0
    unchanged: int = 0
    errors: int = 0


def stale_authorizations(now: datetime):
    cutoff = now - timedelta(minutes=settings.PAYMENT_AUTHORIZATION_STALE_MINUTES)
    return Booking.objects.filter(
        payment_status=PaymentStatus.AUTHORIZATION_PENDING,
        payment_intent_ref__isnull=False,
        updated_at__lte=cutoff,
    ).order_by("updated_at")


def _reconcile_one(booking: Booking, gateway: PaymentGateway, report: ReconciliationReport) -> None:
    intent = gateway.retrieve_intent(booking.payment_intent_ref)
    if intent.succeeded:
        booking = lifecycle.on_payment_authorized(booking.pk, intent.charge_ref, gateway=gateway)
        if booking.payment_status == PaymentStatus.HELD:
            report.authorized += 1
            logger.info("Reconciled booking %s: payment authorized", booking.pk)
        else:
            report.refunded += 1
            logger.info("Reconciled booking %s: late payment %s", booking.pk, booking.payment_status)
    elif intent.failed or intent.requires_payment_method:
        # Abandoned checkout: close the intent so a late attempt cannot charge.
        if intent.requires_payment_method:
            gateway.cancel_intent(booking.payment_intent_ref)
        lifecycle.on_payment_failed(booking.pk, intent_open=False)
        report.failed += 1
        logger.info("Reconciled booking %s: intent %s, payment failed", booking.pk, intent.status)
    else:
        report.unchanged += 1
        logger.info("Booking %s intent still %s; leaving it pending", booking.pk, intent.status)


def reconcile_pending_authorizations(
    now: datetime | None = None,
    *,
    gateway: PaymentGateway | None = None,
) -> ReconciliationReport:
    """Re-query the gateway for bookings whose authorization never settled."""

    now = now or timezone.now()
    gateway = gateway or get_gateway()
    report = ReconciliationReport()

    for booking in stale_authorizations(now):
        report.checked += 1
        try:
            _reconcile_one(booking, gateway, report)
        except GatewayError as exc:
            logger.warning("Could not reconcile booking %s: %s", booking.pk, exc)
            report.errors += 1
        except StateConflictError as exc:
            logger.warning("Booking %s changed during reconciliation: %s", booking.pk, exc)
            report.errors += 1

    return report
