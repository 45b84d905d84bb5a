"""
Stripe webhook ingestion.

Events are verified against ``STRIPE_WEBHOOK_SECRET``, deduplicated through
``ProcessedWebhookEvent`` and dispatched to the booking lifecycle. The
ledger row is written in the same transaction as the booking change, so an
event is either fully applied and recorded or neither.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

import stripe
from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from bookings import store
from bookings.exceptions import BookingNotFound, StaleBookingError, StateConflictError
from bookings.services import lifecycle
from payments.models import ProcessedWebhookEvent

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"
CHARGE_REFUNDED = "charge.refunded"


class WebhookOutcome(str, Enum):
    PROCESSED = "PROCESSED"
    DUPLICATE = "DUPLICATE"
    UNRECOGNIZED = "UNRECOGNIZED"
    IGNORED = "IGNORED"


@dataclass(frozen=True)
class IngestResult:
    outcome: WebhookOutcome
    event_id: str
    event_type: str


class WebhookSignatureInvalid(Exception):
    """The payload was not signed with our webhook secret (or is not an event at all)."""


class WebhookNotConfigured(RuntimeError):
    pass


def _verify(raw_payload: bytes, signature_header: str | None, secret: str):
    if not signature_header:
        logger.warning("Stripe webhook received without a signature header.")
        raise WebhookSignatureInvalid("Missing Stripe-Signature header.")
    try:
        return stripe.Webhook.construct_event(
            raw_payload,
            signature_header,
            secret,
            tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        )
    except ValueError as exc:
        logger.warning("Invalid payload received on Stripe webhook.")
        raise WebhookSignatureInvalid("Invalid payload.") from exc
    except stripe.error.SignatureVerificationError as exc:
        logger.warning("Invalid Stripe signature on webhook: %s", exc)
        raise WebhookSignatureInvalid("Invalid signature.") from exc


def _metadata_booking(data_object):
    metadata = data_object.get("metadata") or {}
    booking_id = metadata.get("booking_id")
    if not booking_id:
        return None
    try:
        return store.get_booking(booking_id)
    except BookingNotFound:
        return None


def _booking_for_intent(data_object):
    return store.find_by_payment_intent(data_object.get("id")) or _metadata_booking(data_object)


def _booking_for_charge(data_object):
    return (
        store.find_by_charge(data_object.get("id"))
        or store.find_by_payment_intent(data_object.get("payment_intent"))
        or _metadata_booking(data_object)
    )


def _charge_ref(data_object) -> str | None:
    latest_charge = data_object.get("latest_charge")
    if isinstance(latest_charge, str):
        return latest_charge
    if latest_charge:
        return latest_charge.get("id")
    return None


def _dispatch(event) -> WebhookOutcome:
    event_type = event["type"]
    data_object = event["data"]["object"]

    if event_type in (PAYMENT_SUCCEEDED, PAYMENT_FAILED):
        booking = _booking_for_intent(data_object)
    elif event_type == CHARGE_REFUNDED:
        booking = _booking_for_charge(data_object)
    else:
        logger.info("Ignoring unhandled Stripe event type %s (%s)", event_type, event["id"])
        return WebhookOutcome.UNRECOGNIZED

    if booking is None:
        logger.warning("Stripe event %s (%s) does not match any booking", event["id"], event_type)
        return WebhookOutcome.UNRECOGNIZED

    try:
        if event_type == PAYMENT_SUCCEEDED:
            lifecycle.on_payment_authorized(booking.pk, _charge_ref(data_object))
        elif event_type == PAYMENT_FAILED:
            lifecycle.on_payment_failed(booking.pk)
        else:
            lifecycle.on_refund_issued(booking.pk, data_object.get("amount_refunded"))
    except StaleBookingError:
        raise
    except StateConflictError as exc:
        logger.warning(
            "Stripe event %s (%s) conflicts with booking %s state; needs reconciliation: %s",
            event["id"],
            event_type,
            booking.pk,
            exc,
        )
        return WebhookOutcome.IGNORED
    return WebhookOutcome.PROCESSED


def ingest(raw_payload: bytes, signature_header: str | None) -> IngestResult:
    """Verify, deduplicate and apply one webhook delivery."""

    secret = getattr(settings, "STRIPE_WEBHOOK_SECRET", "")
    if not secret:
        raise WebhookNotConfigured("STRIPE_WEBHOOK_SECRET is not configured.")

    event = _verify(raw_payload, signature_header, secret)
    event_id = event["id"]
    event_type = event["type"]

    if ProcessedWebhookEvent.objects.filter(event_id=event_id).exists():
        logger.info("Stripe event %s already processed; skipping", event_id)
        return IngestResult(WebhookOutcome.DUPLICATE, event_id, event_type)

    try:
        with transaction.atomic():
            outcome = _dispatch(event)
            ProcessedWebhookEvent.objects.create(
                event_id=event_id,
                event_type=event_type,
                outcome=outcome.value,
            )
    except IntegrityError:
        if ProcessedWebhookEvent.objects.filter(event_id=event_id).exists():
            logger.info("Stripe event %s was processed by a concurrent delivery", event_id)
            return IngestResult(WebhookOutcome.DUPLICATE, event_id, event_type)
        raise

    logger.info("Stripe event %s (%s): %s", event_id, event_type, outcome.value)
    return IngestResult(outcome, event_id, event_type)


def prune_processed_events(now: datetime | None = None) -> int:
    now = now or timezone.now()
    cutoff = now - timedelta(days=settings.WEBHOOK_EVENT_RETENTION_DAYS)
    deleted, _ = ProcessedWebhookEvent.objects.filter(processed_at__lt=cutoff).delete()
    if deleted:
        logger.info("Pruned %s processed webhook event(s) older than %s", deleted, cutoff.isoformat())
    return deleted
