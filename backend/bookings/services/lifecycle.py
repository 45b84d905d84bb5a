"""
Booking lifecycle: every change to a booking's status or payment status.

Each operation loads the booking, checks the move against the transition
table in ``bookings.states`` and writes through ``bookings.store``, whose
compare-and-set rejects a write if the booking changed since it was read.
Gateway calls happen before the database write so a slow gateway never holds
a transaction open.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from bookings import store
from bookings.exceptions import (
    BookingValidationError,
    CapacityExceededError,
    DuplicateBookingError,
    PastSessionError,
    StateConflictError,
)
from bookings.models import Booking, BookingParticipant
from bookings.policies import price_booking, refund_amount_for
from bookings.services.notifications import NotificationEvent, notify
from bookings.states import (
    COLLECTED_PAYMENT_STATUSES,
    BookingStatus,
    PaymentStatus,
    can_transition_payment,
    ensure_payment_status,
    ensure_payment_transition,
    ensure_status,
    ensure_status_transition,
)
from catalog.models import ClassSession
from catalog.services import capacity
from catalog.services.capacity import UnknownClassError
from payments.gateway import GatewayError, PaymentGateway, PaymentIntentHandle, get_gateway
from payments.models import PaymentTransaction
from payments.services import release as release_scheduler
from payments.services.payouts import trigger_provider_payout

logger = logging.getLogger(__name__)

MAX_PARTICIPANT_AGE = 120


@dataclass(frozen=True)
class ParticipantInput:
    name: str
    age: int


@dataclass(frozen=True)
class CancellationResult:
    booking: Booking
    refund_amount_cents: int


def _clean_participants(participants: Iterable[Mapping[str, Any]] | None) -> list[ParticipantInput]:
    cleaned: list[ParticipantInput] = []
    for index, raw in enumerate(participants or [], start=1):
        if not isinstance(raw, Mapping):
            raise BookingValidationError(f"Participant {index} must be an object with a name and an age.")
        name = str(raw.get("name") or "").strip()
        age = raw.get("age")
        if not name:
            raise BookingValidationError(f"Participant {index} needs a name.")
        if isinstance(age, bool) or not isinstance(age, int) or not 0 <= age <= MAX_PARTICIPANT_AGE:
            raise BookingValidationError(f"Participant {index} needs an age between 0 and {MAX_PARTICIPANT_AGE}.")
        cleaned.append(ParticipantInput(name=name, age=age))
    if not cleaned:
        raise BookingValidationError("At least one participant is required.")
    return cleaned


def _load_class(class_id) -> ClassSession:
    try:
        return ClassSession.objects.select_related("provider").get(pk=class_id)
    except (ClassSession.DoesNotExist, ValueError, TypeError):
        raise UnknownClassError(class_id) from None


def create_booking(
    *,
    class_id,
    booker,
    participants: Iterable[Mapping[str, Any]],
    session_start: datetime | None = None,
    special_requests: str = "",
) -> Booking:
    """Admit the participants to the class and record a pending, unpaid booking."""

    cleaned = _clean_participants(participants)
    class_session = _load_class(class_id)
    if not class_session.is_bookable:
        raise BookingValidationError("Class is not available for booking.")
    if session_start is not None and session_start != class_session.session_start:
        raise BookingValidationError("Session start does not match the class schedule.")
    if class_session.session_start <= timezone.now():
        raise PastSessionError()
    if not settings.BOOKING_ALLOW_REPEAT_BOOKINGS and store.active_booking_exists(
        booker=booker, class_session=class_session
    ):
        raise DuplicateBookingError()

    price = price_booking(class_session.base_price_cents)
    with transaction.atomic():
        admission = capacity.try_admit(class_session.pk, len(cleaned))
        if not admission.admitted:
            raise CapacityExceededError()
        booking = Booking.objects.create(
            class_session=class_session,
            booker=booker,
            session_start=class_session.session_start,
            special_requests=special_requests or "",
            base_price_cents=price.base_price_cents,
            service_fee_cents=price.service_fee_cents,
            total_amount_cents=price.total_amount_cents,
            currency=class_session.currency,
        )
        BookingParticipant.objects.bulk_create(
            [
                BookingParticipant(booking=booking, position=position, name=p.name, age=p.age)
                for position, p in enumerate(cleaned, start=1)
            ]
        )
        notify(NotificationEvent.BOOKING_CREATED, booking)

    logger.info(
        "Booking %s created for class %s (%s participant(s), %s %s)",
        booking.booking_number,
        class_session.pk,
        len(cleaned),
        booking.total_amount_cents,
        booking.currency,
    )
    return booking


def intent_idempotency_key(booking: Booking) -> str:
    return f"booking-{booking.pk}-intent"


def refund_idempotency_key(booking: Booking) -> str:
    return f"booking-{booking.pk}-refund"


def begin_payment(booking_id, *, gateway: PaymentGateway | None = None) -> PaymentIntentHandle:
    """Open (or return the already open) payment intent for the booking's total."""

    gateway = gateway or get_gateway()
    booking = store.get_booking(booking_id)
    ensure_status(booking, BookingStatus.PENDING)
    ensure_payment_status(booking, PaymentStatus.UNPAID, PaymentStatus.AUTHORIZATION_PENDING)
    if booking.payment_intent_ref:
        current = gateway.retrieve_intent(booking.payment_intent_ref)
        logger.info("Booking %s already has intent %s", booking.pk, booking.payment_intent_ref)
        return PaymentIntentHandle(
            intent_ref=booking.payment_intent_ref,
            client_secret=current.client_secret,
            status=current.status,
        )

    ensure_payment_transition(booking, PaymentStatus.AUTHORIZATION_PENDING)

    handle = gateway.create_intent(
        amount_cents=booking.total_amount_cents,
        currency=booking.currency,
        metadata={
            "booking_id": str(booking.pk),
            "booking_number": booking.booking_number,
            "class_id": str(booking.class_session_id),
        },
        idempotency_key=intent_idempotency_key(booking),
    )

    with transaction.atomic():
        booking.payment_intent_ref = handle.intent_ref
        booking.payment_status = PaymentStatus.AUTHORIZATION_PENDING
        store.compare_and_set(booking, ["payment_intent_ref", "payment_status"])
        PaymentTransaction.objects.create(
            booking=booking,
            kind=PaymentTransaction.Kind.INTENT,
            reference=handle.intent_ref,
            amount_cents=booking.total_amount_cents,
            currency=booking.currency,
            status=handle.status,
        )
    logger.info("Opened payment intent %s for booking %s", handle.intent_ref, booking.pk)
    return handle


def confirm_payment(
    booking_id,
    payment_method: str | None = None,
    *,
    gateway: PaymentGateway | None = None,
) -> Booking:
    """
    Settle the booking from the gateway's view of its intent.

    With a payment method the intent is confirmed first; without one it is
    only re-read. A decline on confirmation fails the payment; a merely
    unpaid intent leaves the booking untouched. Only a booking still awaiting
    authorization reaches the gateway; a settled one is returned on re-read.
    """

    gateway = gateway or get_gateway()
    booking = store.get_booking(booking_id)
    if not booking.payment_intent_ref:
        raise StateConflictError(
            booking.pk,
            field="payment_intent_ref",
            current="none",
            expected=["open intent"],
            message="Payment has not been started for this booking.",
        )
    if not payment_method and booking.payment_status in COLLECTED_PAYMENT_STATUSES:
        return booking
    # Anything past AUTHORIZATION_PENDING must never reach the gateway again.
    ensure_status(booking, BookingStatus.PENDING)
    ensure_payment_status(booking, PaymentStatus.AUTHORIZATION_PENDING)

    if payment_method:
        intent = gateway.confirm_intent(booking.payment_intent_ref, payment_method)
    else:
        intent = gateway.retrieve_intent(booking.payment_intent_ref)

    if intent.succeeded:
        return on_payment_authorized(booking.pk, intent.charge_ref, gateway=gateway)
    if intent.failed or (payment_method and intent.requires_payment_method):
        return on_payment_failed(booking.pk, intent_open=not intent.failed, gateway=gateway)
    logger.info("Intent %s for booking %s is %s; nothing to apply", intent.intent_ref, booking.pk, intent.status)
    return booking


def _cancel_open_intent(booking: Booking, gateway: PaymentGateway | None = None) -> None:
    if not booking.payment_intent_ref:
        return
    gateway = gateway or get_gateway()
    try:
        gateway.cancel_intent(booking.payment_intent_ref)
    except GatewayError as exc:
        logger.warning(
            "Could not cancel intent %s for booking %s: %s",
            booking.payment_intent_ref,
            booking.pk,
            exc,
        )


def _refund_stray_payment(booking: Booking, charge_ref: str | None, gateway: PaymentGateway | None) -> Booking:
    """
    Give back money collected for a booking that can no longer be fulfilled
    (cancelled, or failed and its places released).

    A transient gateway error propagates so the caller retries; any other
    gateway error is recorded on the booking's transactions for manual
    reconciliation. When this runs inside a webhook's transaction and that
    rolls back, the redelivery reuses the refund through its idempotency key.
    """

    if booking.transactions.filter(kind=PaymentTransaction.Kind.REFUND).exists():
        logger.info("Stray payment for booking %s already refunded", booking.pk)
        return booking

    reference = charge_ref or booking.payment_intent_ref
    gateway = gateway or get_gateway()
    try:
        refund_ref = gateway.refund(
            charge_ref=reference,
            amount_cents=booking.total_amount_cents,
            reason="Booking no longer active",
            idempotency_key=refund_idempotency_key(booking),
        )
    except GatewayError as exc:
        if exc.transient:
            raise
        logger.error(
            "Payment %s collected for %s booking %s could not be refunded (%s); needs manual reconciliation.",
            reference,
            booking.status,
            booking.pk,
            exc,
        )
        PaymentTransaction.objects.create(
            booking=booking,
            kind=PaymentTransaction.Kind.REFUND,
            reference=reference or "",
            amount_cents=booking.total_amount_cents,
            currency=booking.currency,
            status="needs_attention",
        )
        return booking

    fields = ["refund_amount_cents", "charge_ref"]
    booking.refund_amount_cents = booking.total_amount_cents
    booking.charge_ref = charge_ref or booking.charge_ref
    if can_transition_payment(booking.payment_status, PaymentStatus.REFUNDED):
        booking.payment_status = PaymentStatus.REFUNDED
        fields.append("payment_status")
    with transaction.atomic():
        store.compare_and_set(booking, fields)
        PaymentTransaction.objects.create(
            booking=booking,
            kind=PaymentTransaction.Kind.REFUND,
            reference=refund_ref,
            amount_cents=booking.total_amount_cents,
            currency=booking.currency,
            status="succeeded",
        )
    logger.warning(
        "Payment collected for %s booking %s after it closed; refunded %s as %s",
        booking.status,
        booking.pk,
        booking.total_amount_cents,
        refund_ref,
    )
    return booking


def on_payment_authorized(
    booking_id,
    charge_ref: str | None,
    *,
    gateway: PaymentGateway | None = None,
) -> Booking:
    booking = store.get_booking(booking_id)
    if booking.payment_status in (PaymentStatus.HELD, PaymentStatus.PAID, PaymentStatus.REFUNDED):
        logger.info("Payment for booking %s already %s; ignoring authorization", booking.pk, booking.payment_status)
        return booking
    if booking.status == BookingStatus.CANCELLED or booking.payment_status == PaymentStatus.FAILED:
        return _refund_stray_payment(booking, charge_ref, gateway)

    ensure_payment_status(booking, PaymentStatus.AUTHORIZATION_PENDING, PaymentStatus.UNPAID)
    ensure_payment_transition(booking, PaymentStatus.HELD)
    ensure_status_transition(booking, BookingStatus.CONFIRMED)

    with transaction.atomic():
        booking.payment_status = PaymentStatus.HELD
        booking.status = BookingStatus.CONFIRMED
        booking.charge_ref = charge_ref or booking.charge_ref
        booking.payment_date = timezone.now()
        store.compare_and_set(booking, ["payment_status", "status", "charge_ref", "payment_date"])
        notify(NotificationEvent.PAYMENT_RECEIVED, booking)
    logger.info("Booking %s confirmed; %s held", booking.pk, booking.total_amount_cents)
    return booking


def on_payment_failed(
    booking_id,
    *,
    intent_open: bool = True,
    gateway: PaymentGateway | None = None,
) -> Booking:
    """
    Mark the payment failed and give the places back.

    With ``intent_open`` the gateway intent is cancelled once this commits, so
    the same client secret cannot be used to pay for a booking that no longer
    holds places.
    """

    booking = store.get_booking(booking_id)
    if booking.payment_status == PaymentStatus.FAILED:
        logger.info("Payment for booking %s already failed; ignoring", booking.pk)
        return booking

    ensure_payment_status(booking, PaymentStatus.AUTHORIZATION_PENDING)
    held_capacity = booking.holds_capacity

    with transaction.atomic():
        booking.payment_status = PaymentStatus.FAILED
        store.compare_and_set(booking, ["payment_status"])
        if held_capacity:
            capacity.release(booking.class_session_id, booking.participant_count)
        if intent_open:
            transaction.on_commit(lambda: _cancel_open_intent(booking, gateway))
    logger.info("Payment failed for booking %s; places released", booking.pk)
    return booking


def on_refund_issued(booking_id, amount_cents: int | None = None) -> Booking:
    """
    Record a refund the gateway reports, including ones issued outside this service.

    Only a full refund moves the payment to REFUNDED and drops the pending
    release; a partial one is recorded and left for reconciliation.
    """

    booking = store.get_booking(booking_id)
    if booking.payment_status == PaymentStatus.REFUNDED or (
        booking.payment_status == PaymentStatus.FAILED and booking.refund_amount_cents
    ):
        logger.info("Booking %s already refunded; ignoring", booking.pk)
        return booking

    if amount_cents is not None and amount_cents < booking.total_amount_cents:
        ensure_payment_status(booking, *COLLECTED_PAYMENT_STATUSES)
        if booking.refund_amount_cents != amount_cents:
            booking.refund_amount_cents = amount_cents
            store.compare_and_set(booking, ["refund_amount_cents"])
        logger.warning(
            "Partial refund of %s of %s on booking %s (payment %s); needs reconciliation",
            amount_cents,
            booking.total_amount_cents,
            booking.pk,
            booking.payment_status,
        )
        return booking

    ensure_payment_transition(booking, PaymentStatus.REFUNDED)
    booking.payment_status = PaymentStatus.REFUNDED
    booking.refund_amount_cents = amount_cents if amount_cents is not None else booking.total_amount_cents

    with transaction.atomic():
        store.compare_and_set(booking, ["payment_status", "refund_amount_cents"])
        release_scheduler.cancel_schedule(booking.pk)
    logger.info("Recorded refund of %s for booking %s", booking.refund_amount_cents, booking.pk)
    return booking


def cancel_booking(
    booking_id,
    reason: str | None = None,
    *,
    gateway: PaymentGateway | None = None,
) -> CancellationResult:
    booking = store.get_booking(booking_id)
    ensure_status_transition(booking, BookingStatus.CANCELLED)

    now = timezone.now()
    collected = booking.payment_status in COLLECTED_PAYMENT_STATUSES
    refund_cents = refund_amount_for(booking.total_amount_cents, booking.session_start, now) if collected else 0
    fields = ["status", "cancelled_at", "cancellation_reason", "refund_amount_cents"]
    refund_ref = None

    if collected and refund_cents > 0:
        ensure_payment_transition(booking, PaymentStatus.REFUNDED)
        gateway = gateway or get_gateway()
        refund_ref = gateway.refund(
            charge_ref=booking.charge_ref or booking.payment_intent_ref,
            amount_cents=refund_cents,
            reason=reason,
            idempotency_key=refund_idempotency_key(booking),
        )
        booking.payment_status = PaymentStatus.REFUNDED
        fields.append("payment_status")
    elif booking.payment_status == PaymentStatus.AUTHORIZATION_PENDING:
        _cancel_open_intent(booking, gateway)

    # Too late for a refund: the provider keeps the money, released as for an attended class.
    release_at = None
    if collected and refund_cents == 0 and booking.payment_status == PaymentStatus.HELD:
        release_at = release_scheduler.add_working_days(now, settings.FUNDS_HOLD_WORKING_DAYS)
        booking.funds_release_date = release_at
        fields.append("funds_release_date")

    held_capacity = booking.holds_capacity
    booking.status = BookingStatus.CANCELLED
    booking.cancelled_at = now
    booking.cancellation_reason = reason
    booking.refund_amount_cents = refund_cents

    with transaction.atomic():
        store.compare_and_set(booking, fields)
        if refund_ref:
            PaymentTransaction.objects.create(
                booking=booking,
                kind=PaymentTransaction.Kind.REFUND,
                reference=refund_ref,
                amount_cents=refund_cents,
                currency=booking.currency,
                status="succeeded",
            )
        if held_capacity:
            capacity.release(booking.class_session_id, booking.participant_count)
        if release_at is not None:
            release_scheduler.schedule(booking.pk, release_at)
        notify(NotificationEvent.BOOKING_CANCELLED, booking)

    logger.info("Booking %s cancelled; refund %s %s", booking.pk, refund_cents, booking.currency)
    return CancellationResult(booking=booking, refund_amount_cents=refund_cents)


def _close_attended(booking_id, target: str) -> Booking:
    booking = store.get_booking(booking_id)
    ensure_status(booking, BookingStatus.CONFIRMED)
    ensure_payment_status(booking, PaymentStatus.HELD)
    ensure_status_transition(booking, target)

    now = timezone.now()
    release_at = release_scheduler.add_working_days(now, settings.FUNDS_HOLD_WORKING_DAYS)
    booking.status = target
    booking.class_completed_at = now
    booking.funds_release_date = release_at

    with transaction.atomic():
        store.compare_and_set(booking, ["status", "class_completed_at", "funds_release_date"])
        release_scheduler.schedule(booking.pk, release_at)
    logger.info("Booking %s marked %s; funds release due %s", booking.pk, target, release_at.isoformat())
    return booking


def mark_class_completed(booking_id) -> Booking:
    return _close_attended(booking_id, BookingStatus.COMPLETED)


def mark_no_show(booking_id) -> Booking:
    """The class ran but nobody attended; the provider is still paid."""
    return _close_attended(booking_id, BookingStatus.NO_SHOW)


def finalize_release(booking_id, *, gateway: PaymentGateway | None = None) -> Booking:
    booking = store.get_booking(booking_id)
    ensure_payment_status(booking, PaymentStatus.HELD)
    if booking.funds_released:
        raise StateConflictError(
            booking.pk,
            field="funds_released",
            current="true",
            expected=["false"],
        )

    trigger_provider_payout(booking, gateway=gateway)

    with transaction.atomic():
        booking.payment_status = PaymentStatus.PAID
        booking.funds_released = True
        booking.funds_released_at = timezone.now()
        store.compare_and_set(booking, ["payment_status", "funds_released", "funds_released_at"])
        notify(NotificationEvent.PAYOUT_RELEASED, booking)
    logger.info("Released %s to provider for booking %s", booking.base_price_cents, booking.pk)
    return booking
