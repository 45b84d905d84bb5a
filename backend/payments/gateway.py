"""
Payment gateway boundary.

The rest of the code base talks to ``PaymentGateway`` only. ``get_gateway``
returns the Stripe-backed implementation when a secret key is configured, or
the stub used in tests and local development otherwise.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional
from uuid import uuid4

import stripe
from django.conf import settings

logger = logging.getLogger(__name__)

RETRY_BACKOFF_SECONDS = 0.5

INTENT_SUCCEEDED = "succeeded"
INTENT_CANCELED = "canceled"
INTENT_REQUIRES_PAYMENT_METHOD = "requires_payment_method"

# Stripe's test-mode decline card, honoured by the stub too.
STUB_DECLINED_PAYMENT_METHODS = frozenset({"pm_card_chargeDeclined"})


class GatewayError(Exception):
    """A payment gateway call failed.

    ``transient`` errors (timeouts, connection drops, rate limits, gateway 5xx)
    are safe to retry; everything else (declined cards, bad requests) is not.
    """

    def __init__(self, code: str, message: str, *, transient: bool = False):
        super().__init__(message)
        self.code = code
        self.message = message
        self.transient = transient

    def __str__(self):
        return f"{self.code}: {self.message}"


@dataclass
class PaymentIntentHandle:
    intent_ref: str
    client_secret: Optional[str]
    status: str


@dataclass
class IntentStatus:
    intent_ref: str
    status: str
    client_secret: Optional[str] = None
    charge_ref: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == INTENT_SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.status == INTENT_CANCELED

    @property
    def requires_payment_method(self) -> bool:
        return self.status == INTENT_REQUIRES_PAYMENT_METHOD


class PaymentGateway:
    """Contract every gateway implementation fulfils."""

    def create_intent(
        self,
        *,
        amount_cents: int,
        currency: str,
        metadata: dict[str, Any],
        idempotency_key: str | None = None,
    ) -> PaymentIntentHandle:
        raise NotImplementedError

    def retrieve_intent(self, intent_ref: str) -> IntentStatus:
        raise NotImplementedError

    def confirm_intent(self, intent_ref: str, payment_method: str) -> IntentStatus:
        raise NotImplementedError

    def cancel_intent(self, intent_ref: str) -> IntentStatus:
        raise NotImplementedError

    def refund(
        self,
        *,
        charge_ref: str,
        amount_cents: int,
        reason: str | None = None,
        idempotency_key: str | None = None,
    ) -> str:
        raise NotImplementedError

    def transfer(
        self,
        *,
        amount_cents: int,
        currency: str,
        destination: str | None,
        metadata: dict[str, Any],
        idempotency_key: str | None = None,
    ) -> str:
        raise NotImplementedError


class StubPaymentGateway(PaymentGateway):
    """
    Lightweight stand-in for Stripe when running in stub mode.

    Tests and local development do not hit Stripe; instead, we return predictable
    identifiers so the booking flow (intents, refunds, payouts) behaves as if
    Stripe responded. Intents stay ``processing`` until a webhook settles them.
    """

    def create_intent(self, *, amount_cents, currency, metadata, idempotency_key=None):
        intent_ref = f"pi_test_{uuid4().hex}"
        return PaymentIntentHandle(
            intent_ref=intent_ref,
            client_secret=f"{intent_ref}_secret_{uuid4().hex[:12]}",
            status=INTENT_REQUIRES_PAYMENT_METHOD,
        )

    def retrieve_intent(self, intent_ref):
        return IntentStatus(
            intent_ref=intent_ref,
            status="processing",
            client_secret=f"{intent_ref}_secret_stub",
        )

    def confirm_intent(self, intent_ref, payment_method):
        if payment_method in STUB_DECLINED_PAYMENT_METHODS:
            return IntentStatus(intent_ref=intent_ref, status=INTENT_REQUIRES_PAYMENT_METHOD)
        return IntentStatus(
            intent_ref=intent_ref,
            status=INTENT_SUCCEEDED,
            charge_ref=f"ch_test_{uuid4().hex}",
        )

    def cancel_intent(self, intent_ref):
        return IntentStatus(intent_ref=intent_ref, status=INTENT_CANCELED)

    def refund(self, *, charge_ref, amount_cents, reason=None, idempotency_key=None):
        return f"re_test_{uuid4().hex}"

    def transfer(self, *, amount_cents, currency, destination, metadata, idempotency_key=None):
        return f"tr_test_{uuid4().hex}"


_TRANSIENT_ERRORS = (
    stripe.error.APIConnectionError,
    stripe.error.RateLimitError,
    stripe.error.APIError,
)

_http_client = None


def _get_stripe_api_key() -> Optional[str]:
    key = getattr(settings, "STRIPE_SECRET_KEY", "")
    return key or None


def _should_use_stub() -> bool:
    if getattr(settings, "STRIPE_USE_STUB", False):
        return True
    return _get_stripe_api_key() is None


def configure_stripe():
    global _http_client

    api_key = _get_stripe_api_key()
    if not api_key:
        raise RuntimeError("STRIPE_SECRET_KEY is not configured.")
    stripe.api_key = api_key
    stripe.max_network_retries = 0
    if _http_client is None:
        _http_client = stripe.http_client.RequestsClient(timeout=settings.STRIPE_TIMEOUT_SECONDS)
    stripe.default_http_client = _http_client


def _charge_ref_from(intent) -> Optional[str]:
    latest_charge = getattr(intent, "latest_charge", None)
    if latest_charge is None:
        return None
    if isinstance(latest_charge, str):
        return latest_charge
    return getattr(latest_charge, "id", None)


def _to_status(intent) -> IntentStatus:
    return IntentStatus(
        intent_ref=intent.id,
        status=intent.status,
        client_secret=getattr(intent, "client_secret", None),
        charge_ref=_charge_ref_from(intent),
    )


class StripePaymentGateway(PaymentGateway):
    """Stripe PaymentIntents-backed gateway."""

    def __init__(self):
        configure_stripe()

    def _call(self, operation: str, func, *args, retry: bool = False, **kwargs):
        attempts = 2 if retry else 1
        for attempt in range(1, attempts + 1):
            try:
                return func(*args, **kwargs)
            except _TRANSIENT_ERRORS as exc:
                if attempt < attempts:
                    logger.warning("Stripe %s failed (%s); retrying once.", operation, exc)
                    time.sleep(RETRY_BACKOFF_SECONDS)
                    continue
                logger.error("Stripe %s failed after %s attempt(s): %s", operation, attempt, exc)
                raise GatewayError(
                    getattr(exc, "code", None) or "gateway_unavailable",
                    str(exc) or "Payment gateway unavailable.",
                    transient=True,
                ) from exc
            except stripe.error.StripeError as exc:
                logger.warning("Stripe %s rejected: %s", operation, exc)
                raise GatewayError(
                    getattr(exc, "code", None) or "gateway_error",
                    getattr(exc, "user_message", None) or str(exc),
                ) from exc

    def create_intent(self, *, amount_cents, currency, metadata, idempotency_key=None):
        intent = self._call(
            "create_intent",
            stripe.PaymentIntent.create,
            amount=amount_cents,
            currency=currency,
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
            idempotency_key=idempotency_key,
            retry=idempotency_key is not None,
        )
        return PaymentIntentHandle(
            intent_ref=intent.id,
            client_secret=intent.client_secret,
            status=intent.status,
        )

    def retrieve_intent(self, intent_ref):
        intent = self._call("retrieve_intent", stripe.PaymentIntent.retrieve, intent_ref, retry=True)
        return _to_status(intent)

    def confirm_intent(self, intent_ref, payment_method):
        intent = self._call(
            "confirm_intent",
            stripe.PaymentIntent.confirm,
            intent_ref,
            payment_method=payment_method,
        )
        return _to_status(intent)

    def cancel_intent(self, intent_ref):
        intent = self._call("cancel_intent", stripe.PaymentIntent.cancel, intent_ref)
        return _to_status(intent)

    def refund(self, *, charge_ref, amount_cents, reason=None, idempotency_key=None):
        metadata = {"reason": reason} if reason else {}
        # Bookings settled without a charge id on the event are refunded by intent.
        target = {"payment_intent": charge_ref} if charge_ref.startswith("pi_") else {"charge": charge_ref}
        refund = self._call(
            "refund",
            stripe.Refund.create,
            **target,
            amount=amount_cents,
            reason="requested_by_customer",
            metadata=metadata,
            idempotency_key=idempotency_key,
            retry=idempotency_key is not None,
        )
        return refund.id

    def transfer(self, *, amount_cents, currency, destination, metadata, idempotency_key=None):
        if not destination:
            raise GatewayError("no_destination", "Provider has no connected payout account.")
        transfer = self._call(
            "transfer",
            stripe.Transfer.create,
            amount=amount_cents,
            currency=currency,
            destination=destination,
            metadata=metadata,
            idempotency_key=idempotency_key,
            retry=idempotency_key is not None,
        )
        return transfer.id


def get_gateway() -> PaymentGateway:
    if _should_use_stub():
        return StubPaymentGateway()
    return StripePaymentGateway()
