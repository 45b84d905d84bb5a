import types

import pytest
import stripe

from payments import gateway as gateway_module
from payments.gateway import (
    GatewayError,
    StripePaymentGateway,
    StubPaymentGateway,
    get_gateway,
)


@pytest.fixture
def live_settings(settings):
    settings.STRIPE_USE_STUB = False
    settings.STRIPE_SECRET_KEY = "sk_test_123"
    settings.STRIPE_TIMEOUT_SECONDS = 5
    return settings


@pytest.fixture
def no_sleep(monkeypatch):
    monkeypatch.setattr("payments.gateway.time.sleep", lambda seconds: None)


def _intent(**overrides):
    fields = {
        "id": "pi_123",
        "client_secret": "pi_123_secret_abc",
        "status": "requires_payment_method",
        "latest_charge": None,
    }
    fields.update(overrides)
    return types.SimpleNamespace(**fields)


def test_get_gateway_uses_stub_by_default(settings):
    settings.STRIPE_USE_STUB = True

    assert isinstance(get_gateway(), StubPaymentGateway)


def test_get_gateway_uses_stub_without_secret_key(settings):
    settings.STRIPE_USE_STUB = False
    settings.STRIPE_SECRET_KEY = ""

    assert isinstance(get_gateway(), StubPaymentGateway)


def test_get_gateway_uses_stripe_when_configured(live_settings):
    gateway = get_gateway()

    assert isinstance(gateway, StripePaymentGateway)
    assert stripe.api_key == "sk_test_123"


def test_stub_returns_predictable_identifiers():
    stub = StubPaymentGateway()

    handle = stub.create_intent(amount_cents=1199, currency="gbp", metadata={})
    assert handle.intent_ref.startswith("pi_test_")
    assert handle.client_secret.startswith(handle.intent_ref)
    assert stub.refund(charge_ref="ch_1", amount_cents=100).startswith("re_test_")
    assert stub.transfer(amount_cents=1000, currency="gbp", destination=None, metadata={}).startswith("tr_test_")
    assert stub.confirm_intent(handle.intent_ref, "pm_card_visa").succeeded
    assert stub.confirm_intent(handle.intent_ref, "pm_card_chargeDeclined").requires_payment_method


def test_create_intent_passes_idempotency_key(live_settings, monkeypatch):
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return _intent()

    monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)

    handle = StripePaymentGateway().create_intent(
        amount_cents=1199,
        currency="gbp",
        metadata={"booking_id": "b-1"},
        idempotency_key="booking-b-1-intent",
    )

    assert handle.intent_ref == "pi_123"
    assert handle.client_secret == "pi_123_secret_abc"
    assert captured["amount"] == 1199
    assert captured["idempotency_key"] == "booking-b-1-intent"
    assert captured["metadata"] == {"booking_id": "b-1"}


def test_connection_error_is_retried_once(live_settings, monkeypatch, no_sleep):
    calls = []

    def flaky_create(**kwargs):
        calls.append(kwargs)
        if len(calls) == 1:
            raise stripe.error.APIConnectionError("Connection reset")
        return _intent()

    monkeypatch.setattr(stripe.PaymentIntent, "create", flaky_create)

    handle = StripePaymentGateway().create_intent(
        amount_cents=1199, currency="gbp", metadata={}, idempotency_key="k"
    )

    assert handle.intent_ref == "pi_123"
    assert len(calls) == 2


def test_persistent_connection_error_is_transient(live_settings, monkeypatch, no_sleep):
    def down(*args, **kwargs):
        raise stripe.error.APIConnectionError("Timed out")

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", down)

    with pytest.raises(GatewayError) as excinfo:
        StripePaymentGateway().retrieve_intent("pi_123")

    assert excinfo.value.transient


def test_card_error_is_not_transient(live_settings, monkeypatch):
    calls = []

    def declined(*args, **kwargs):
        calls.append(kwargs)
        raise stripe.error.CardError("Your card was declined.", param=None, code="card_declined")

    monkeypatch.setattr(stripe.PaymentIntent, "confirm", declined)

    with pytest.raises(GatewayError) as excinfo:
        StripePaymentGateway().confirm_intent("pi_123", "pm_card_visa")

    assert not excinfo.value.transient
    assert excinfo.value.code == "card_declined"
    assert len(calls) == 1


def test_retrieve_intent_reads_latest_charge(live_settings, monkeypatch):
    monkeypatch.setattr(
        stripe.PaymentIntent,
        "retrieve",
        lambda intent_ref: _intent(status="succeeded", latest_charge="ch_789"),
    )

    status = StripePaymentGateway().retrieve_intent("pi_123")

    assert status.succeeded
    assert status.charge_ref == "ch_789"


def test_refund_by_charge(live_settings, monkeypatch):
    captured = {}

    def fake_refund(**kwargs):
        captured.update(kwargs)
        return types.SimpleNamespace(id="re_1")

    monkeypatch.setattr(stripe.Refund, "create", fake_refund)

    refund_ref = StripePaymentGateway().refund(
        charge_ref="ch_789",
        amount_cents=599,
        reason="Change of plans",
        idempotency_key="booking-b-1-refund",
    )

    assert refund_ref == "re_1"
    assert captured["charge"] == "ch_789"
    assert captured["amount"] == 599
    assert captured["reason"] == "requested_by_customer"
    assert captured["metadata"] == {"reason": "Change of plans"}


def test_transfer_without_destination(live_settings):
    with pytest.raises(GatewayError) as excinfo:
        StripePaymentGateway().transfer(amount_cents=1000, currency="gbp", destination=None, metadata={})

    assert excinfo.value.code == "no_destination"
    assert not excinfo.value.transient


def test_request_timeout_is_bounded(live_settings, monkeypatch):
    monkeypatch.setattr(gateway_module, "_http_client", None)

    StripePaymentGateway()

    assert stripe.default_http_client._timeout == 5
