import hashlib
import hmac
import json
import time
import uuid
from datetime import timedelta

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from accounts.models import User
from catalog.models import ClassSession


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def provider(db):
    return User.objects.create_user(
        username="swim@example.com",
        email="swim@example.com",
        password="password123",
        first_name="Sam",
        last_name="Swim",
        user_type=User.PROVIDER,
        business_name="Splash Swim School",
        stripe_account_id="acct_test_splash",
    )


@pytest.fixture
def parent(db):
    return User.objects.create_user(
        username="parent@example.com",
        email="parent@example.com",
        password="password123",
        first_name="Priya",
        last_name="Parent",
        display_name="Priya Parent",
    )


@pytest.fixture
def other_parent(db):
    return User.objects.create_user(
        username="other@example.com",
        email="other@example.com",
        password="password123",
        first_name="Jordan",
        last_name="Other",
    )


@pytest.fixture
def make_class(provider):
    def _make_class(**overrides):
        fields = {
            "provider": provider,
            "title": "Toddler Splash",
            "location": "Riverside Pool",
            "session_start": timezone.now() + timedelta(days=3),
            "base_price_cents": 1000,
            "max_capacity": 4,
        }
        fields.update(overrides)
        return ClassSession.objects.create(**fields)

    return _make_class


@pytest.fixture
def class_session(make_class):
    return make_class()


@pytest.fixture
def child():
    return [{"name": "Mia", "age": 4}]


@pytest.fixture
def signed_event(settings):
    """Build a Stripe event body plus a valid ``Stripe-Signature`` header for it."""

    def _signed_event(event_type, data_object, *, event_id=None, secret=None, timestamp=None):
        payload = json.dumps(
            {
                "id": event_id or f"evt_{uuid.uuid4().hex}",
                "object": "event",
                "type": event_type,
                "data": {"object": data_object},
            }
        )
        timestamp = timestamp or int(time.time())
        signing_secret = secret or settings.STRIPE_WEBHOOK_SECRET
        signature = hmac.new(
            signing_secret.encode("utf-8"),
            f"{timestamp}.{payload}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return payload.encode("utf-8"), f"t={timestamp},v1={signature}"

    return _signed_event
