from datetime import timedelta

import pytest
from django.utils import timezone

from bookings.services import lifecycle
from bookings.states import BookingStatus, PaymentStatus
from payments.gateway import GatewayError, StubPaymentGateway


@pytest.fixture
def parent_client(api_client, parent):
    api_client.force_authenticate(parent)
    return api_client


@pytest.fixture
def booking(class_session, parent, child):
    return lifecycle.create_booking(class_id=class_session.pk, booker=parent, participants=child)


@pytest.fixture
def held_booking(booking):
    lifecycle.begin_payment(booking.pk)
    return lifecycle.on_payment_authorized(booking.pk, "ch_test_api")


def _payload(class_session, **overrides):
    payload = {
        "class_id": class_session.pk,
        "participants": [{"name": "Mia", "age": 4}],
        "special_requests": "Bringing armbands",
    }
    payload.update(overrides)
    return payload


@pytest.mark.django_db
def test_classes_list_shows_remaining_places(api_client, parent, class_session, make_class):
    make_class(title="Hidden", is_published=False)
    api_client.force_authenticate(parent)

    response = api_client.get("/api/classes/")

    assert response.status_code == 200
    results = response.json()["results"]
    assert [item["title"] for item in results] == ["Toddler Splash"]
    assert results[0]["spots_remaining"] == 4
    assert results[0]["provider_name"] == "Splash Swim School"


@pytest.mark.django_db
def test_parent_creates_booking(parent_client, class_session):
    response = parent_client.post("/api/bookings/", _payload(class_session), format="json")

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == BookingStatus.PENDING
    assert data["payment_status"] == PaymentStatus.UNPAID
    assert data["total_amount_cents"] == 1199
    assert data["participants"] == [{"position": 1, "name": "Mia", "age": 4}]
    class_session.refresh_from_db()
    assert class_session.booked_count == 1


@pytest.mark.django_db
def test_provider_cannot_create_booking(api_client, provider, class_session):
    api_client.force_authenticate(provider)

    response = api_client.post("/api/bookings/", _payload(class_session), format="json")

    assert response.status_code == 403


@pytest.mark.django_db
def test_create_booking_requires_participants(parent_client, class_session):
    response = parent_client.post("/api/bookings/", _payload(class_session, participants=[]), format="json")

    assert response.status_code == 400
    assert "participants" in response.json()


@pytest.mark.django_db
def test_create_booking_full_class_returns_conflict(parent_client, make_class, other_parent):
    tiny = make_class(max_capacity=1)
    lifecycle.create_booking(class_id=tiny.pk, booker=other_parent, participants=[{"name": "Ava", "age": 5}])

    response = parent_client.post("/api/bookings/", _payload(tiny), format="json")

    assert response.status_code == 409
    assert response.json() == {"kind": "class_full", "detail": "Class is full."}


@pytest.mark.django_db
def test_create_booking_unknown_class_returns_404(parent_client, class_session):
    response = parent_client.post("/api/bookings/", _payload(class_session, class_id=999999), format="json")

    assert response.status_code == 404
    assert response.json()["kind"] == "class_not_found"


@pytest.mark.django_db
def test_create_booking_past_session_returns_400(parent_client, make_class):
    past = make_class(session_start=timezone.now() - timedelta(days=1))

    response = parent_client.post("/api/bookings/", _payload(past), format="json")

    assert response.status_code == 400
    assert response.json()["kind"] == "past_session"


@pytest.mark.django_db
def test_duplicate_booking_returns_conflict(parent_client, booking, class_session):
    response = parent_client.post("/api/bookings/", _payload(class_session), format="json")

    assert response.status_code == 409
    assert response.json()["kind"] == "duplicate_booking"


@pytest.mark.django_db
def test_bookings_list_is_scoped_by_role(api_client, booking, provider, other_parent, make_class, parent):
    other_class = make_class(title="Another class")
    lifecycle.create_booking(class_id=other_class.pk, booker=other_parent, participants=[{"name": "Ava", "age": 5}])

    api_client.force_authenticate(parent)
    mine = api_client.get("/api/bookings/").json()["results"]
    assert [item["id"] for item in mine] == [str(booking.pk)]

    api_client.force_authenticate(provider)
    theirs = api_client.get("/api/bookings/").json()["results"]
    assert len(theirs) == 2


@pytest.mark.django_db
def test_bookings_list_filters_by_payment_status(parent_client, booking, held_booking):
    response = parent_client.get("/api/bookings/", {"payment_status": PaymentStatus.HELD})

    assert response.status_code == 200
    assert [item["id"] for item in response.json()["results"]] == [str(booking.pk)]
    assert parent_client.get("/api/bookings/", {"payment_status": PaymentStatus.UNPAID}).json()["count"] == 0


@pytest.mark.django_db
def test_other_parent_cannot_see_booking(api_client, booking, other_parent):
    api_client.force_authenticate(other_parent)

    response = api_client.get(f"/api/bookings/{booking.pk}/")

    assert response.status_code == 404


@pytest.mark.django_db
def test_pay_returns_client_secret(parent_client, booking):
    response = parent_client.post(f"/api/bookings/{booking.pk}/pay/")

    assert response.status_code == 200
    data = response.json()
    assert data["payment_intent_id"].startswith("pi_test_")
    assert data["client_secret"]
    assert data["amount_cents"] == booking.total_amount_cents


@pytest.mark.django_db
def test_pay_gateway_timeout_is_retryable(parent_client, booking, monkeypatch):
    class TimeoutGateway(StubPaymentGateway):
        def create_intent(self, **kwargs):
            raise GatewayError("timeout", "Payment gateway timed out.", transient=True)

    monkeypatch.setattr("bookings.services.lifecycle.get_gateway", lambda: TimeoutGateway())

    response = parent_client.post(f"/api/bookings/{booking.pk}/pay/")

    assert response.status_code == 503
    assert response.json()["retryable"] is True
    booking.refresh_from_db()
    assert booking.payment_status == PaymentStatus.UNPAID


@pytest.mark.django_db
def test_confirm_payment_endpoint(parent_client, booking):
    parent_client.post(f"/api/bookings/{booking.pk}/pay/")

    response = parent_client.post(
        f"/api/bookings/{booking.pk}/confirm-payment/",
        {"payment_method": "pm_card_visa"},
        format="json",
    )

    assert response.status_code == 200
    assert response.json()["payment_status"] == PaymentStatus.HELD
    assert response.json()["status"] == BookingStatus.CONFIRMED


@pytest.mark.django_db
def test_confirm_payment_incomplete(parent_client, booking):
    parent_client.post(f"/api/bookings/{booking.pk}/pay/")

    response = parent_client.post(f"/api/bookings/{booking.pk}/confirm-payment/", {}, format="json")

    assert response.status_code == 400
    assert response.json()["kind"] == "payment_incomplete"


@pytest.mark.django_db
def test_parent_cancels_with_full_refund(parent_client, held_booking):
    response = parent_client.post(
        f"/api/bookings/{held_booking.pk}/cancel/",
        {"reason": "Poorly child"},
        format="json",
    )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == BookingStatus.CANCELLED
    assert data["payment_status"] == PaymentStatus.REFUNDED
    assert data["refund_amount_cents"] == held_booking.total_amount_cents


@pytest.mark.django_db
def test_cancel_twice_returns_state_conflict(parent_client, booking):
    parent_client.post(f"/api/bookings/{booking.pk}/cancel/")

    response = parent_client.post(f"/api/bookings/{booking.pk}/cancel/")

    assert response.status_code == 409
    body = response.json()
    assert body["kind"] == "state_conflict"
    assert body["current"] == BookingStatus.CANCELLED


@pytest.mark.django_db
def test_provider_completes_class(api_client, provider, held_booking):
    api_client.force_authenticate(provider)

    response = api_client.post(f"/api/bookings/{held_booking.pk}/complete/")

    assert response.status_code == 200
    assert response.json()["status"] == BookingStatus.COMPLETED
    assert response.json()["funds_release_date"]


@pytest.mark.django_db
def test_provider_marks_no_show(api_client, provider, held_booking):
    api_client.force_authenticate(provider)

    response = api_client.post(f"/api/bookings/{held_booking.pk}/no-show/")

    assert response.status_code == 200
    assert response.json()["status"] == BookingStatus.NO_SHOW


@pytest.mark.django_db
def test_parent_cannot_complete_class(parent_client, held_booking):
    response = parent_client.post(f"/api/bookings/{held_booking.pk}/complete/")

    assert response.status_code == 403


@pytest.mark.django_db
def test_complete_unpaid_booking_conflicts(api_client, provider, booking):
    api_client.force_authenticate(provider)

    response = api_client.post(f"/api/bookings/{booking.pk}/complete/")

    assert response.status_code == 409


@pytest.mark.django_db
def test_held_funds_report(api_client, provider, held_booking):
    lifecycle.mark_class_completed(held_booking.pk)
    api_client.force_authenticate(provider)

    response = api_client.get("/api/bookings/held-funds/")

    assert response.status_code == 200
    data = response.json()
    assert data["held_cents"] == held_booking.base_price_cents
    assert data["held_count"] == 1
    assert data["released_cents"] == 0
    assert [item["booking_number"] for item in data["upcoming"]] == [held_booking.booking_number]


@pytest.mark.django_db
def test_held_funds_report_is_for_providers(parent_client):
    response = parent_client.get("/api/bookings/held-funds/")

    assert response.status_code == 403
