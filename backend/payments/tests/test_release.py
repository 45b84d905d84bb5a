from datetime import datetime, timedelta, timezone as dt_timezone

import pytest
from django.core.management import call_command
from django.utils import timezone

from bookings import store
from bookings.services import lifecycle
from bookings.states import PaymentStatus
from payments.gateway import GatewayError, StubPaymentGateway
from payments.models import PaymentTransaction, ScheduledFundsRelease
from payments.services import release
from payments.services.release import add_working_days, run_due_releases

Status = ScheduledFundsRelease.Status


class FlakyGateway(StubPaymentGateway):
    def __init__(self, failures):
        self.failures = failures
        self.transfers = 0

    def transfer(self, **kwargs):
        self.transfers += 1
        if self.failures:
            self.failures -= 1
            raise GatewayError("api_connection_error", "Connection reset.", transient=True)
        return super().transfer(**kwargs)


@pytest.fixture
def completed_booking(class_session, parent, child):
    booking = lifecycle.create_booking(class_id=class_session.pk, booker=parent, participants=child)
    lifecycle.begin_payment(booking.pk)
    lifecycle.on_payment_authorized(booking.pk, "ch_test_release")
    return lifecycle.mark_class_completed(booking.pk)


def _after_release(booking, seconds=1):
    entry = ScheduledFundsRelease.objects.get(booking=booking)
    return entry.release_at + timedelta(seconds=seconds)


@pytest.mark.parametrize(
    "start, days, expected",
    [
        # Friday -> Wednesday
        (datetime(2025, 6, 13, 15, 30, tzinfo=dt_timezone.utc), 3, datetime(2025, 6, 18, 15, 30, tzinfo=dt_timezone.utc)),
        # Monday -> Thursday
        (datetime(2025, 6, 16, 9, 0, tzinfo=dt_timezone.utc), 3, datetime(2025, 6, 19, 9, 0, tzinfo=dt_timezone.utc)),
        # Saturday -> Wednesday
        (datetime(2025, 6, 14, 12, 0, tzinfo=dt_timezone.utc), 3, datetime(2025, 6, 18, 12, 0, tzinfo=dt_timezone.utc)),
        (datetime(2025, 6, 13, 15, 30, tzinfo=dt_timezone.utc), 0, datetime(2025, 6, 13, 15, 30, tzinfo=dt_timezone.utc)),
    ],
)
def test_add_working_days(start, days, expected):
    assert add_working_days(start, days) == expected


def test_add_working_days_counts_in_utc():
    # Friday 23:30 in UTC-5 is already Saturday in UTC.
    eastern = dt_timezone(timedelta(hours=-5))
    start = datetime(2025, 6, 13, 23, 30, tzinfo=eastern)

    result = add_working_days(start, 1)

    assert result == datetime(2025, 6, 16, 4, 30, tzinfo=dt_timezone.utc)


def test_add_working_days_rejects_negative():
    with pytest.raises(ValueError):
        add_working_days(datetime(2025, 6, 13, tzinfo=dt_timezone.utc), -1)


@pytest.mark.django_db
def test_sweep_ignores_entries_not_yet_due(completed_booking):
    report = run_due_releases(now=timezone.now())

    assert report.processed == 0
    assert ScheduledFundsRelease.objects.get(booking=completed_booking).status == Status.SCHEDULED


@pytest.mark.django_db
def test_sweep_releases_matured_funds(completed_booking):
    report = run_due_releases(now=_after_release(completed_booking), worker_id="worker-a")

    assert report.released == 1
    entry = ScheduledFundsRelease.objects.get(booking=completed_booking)
    assert entry.status == Status.RELEASED
    assert entry.completed_at is not None
    assert entry.lease_owner == ""
    booking = store.get_booking(completed_booking.pk)
    assert booking.payment_status == PaymentStatus.PAID
    assert booking.funds_released
    payout = booking.transactions.get(kind=PaymentTransaction.Kind.PAYOUT)
    assert payout.amount_cents == booking.base_price_cents
    assert payout.reference.startswith("tr_test_")


@pytest.mark.django_db
def test_second_sweep_does_not_pay_twice(completed_booking):
    when = _after_release(completed_booking)
    run_due_releases(now=when)

    report = run_due_releases(now=when + timedelta(hours=1))

    assert report.processed == 0
    assert PaymentTransaction.objects.filter(kind=PaymentTransaction.Kind.PAYOUT).count() == 1


@pytest.mark.django_db
def test_leased_entry_is_not_claimed_by_another_worker(completed_booking, settings):
    settings.FUNDS_RELEASE_LEASE_SECONDS = 300
    when = _after_release(completed_booking)
    ScheduledFundsRelease.objects.filter(booking=completed_booking).update(
        lease_owner="worker-a",
        lease_expires_at=when + timedelta(minutes=5),
    )

    report = run_due_releases(now=when, worker_id="worker-b")

    assert report.processed == 0
    assert store.get_booking(completed_booking.pk).payment_status == PaymentStatus.HELD


@pytest.mark.django_db
def test_expired_lease_is_recovered(completed_booking):
    when = _after_release(completed_booking)
    ScheduledFundsRelease.objects.filter(booking=completed_booking).update(
        lease_owner="crashed-worker",
        lease_expires_at=when - timedelta(seconds=1),
    )

    report = run_due_releases(now=when, worker_id="worker-b")

    assert report.released == 1


@pytest.mark.django_db
def test_refunded_booking_is_skipped(completed_booking):
    when = _after_release(completed_booking)
    # Refund issued outside the service after completion but before the sweep.
    booking = store.get_booking(completed_booking.pk)
    booking.payment_status = PaymentStatus.REFUNDED
    store.compare_and_set(booking, ["payment_status"])

    report = run_due_releases(now=when)

    assert report.skipped == 1
    entry = ScheduledFundsRelease.objects.get(booking=completed_booking)
    assert entry.status == Status.SKIPPED
    assert "payment_status" in entry.last_error


@pytest.mark.django_db
def test_refund_webhook_cancels_pending_release(completed_booking):
    lifecycle.on_refund_issued(completed_booking.pk, 1199)

    assert not ScheduledFundsRelease.objects.filter(booking=completed_booking).exists()


@pytest.mark.django_db
def test_payout_failure_backs_off_then_succeeds(completed_booking, monkeypatch, settings):
    settings.FUNDS_RELEASE_RETRY_BASE_SECONDS = 60
    settings.FUNDS_RELEASE_MAX_ATTEMPTS = 5
    gateway = FlakyGateway(failures=2)
    monkeypatch.setattr("payments.services.payouts.get_gateway", lambda: gateway)
    when = _after_release(completed_booking)

    first = run_due_releases(now=when)
    entry = ScheduledFundsRelease.objects.get(booking=completed_booking)
    assert first.retried == 1
    assert entry.attempts == 1
    assert entry.next_attempt_at == when + timedelta(seconds=60)
    assert entry.status == Status.SCHEDULED

    # not yet due again
    assert run_due_releases(now=when + timedelta(seconds=30)).processed == 0

    second = run_due_releases(now=when + timedelta(seconds=60))
    entry.refresh_from_db()
    assert second.retried == 1
    assert entry.attempts == 2
    assert entry.next_attempt_at == when + timedelta(seconds=60 + 120)

    third = run_due_releases(now=when + timedelta(seconds=180))
    assert third.released == 1
    assert gateway.transfers == 3
    assert store.get_booking(completed_booking.pk).funds_released


@pytest.mark.django_db
def test_repeated_failures_flag_for_manual_attention(completed_booking, monkeypatch, settings, caplog):
    settings.FUNDS_RELEASE_RETRY_BASE_SECONDS = 1
    settings.FUNDS_RELEASE_MAX_ATTEMPTS = 3
    gateway = FlakyGateway(failures=10)
    monkeypatch.setattr("payments.services.payouts.get_gateway", lambda: gateway)
    when = _after_release(completed_booking)

    for offset in range(0, 3600, 60):
        run_due_releases(now=when + timedelta(seconds=offset))

    entry = ScheduledFundsRelease.objects.get(booking=completed_booking)
    assert entry.status == Status.NEEDS_ATTENTION
    assert entry.attempts == 3
    assert gateway.transfers == 3
    assert "Connection reset" in entry.last_error
    assert "needs manual reconciliation" in caplog.text
    assert store.get_booking(completed_booking.pk).payment_status == PaymentStatus.HELD


@pytest.mark.django_db
def test_rescheduling_replaces_entry(completed_booking):
    new_time = timezone.now() + timedelta(days=10)

    release.schedule(completed_booking.pk, new_time)

    entries = ScheduledFundsRelease.objects.filter(booking=completed_booking)
    assert entries.count() == 1
    assert entries.get().release_at == new_time


@pytest.mark.django_db
def test_release_command_runs_overdue_entries(completed_booking):
    ScheduledFundsRelease.objects.filter(booking=completed_booking).update(
        release_at=timezone.now() - timedelta(days=2),
        next_attempt_at=timezone.now() - timedelta(days=2),
    )

    call_command("process_fund_releases")

    assert store.get_booking(completed_booking.pk).funds_released
