from datetime import datetime, timedelta, timezone as dt_timezone

import pytest

from bookings.policies import price_booking, refund_amount_for, refund_percent_for

SESSION_START = datetime(2025, 6, 14, 10, 0, tzinfo=dt_timezone.utc)


@pytest.mark.parametrize(
    "before_start, percent",
    [
        (timedelta(days=7), 100),
        (timedelta(hours=24, seconds=1), 100),
        (timedelta(hours=24), 50),
        (timedelta(hours=12), 50),
        (timedelta(hours=2, seconds=1), 50),
        (timedelta(hours=2), 0),
        (timedelta(minutes=30), 0),
        (timedelta(0), 0),
        (-timedelta(hours=1), 0),
    ],
)
def test_refund_tiers(before_start, percent):
    assert refund_percent_for(before_start) == percent


def test_refund_never_increases_as_the_session_approaches():
    amounts = [
        refund_amount_for(2199, SESSION_START, SESSION_START - timedelta(minutes=minutes))
        for minutes in range(3 * 24 * 60, -60, -15)
    ]
    assert amounts == sorted(amounts, reverse=True)
    assert amounts[0] == 2199
    assert amounts[-1] == 0


def test_partial_refund_rounds_down_to_whole_cents():
    now = SESSION_START - timedelta(hours=10)
    assert refund_amount_for(1199, SESSION_START, now) == 599


def test_price_adds_fixed_service_fee(settings):
    settings.BOOKING_SERVICE_FEE_CENTS = 199

    price = price_booking(1000)

    assert price.base_price_cents == 1000
    assert price.service_fee_cents == 199
    assert price.total_amount_cents == 1199


def test_price_rejects_negative_base():
    with pytest.raises(ValueError):
        price_booking(-1)
