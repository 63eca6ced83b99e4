from datetime import date, datetime, time

import pytest

from consult_booking.app.cancellation import compute_refund, compute_refund_amount, hours_until, percent_of
from consult_booking.app.constants import CancellationPolicy


@pytest.mark.parametrize("policy,hours,expected", [
    ("flexible", 100, 100),
    ("flexible", 24.5, 100),
    ("flexible", 24, 0),
    ("flexible", 2, 0),
    ("moderate", 72, 100),
    ("moderate", 48.01, 100),
    ("moderate", 48, 50),
    ("moderate", 30, 50),
    ("moderate", 24, 0),
    ("moderate", 1, 0),
    ("strict", 100, 100),
    ("strict", 72, 0),
    ("strict", 48, 0),
])
def test_refund_ladder(policy, hours, expected):
    assert compute_refund(policy, hours) == expected


def test_accepts_enum_members():
    assert compute_refund(CancellationPolicy.MODERATE, 30) == 50


def test_moderate_thirty_hours_refunds_half_of_total():
    percent = compute_refund("moderate", 30)

    assert percent == 50
    assert compute_refund_amount(10000, percent) == 5000


@pytest.mark.parametrize("policy", [p.value for p in CancellationPolicy])
def test_negative_hours_refund_nothing(policy):
    assert compute_refund(policy, -5) == 0


@pytest.mark.parametrize("policy", [p.value for p in CancellationPolicy])
def test_refund_never_grows_as_appointment_approaches(policy):
    hours = [200 - h * 0.5 for h in range(420)]
    percents = [compute_refund(policy, h) for h in hours]

    assert all(a >= b for a, b in zip(percents, percents[1:]))
    assert percents[0] == 100
    assert percents[-1] == 0


def test_unknown_policy_is_rejected():
    with pytest.raises(ValueError):
        compute_refund("lenient", 100)


def test_amounts_round_half_up():
    assert compute_refund_amount(333, 50) == 167
    assert compute_refund_amount(1, 50) == 1
    assert compute_refund_amount(11500, 50) == 5750
    assert compute_refund_amount(11500, 0) == 0
    assert compute_refund_amount(11500, 100) == 11500


def test_platform_fee_percent():
    assert percent_of(10000, 15) == 1500
    assert percent_of(8333, 15) == 1250


@pytest.mark.parametrize("percent", [-1, 101])
def test_percent_out_of_range(percent):
    with pytest.raises(ValueError):
        compute_refund_amount(1000, percent)


def test_negative_amount_is_rejected():
    with pytest.raises(ValueError):
        percent_of(-1, 50)


def test_hours_until():
    now = datetime(2026, 11, 1, 3, 0)

    assert hours_until(date(2026, 11, 2), time(9, 0), now) == 30
    assert hours_until(date(2026, 11, 1), time(1, 30), now) == -1.5
