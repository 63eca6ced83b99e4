# cancellation.py
from datetime import date, datetime, time
from decimal import Decimal, ROUND_HALF_UP

from .constants import CancellationPolicy

# (hours strictly greater than, refund percent), checked top to bottom.
REFUND_LADDERS = {
    CancellationPolicy.FLEXIBLE: ((24, 100),),
    CancellationPolicy.MODERATE: ((48, 100), (24, 50)),
    CancellationPolicy.STRICT: ((72, 100),),
}


def compute_refund(policy, hours_until_appointment: float) -> int:
    """Refund percent (0-100) for a cancellation made hours_until_appointment before the start."""
    ladder = REFUND_LADDERS[CancellationPolicy(policy)]
    for threshold, percent in ladder:
        if hours_until_appointment > threshold:
            return percent
    return 0


def percent_of(amount_cents: int, percent) -> int:
    """Integer cents, rounded half up."""
    if amount_cents < 0:
        raise ValueError("amount must not be negative")
    value = Decimal(amount_cents) * Decimal(percent) / Decimal(100)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_refund_amount(total_cents: int, percent: int) -> int:
    if not 0 <= percent <= 100:
        raise ValueError("refund percent must be between 0 and 100")
    return percent_of(total_cents, percent)


def hours_until(appointment_date: date, start_time: time, now: datetime) -> float:
    return (datetime.combine(appointment_date, start_time) - now).total_seconds() / 3600
