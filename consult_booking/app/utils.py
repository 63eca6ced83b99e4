import json
import logging
from datetime import date, datetime, time
from typing import List, Optional

from redis.exceptions import RedisError

from .dependencies import CACHE_EXPIRY_SECONDS
from .models import AvailabilityOverride, Booking, WeeklyScheduleRule
from .slot_engine import Slot


def parse_time_string(time_str):
    """Helper function to parse time strings in 'HH:MM', 'HH:MM:SS' or 'h:mma' formats."""
    if isinstance(time_str, time):
        return time_str
    if not isinstance(time_str, str):
        raise ValueError(f"Unrecognised time: {time_str!r}")
    for fmt in ("%I%p", "%I:%M%p", "%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(time_str.strip().lower(), fmt).time()  # '8am', '4:30pm', '10:00'
        except ValueError:
            continue
    raise ValueError(f"Unrecognised time: {time_str!r}")


def slot_cache_key(doctor_id: int, on_date: date, consultation_type: str, version: int = 0) -> str:
    """Key of one cached slot list. The doctor/day version is part of it, so a list
    computed before a booking change is never served after that change commits."""
    return f"doctor:{doctor_id}:slots:{on_date.isoformat()}:{consultation_type}:v{version}"


def get_cached_slots(redis_client, cache_key) -> Optional[List[Slot]]:
    try:
        cached = redis_client.get(cache_key)
    except RedisError as e:
        logging.error(f"Redis read failed for {cache_key}: {str(e)}")
        return None
    if not cached:
        return None
    logging.info(f"Retrieved from Redis: {cache_key}")
    return [Slot.from_dict(item) for item in json.loads(cached)]


def cache_slots(redis_client, cache_key, slots: List[Slot]):
    try:
        redis_client.setex(cache_key, CACHE_EXPIRY_SECONDS, json.dumps([s.to_dict() for s in slots]))
    except RedisError as e:
        logging.error(f"Redis write failed for {cache_key}: {str(e)}")


def invalidate_doctor_slots(redis_client, doctor_id: int, on_date: date = None):
    """Drop cached slot lists of a doctor, for one date or for every date."""
    try:
        if on_date is not None:
            pattern = f"doctor:{doctor_id}:slots:{on_date.isoformat()}:*"
        else:
            pattern = f"doctor:{doctor_id}:slots:*"
        keys = list(redis_client.scan_iter(match=pattern))
        if keys:
            redis_client.delete(*keys)
    except RedisError as e:
        logging.error(f"Redis invalidation failed for doctor {doctor_id}: {str(e)}")


def _iso(value):
    return value.isoformat() if value else None


def serialize_booking(booking: Booking, include_private_info: bool = False):
    serialized = {
        "id": booking.id,
        "doctor_id": booking.doctor_id,
        "appointment_date": booking.appointment_date.isoformat(),
        "start_time": booking.start_time.strftime("%H:%M:%S"),
        "end_time": booking.end_time.strftime("%H:%M:%S"),
        "consultation_type": booking.consultation_type,
        "status": booking.status,
        "currency": booking.currency,
        "consultation_fee_cents": booking.consultation_fee_cents,
        "platform_fee_cents": booking.platform_fee_cents,
        "total_amount_cents": booking.total_amount_cents,
        "refund_percent": booking.refund_percent,
        "refund_amount_cents": booking.refund_amount_cents,
        "created_at": _iso(booking.created_at),
        "cancelled_at": _iso(booking.cancelled_at),
    }
    if include_private_info:
        serialized.update({
            "patient_id": booking.patient_id,
            "patient_notes": booking.patient_notes,
            "cancellation_reason": booking.cancellation_reason,
            "confirmed_at": _iso(booking.confirmed_at),
            "completed_at": _iso(booking.completed_at),
        })
    return serialized


def serialize_rule(rule: WeeklyScheduleRule):
    return {
        "id": rule.id,
        "doctor_id": rule.doctor_id,
        "day_of_week": rule.day_of_week,
        "start_time": rule.start_time.strftime("%H:%M:%S"),
        "end_time": rule.end_time.strftime("%H:%M:%S"),
        "slot_duration_minutes": rule.slot_duration_minutes,
        "consultation_type": rule.consultation_type,
    }


def serialize_override(override: AvailabilityOverride):
    return {
        "id": override.id,
        "doctor_id": override.doctor_id,
        "override_date": override.override_date.isoformat(),
        "is_blocked": override.is_blocked,
        "start_time": override.start_time.strftime("%H:%M:%S") if override.start_time else None,
        "end_time": override.end_time.strftime("%H:%M:%S") if override.end_time else None,
    }
