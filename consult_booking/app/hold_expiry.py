# hold_expiry.py
from datetime import timedelta

from sqlalchemy.orm import Session

from .constants import BookingStatus
from .models import Booking, utcnow
from .booking_service import touch_day
from .utils import invalidate_doctor_slots
import logging

LOCK_KEY = "lock:expire-holds"


def acquire_lock(redis_client, lock_key, ttl=60):
    return redis_client.set(lock_key, "locked", nx=True, ex=ttl)


def release_lock(redis_client, lock_key):
    redis_client.delete(lock_key)


def release_expired_holds(db: Session, redis_client, hold_minutes: int, now=None):
    """
    Delete pending_payment bookings older than hold_minutes so their slots become bookable again.

    :return: Number of released holds, or None if another process holds the lock.
    """
    if not acquire_lock(redis_client, LOCK_KEY):
        logging.info("Hold expiry skipped because another process is running.")
        return None

    try:
        expiry_time = (now or utcnow()) - timedelta(minutes=hold_minutes)
        expired = db.query(Booking).filter(
            Booking.status == BookingStatus.PENDING_PAYMENT.value,
            Booking.created_at < expiry_time
        ).all()

        touched = {(b.doctor_id, b.appointment_date) for b in expired}
        for booking in expired:
            db.delete(booking)
        for doctor_id, on_date in touched:
            touch_day(db, doctor_id, on_date)
        db.commit()

        for doctor_id, on_date in touched:
            invalidate_doctor_slots(redis_client, doctor_id, on_date)

        logging.info(f"Released {len(expired)} expired payment holds")
        return len(expired)
    finally:
        release_lock(redis_client, LOCK_KEY)
