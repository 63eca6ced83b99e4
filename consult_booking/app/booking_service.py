# booking_service.py
import logging
from datetime import date, datetime, time, timedelta

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import slot_engine
from .cancellation import compute_refund, compute_refund_amount, hours_until, percent_of
from .constants import (BLOCKING_STATUSES, CANCELLABLE_STATUSES, DOCTOR_TRANSITIONS,
                        POST_APPOINTMENT_STATUSES, REQUESTABLE_CONSULTATION_TYPES, BookingStatus)
from .exceptions import InvalidConsultationType, InvalidStatusTransition, PastSlot, SlotConflict
from .models import AvailabilityOverride, Booking, Doctor, DoctorDayLock, WeeklyScheduleRule, utcnow


def load_schedule(db: Session, doctor_id: int, on_date: date):
    """Fresh rules, overrides and blocking bookings of one doctor for one date."""
    rules = db.query(WeeklyScheduleRule).filter(
        WeeklyScheduleRule.doctor_id == doctor_id,
        WeeklyScheduleRule.day_of_week == slot_engine.day_of_week(on_date)
    ).all()
    overrides = db.query(AvailabilityOverride).filter(
        AvailabilityOverride.doctor_id == doctor_id,
        AvailabilityOverride.override_date == on_date
    ).all()
    bookings = db.query(Booking).filter(
        Booking.doctor_id == doctor_id,
        Booking.appointment_date == on_date,
        Booking.status.in_(BLOCKING_STATUSES)
    ).all()
    return rules, overrides, bookings


def generate_day_slots(db: Session, doctor: Doctor, on_date: date, consultation_type):
    """Slot grid with booked slots flagged, before any clock-based filtering."""
    rules, overrides, bookings = load_schedule(db, doctor.id, on_date)
    return slot_engine.generate_slots(
        rules, overrides, bookings, on_date, consultation_type,
        default_duration_minutes=doctor.default_slot_duration_minutes,
        include_unavailable=True,
    )


def read_day_version(db: Session, doctor_id: int, on_date: date) -> int:
    """Version of the doctor/day row, creating the row on first use."""
    query = db.query(DoctorDayLock.version).filter(
        DoctorDayLock.doctor_id == doctor_id,
        DoctorDayLock.lock_date == on_date
    )
    version = query.scalar()
    if version is not None:
        return version
    try:
        db.add(DoctorDayLock(doctor_id=doctor_id, lock_date=on_date, version=0))
        db.commit()
    except IntegrityError:
        # Another request created it first
        db.rollback()
    return query.scalar()


def current_day_version(db: Session, doctor_id: int, on_date: date) -> int:
    version = db.query(DoctorDayLock.version).filter(
        DoctorDayLock.doctor_id == doctor_id,
        DoctorDayLock.lock_date == on_date
    ).scalar()
    return version or 0


def touch_day(db: Session, doctor_id: int, on_date: date):
    """Bump the doctor/day version so slot lists cached under the old one are no longer read."""
    db.execute(
        update(DoctorDayLock)
        .where(DoctorDayLock.doctor_id == doctor_id, DoctorDayLock.lock_date == on_date)
        .values(version=DoctorDayLock.version + 1)
        .execution_options(synchronize_session=False)
    )


def lock_day(db: Session, doctor_id: int, on_date: date):
    """
    Hold the doctor/day row until the transaction ends, so reservations for one
    doctor and date run one after another. The row must exist (see read_day_version).
    """
    db.query(DoctorDayLock).filter_by(doctor_id=doctor_id, lock_date=on_date).with_for_update().one()
    # SQLite ignores FOR UPDATE; the write takes its database lock instead
    touch_day(db, doctor_id, on_date)


def has_overlapping_booking(db: Session, doctor_id: int, on_date: date, start: time, end: time) -> bool:
    return db.query(Booking.id).filter(
        Booking.doctor_id == doctor_id,
        Booking.appointment_date == on_date,
        Booking.status.in_(BLOCKING_STATUSES),
        Booking.start_time < end,
        Booking.end_time > start,
    ).first() is not None


def _other_types(consultation_type):
    return [t for t in REQUESTABLE_CONSULTATION_TYPES if t != consultation_type]


def validate_and_reserve(
        db: Session,
        doctor: Doctor,
        patient_id: int,
        on_date: date,
        start: time,
        end: time,
        consultation_type: str,
        now: datetime,
        lead_minutes: int = 0,
        platform_fee_percent: int = 15,
        patient_notes: str = None,
) -> Booking:
    """
    Re-check a requested window against fresh state and write a pending_payment booking.

    Raises InvalidConsultationType, PastSlot or SlotConflict. Nothing is persisted on failure
    apart from the doctor/day version row.
    """
    if consultation_type not in REQUESTABLE_CONSULTATION_TYPES or not doctor.offers(consultation_type):
        raise InvalidConsultationType()

    if datetime.combine(on_date, start) <= now + timedelta(minutes=lead_minutes):
        raise PastSlot()

    read_day_version(db, doctor.id, on_date)

    slot = slot_engine.find_slot(generate_day_slots(db, doctor, on_date, consultation_type), start, end)
    if slot is None:
        for other in _other_types(consultation_type):
            if slot_engine.find_slot(generate_day_slots(db, doctor, on_date, other), start, end):
                raise InvalidConsultationType()
        raise SlotConflict()
    if not slot.is_available:
        raise SlotConflict()

    fee = doctor.fee_for(consultation_type)
    platform_fee = percent_of(fee, platform_fee_percent)
    booking = Booking(
        doctor_id=doctor.id,
        patient_id=patient_id,
        appointment_date=on_date,
        start_time=start,
        end_time=end,
        consultation_type=consultation_type,
        status=BookingStatus.PENDING_PAYMENT.value,
        patient_notes=patient_notes,
        currency=doctor.currency,
        consultation_fee_cents=fee,
        platform_fee_cents=platform_fee,
        total_amount_cents=fee + platform_fee,
    )

    try:
        lock_day(db, doctor.id, on_date)
        # Whatever committed before the lock was granted is visible from here on
        if has_overlapping_booking(db, doctor.id, on_date, start, end):
            raise SlotConflict()
        db.add(booking)
        db.commit()
    except SlotConflict:
        db.rollback()
        logging.info(f"Slot {on_date} {start}-{end} for doctor {doctor.id} taken by a booking that committed first")
        raise
    except IntegrityError:
        db.rollback()
        logging.info(f"Unique slot index rejected {on_date} {start}-{end} for doctor {doctor.id}")
        raise SlotConflict()

    db.refresh(booking)
    logging.info(f"Booking {booking.id} reserved for doctor {doctor.id} on {on_date} {start}-{end}")
    return booking


def record_payment_outcome(db: Session, booking: Booking, succeeded: bool, notifier):
    """Payment captured -> confirmed (or pending_approval); payment failed -> hold released."""
    if booking.status != BookingStatus.PENDING_PAYMENT.value:
        raise InvalidStatusTransition("Only bookings awaiting payment can record a payment outcome.")

    if not succeeded:
        logging.info(f"Payment failed for booking {booking.id}, releasing the slot")
        touch_day(db, booking.doctor_id, booking.appointment_date)
        db.delete(booking)
        db.commit()
        return None

    if booking.doctor.requires_approval:
        booking.status = BookingStatus.PENDING_APPROVAL.value
    else:
        booking.status = BookingStatus.CONFIRMED.value
    booking.confirmed_at = utcnow()
    db.commit()
    notifier.booking_confirmed(booking)
    return booking


def _record_refund(booking: Booking, percent: int) -> int:
    amount = compute_refund_amount(booking.total_amount_cents, percent)
    booking.refund_percent = percent
    booking.refund_amount_cents = amount
    return amount


def _send_refund(booking: Booking, amount: int, payments):
    # Runs after the commit; refund_amount_cents on the booking is the record to retry from
    if amount > 0:
        payments.refund(booking, amount)


def cancel_by_patient(db: Session, booking: Booking, reason: str, now: datetime, payments, notifier):
    if booking.status not in CANCELLABLE_STATUSES:
        raise InvalidStatusTransition("This booking cannot be cancelled in its current state.")

    hours = hours_until(booking.appointment_date, booking.start_time, now)
    percent = compute_refund(booking.doctor.cancellation_policy, hours)
    try:
        amount = _record_refund(booking, percent)
        booking.status = BookingStatus.CANCELLED_PATIENT.value
        booking.cancelled_at = utcnow()
        booking.cancellation_reason = reason
        touch_day(db, booking.doctor_id, booking.appointment_date)
        db.commit()
    except Exception:
        db.rollback()
        raise

    _send_refund(booking, amount, payments)
    notifier.booking_cancelled(booking)
    return booking


def update_status(db: Session, booking: Booking, new_status: str, reason: str, now: datetime, payments, notifier):
    allowed = DOCTOR_TRANSITIONS.get(booking.status, set())
    if new_status not in allowed:
        raise InvalidStatusTransition(f"Cannot move a booking from {booking.status} to {new_status}.")

    if new_status in POST_APPOINTMENT_STATUSES and datetime.combine(booking.appointment_date, booking.start_time) > now:
        raise InvalidStatusTransition("The appointment has not started yet.")

    amount = 0
    try:
        if new_status in (BookingStatus.CANCELLED_DOCTOR.value, BookingStatus.REJECTED.value):
            amount = _record_refund(booking, 100)
            booking.cancelled_at = utcnow()
        if new_status == BookingStatus.COMPLETED.value:
            booking.completed_at = utcnow()
        if reason:
            booking.cancellation_reason = reason
        booking.status = new_status
        touch_day(db, booking.doctor_id, booking.appointment_date)
        db.commit()
    except Exception:
        db.rollback()
        raise

    _send_refund(booking, amount, payments)
    if new_status in (BookingStatus.CANCELLED_DOCTOR.value, BookingStatus.REJECTED.value):
        notifier.booking_cancelled(booking)
    elif new_status == BookingStatus.APPROVED.value:
        notifier.booking_confirmed(booking)
    return booking
