from datetime import date, datetime, time
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Depends, status
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.orm import Session

from . import booking_service
from .auth import get_current_user, role_required
from .constants import BookingStatus, CancellationPolicy, ConsultationType, REQUESTABLE_CONSULTATION_TYPES
from .dependencies import (DEFAULT_SLOT_DURATION_MINUTES, MIN_BOOKING_LEAD_MINUTES, PLATFORM_FEE_PERCENT, UserRole,
                           get_db, get_notifier, get_now, get_payment_gateway, get_redis_client)
from .exceptions import BookingError, InvalidConsultationType
from .metrics import BOOKING_ATTEMPTS, BOOKING_CANCELLATIONS, SLOT_CACHE_LOOKUPS
from .models import AvailabilityOverride, Booking, Doctor, User, WeeklyScheduleRule
from .slot_engine import filter_past
from .utils import (cache_slots, get_cached_slots, invalidate_doctor_slots, parse_time_string, serialize_booking,
                    serialize_override, serialize_rule, slot_cache_key)
import logging

router = APIRouter()


class DoctorProfileRequest(BaseModel):
    cancellation_policy: Optional[CancellationPolicy] = None
    consultation_types: Optional[List[str]] = None
    consultation_fee_cents: Optional[int] = Field(None, ge=0)
    video_consultation_fee_cents: Optional[int] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    default_slot_duration_minutes: Optional[int] = Field(None, ge=5, le=240)
    requires_approval: Optional[bool] = None
    is_active: Optional[bool] = None

    @field_validator("consultation_types")
    @classmethod
    def check_types(cls, value):
        if value is not None and (not value or any(t not in REQUESTABLE_CONSULTATION_TYPES for t in value)):
            raise ValueError("consultation_types must be a non-empty subset of in_person, video")
        return value


class ScheduleRuleRequest(BaseModel):
    day_of_week: int = Field(..., ge=0, le=6)
    start_time: time
    end_time: time
    slot_duration_minutes: int = Field(DEFAULT_SLOT_DURATION_MINUTES, ge=5, le=240)
    consultation_type: str = ConsultationType.BOTH.value

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def parse_times(cls, value):
        return parse_time_string(value)

    @field_validator("consultation_type")
    @classmethod
    def check_type(cls, value):
        if value not in [t.value for t in ConsultationType]:
            raise ValueError("consultation_type must be in_person, video or both")
        return value

    @model_validator(mode="after")
    def check_range(self):
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class OverrideRequest(BaseModel):
    override_date: date
    is_blocked: bool = True
    start_time: Optional[time] = None
    end_time: Optional[time] = None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def parse_times(cls, value):
        return None if value in (None, "") else parse_time_string(value)

    @model_validator(mode="after")
    def check_range(self):
        if (self.start_time is None) != (self.end_time is None):
            raise ValueError("start_time and end_time must be given together")
        if self.start_time is not None and self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        if not self.is_blocked and self.start_time is None:
            raise ValueError("an added availability window needs start_time and end_time")
        return self


class ReserveBookingRequest(BaseModel):
    doctor_id: int
    appointment_date: date
    start_time: time
    end_time: time
    consultation_type: str
    patient_notes: Optional[str] = Field(None, max_length=1000)


class CancelBookingRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class StatusUpdateRequest(BaseModel):
    status: str
    reason: Optional[str] = Field(None, max_length=500)


class PaymentOutcomeRequest(BaseModel):
    succeeded: bool


def serialize_doctor(doctor: Doctor):
    return {
        "id": doctor.id,
        "user_id": doctor.user_id,
        "cancellation_policy": doctor.cancellation_policy,
        "consultation_types": doctor.consultation_types,
        "consultation_fee_cents": doctor.consultation_fee_cents,
        "video_consultation_fee_cents": doctor.video_consultation_fee_cents,
        "currency": doctor.currency,
        "default_slot_duration_minutes": doctor.default_slot_duration_minutes,
        "requires_approval": doctor.requires_approval,
        "is_active": doctor.is_active,
    }


def get_active_doctor(db: Session, doctor_id: int) -> Doctor:
    doctor = db.get(Doctor, doctor_id)
    if not doctor or not doctor.is_active:
        raise HTTPException(status_code=404, detail="Doctor not found")
    return doctor


def get_owned_doctor(db: Session, doctor_id: int, current_user: User) -> Doctor:
    doctor = db.get(Doctor, doctor_id)
    if not doctor:
        raise HTTPException(status_code=404, detail="Doctor not found")
    if doctor.user_id != current_user.id and current_user.role != UserRole.ADMIN.value:
        raise HTTPException(status_code=403, detail="Not authorized to manage this doctor")
    return doctor


def get_booking_or_404(db: Session, booking_id: int) -> Booking:
    booking = db.get(Booking, booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


# ---------- Doctors: profile ----------

@router.post('/doctors', status_code=status.HTTP_201_CREATED)
@role_required([UserRole.DOCTOR.value])
def create_doctor_profile(
        profile: DoctorProfileRequest,
        db: Session = Depends(get_db),
        current_user: User = Depends(get_current_user)
):
    if db.query(Doctor).filter_by(user_id=current_user.id).first():
        raise HTTPException(status_code=409, detail="Doctor profile already exists")

    fields = profile.model_dump(mode="json", exclude_none=True)
    fields.setdefault("default_slot_duration_minutes", DEFAULT_SLOT_DURATION_MINUTES)
    doctor = Doctor(user_id=current_user.id, **fields)
    db.add(doctor)
    db.commit()
    db.refresh(doctor)
    logging.info(f"Doctor profile {doctor.id} created for user {current_user.id}")
    return serialize_doctor(doctor)


@router.get('/doctors/{doctor_id}')
def get_doctor_profile(doctor_id: int, db: Session = Depends(get_db)):
    return serialize_doctor(get_active_doctor(db, doctor_id))


@router.patch('/doctors/{doctor_id}')
@role_required([UserRole.DOCTOR.value])
def update_doctor_profile(
        doctor_id: int,
        profile: DoctorProfileRequest,
        db: Session = Depends(get_db),
        redis_client=Depends(get_redis_client),
        current_user: User = Depends(get_current_user)
):
    doctor = get_owned_doctor(db, doctor_id, current_user)
    for field, value in profile.model_dump(mode="json", exclude_unset=True).items():
        if value is not None:
            setattr(doctor, field, value)
    db.commit()
    db.refresh(doctor)
    invalidate_doctor_slots(redis_client, doctor.id)
    return serialize_doctor(doctor)


# ---------- Doctors: weekly schedule ----------

@router.get('/doctors/{doctor_id}/schedule')
def list_schedule_rules(doctor_id: int, db: Session = Depends(get_db)):
    doctor = get_active_doctor(db, doctor_id)
    rules = db.query(WeeklyScheduleRule).filter_by(doctor_id=doctor.id).order_by(
        WeeklyScheduleRule.day_of_week, WeeklyScheduleRule.start_time
    ).all()
    return [serialize_rule(rule) for rule in rules]


@router.post('/doctors/{doctor_id}/schedule', status_code=status.HTTP_201_CREATED)
@role_required([UserRole.DOCTOR.value])
def create_schedule_rule(
        doctor_id: int,
        rule: ScheduleRuleRequest,
        db: Session = Depends(get_db),
        redis_client=Depends(get_redis_client),
        current_user: User = Depends(get_current_user)
):
    doctor = get_owned_doctor(db, doctor_id, current_user)
    new_rule = WeeklyScheduleRule(doctor_id=doctor.id, **rule.model_dump())
    db.add(new_rule)
    db.commit()
    db.refresh(new_rule)
    invalidate_doctor_slots(redis_client, doctor.id)
    logging.info(f"Schedule rule {new_rule.id} added for doctor {doctor.id}")
    return serialize_rule(new_rule)


@router.put('/doctors/{doctor_id}/schedule/{rule_id}')
@role_required([UserRole.DOCTOR.value])
def update_schedule_rule(
        doctor_id: int,
        rule_id: int,
        rule: ScheduleRuleRequest,
        db: Session = Depends(get_db),
        redis_client=Depends(get_redis_client),
        current_user: User = Depends(get_current_user)
):
    doctor = get_owned_doctor(db, doctor_id, current_user)
    existing = db.query(WeeklyScheduleRule).filter_by(id=rule_id, doctor_id=doctor.id).first()
    if not existing:
        raise HTTPException(status_code=404, detail="Schedule rule not found")

    for field, value in rule.model_dump().items():
        setattr(existing, field, value)
    db.commit()
    db.refresh(existing)
    invalidate_doctor_slots(redis_client, doctor.id)
    return serialize_rule(existing)


@router.delete('/doctors/{doctor_id}/schedule/{rule_id}')
@role_required([UserRole.DOCTOR.value])
def delete_schedule_rule(
        doctor_id: int,
        rule_id: int,
        db: Session = Depends(get_db),
        redis_client=Depends(get_redis_client),
        current_user: User = Depends(get_current_user)
):
    doctor = get_owned_doctor(db, doctor_id, current_user)
    existing = db.query(WeeklyScheduleRule).filter_by(id=rule_id, doctor_id=doctor.id).first()
    if not existing:
        raise HTTPException(status_code=404, detail="Schedule rule not found")

    db.delete(existing)
    db.commit()
    invalidate_doctor_slots(redis_client, doctor.id)
    return {"message": "Schedule rule deleted", "id": rule_id}


# ---------- Doctors: date overrides ----------

@router.get('/doctors/{doctor_id}/overrides')
@role_required([UserRole.DOCTOR.value])
def list_overrides(
        doctor_id: int,
        start_date: date = Query(None),
        end_date: date = Query(None),
        db: Session = Depends(get_db),
        current_user: User = Depends(get_current_user)
):
    doctor = get_owned_doctor(db, doctor_id, current_user)
    q = db.query(AvailabilityOverride).filter_by(doctor_id=doctor.id)
    if start_date:
        q = q.filter(AvailabilityOverride.override_date >= start_date)
    if end_date:
        q = q.filter(AvailabilityOverride.override_date <= end_date)
    overrides = q.order_by(AvailabilityOverride.override_date, AvailabilityOverride.start_time).all()
    return [serialize_override(o) for o in overrides]


@router.post('/doctors/{doctor_id}/overrides', status_code=status.HTTP_201_CREATED)
@role_required([UserRole.DOCTOR.value])
def create_override(
        doctor_id: int,
        override: OverrideRequest,
        db: Session = Depends(get_db),
        redis_client=Depends(get_redis_client),
        current_user: User = Depends(get_current_user)
):
    doctor = get_owned_doctor(db, doctor_id, current_user)
    new_override = AvailabilityOverride(doctor_id=doctor.id, **override.model_dump())
    db.add(new_override)
    db.commit()
    db.refresh(new_override)
    invalidate_doctor_slots(redis_client, doctor.id, new_override.override_date)
    logging.info(f"Override {new_override.id} for {new_override.override_date} added for doctor {doctor.id}")
    return serialize_override(new_override)


@router.delete('/doctors/{doctor_id}/overrides/{override_id}')
@role_required([UserRole.DOCTOR.value])
def delete_override(
        doctor_id: int,
        override_id: int,
        db: Session = Depends(get_db),
        redis_client=Depends(get_redis_client),
        current_user: User = Depends(get_current_user)
):
    doctor = get_owned_doctor(db, doctor_id, current_user)
    existing = db.query(AvailabilityOverride).filter_by(id=override_id, doctor_id=doctor.id).first()
    if not existing:
        raise HTTPException(status_code=404, detail="Override not found")

    override_date = existing.override_date
    db.delete(existing)
    db.commit()
    invalidate_doctor_slots(redis_client, doctor.id, override_date)
    return {"message": "Override deleted", "id": override_id}


# ---------- Slots ----------

@router.get('/doctors/{doctor_id}/slots')
def get_available_slots(
        doctor_id: int,
        on_date: date = Query(..., alias="date"),
        consultation_type: str = Query(...),
        include_unavailable: bool = Query(False),
        db: Session = Depends(get_db),
        redis_client=Depends(get_redis_client),
        now: datetime = Depends(get_now)
):
    doctor = get_active_doctor(db, doctor_id)
    if consultation_type not in REQUESTABLE_CONSULTATION_TYPES or not doctor.offers(consultation_type):
        raise InvalidConsultationType()

    # Read before the slots, so a list built from older rows lands under an older version
    version = booking_service.current_day_version(db, doctor.id, on_date)
    cache_key = slot_cache_key(doctor.id, on_date, consultation_type, version)
    slots = get_cached_slots(redis_client, cache_key)
    if slots is None:
        SLOT_CACHE_LOOKUPS.labels(result="miss").inc()
        slots = booking_service.generate_day_slots(db, doctor, on_date, consultation_type)
        cache_slots(redis_client, cache_key, slots)
    else:
        SLOT_CACHE_LOOKUPS.labels(result="hit").inc()

    slots = filter_past(slots, on_date, now, MIN_BOOKING_LEAD_MINUTES, include_unavailable=include_unavailable)
    return [slot.to_dict() for slot in slots]


# ---------- Bookings ----------

@router.post('/bookings', status_code=status.HTTP_201_CREATED)
@role_required([UserRole.PATIENT.value])
def reserve_booking(
        request: ReserveBookingRequest,
        db: Session = Depends(get_db),
        redis_client=Depends(get_redis_client),
        now: datetime = Depends(get_now),
        current_user: User = Depends(get_current_user)
):
    doctor = get_active_doctor(db, request.doctor_id)
    try:
        booking = booking_service.validate_and_reserve(
            db, doctor, current_user.id,
            request.appointment_date, request.start_time, request.end_time, request.consultation_type,
            now=now,
            lead_minutes=MIN_BOOKING_LEAD_MINUTES,
            platform_fee_percent=PLATFORM_FEE_PERCENT,
            patient_notes=request.patient_notes,
        )
    except BookingError as e:
        BOOKING_ATTEMPTS.labels(outcome=e.code).inc()
        raise

    BOOKING_ATTEMPTS.labels(outcome="reserved").inc()
    invalidate_doctor_slots(redis_client, doctor.id, booking.appointment_date)
    return serialize_booking(booking, include_private_info=True)


@router.get('/bookings/me')
@role_required([UserRole.PATIENT.value])
def my_bookings(
        booking_status: str = Query(None, alias="status"),
        db: Session = Depends(get_db),
        current_user: User = Depends(get_current_user)
):
    q = db.query(Booking).filter_by(patient_id=current_user.id)
    if booking_status:
        q = q.filter_by(status=booking_status)
    rows = q.order_by(Booking.appointment_date.desc(), Booking.start_time.desc()).all()
    return [serialize_booking(b, include_private_info=True) for b in rows]


@router.get('/bookings/{booking_id}')
def get_booking(
        booking_id: int,
        db: Session = Depends(get_db),
        current_user: User = Depends(get_current_user)
):
    booking = get_booking_or_404(db, booking_id)
    doctor = db.get(Doctor, booking.doctor_id)
    allowed = (
        booking.patient_id == current_user.id
        or (doctor is not None and doctor.user_id == current_user.id)
        or current_user.role == UserRole.ADMIN.value
    )
    if not allowed:
        raise HTTPException(status_code=403, detail="Not authorized to view this booking")
    return serialize_booking(booking, include_private_info=True)


@router.get('/doctors/{doctor_id}/bookings')
@role_required([UserRole.DOCTOR.value])
def doctor_bookings(
        doctor_id: int,
        start_date: date = Query(None),
        end_date: date = Query(None),
        db: Session = Depends(get_db),
        now: datetime = Depends(get_now),
        current_user: User = Depends(get_current_user)
):
    doctor = get_owned_doctor(db, doctor_id, current_user)
    start_date = start_date or now.date()
    q = db.query(Booking).filter(Booking.doctor_id == doctor.id, Booking.appointment_date >= start_date)
    if end_date:
        q = q.filter(Booking.appointment_date <= end_date)
    rows = q.order_by(Booking.appointment_date, Booking.start_time).all()
    return [serialize_booking(b, include_private_info=True) for b in rows]


@router.post('/bookings/{booking_id}/payment')
@role_required([UserRole.ADMIN.value])
def record_payment(
        booking_id: int,
        outcome: PaymentOutcomeRequest,
        db: Session = Depends(get_db),
        redis_client=Depends(get_redis_client),
        notifier=Depends(get_notifier),
        current_user: User = Depends(get_current_user)
):
    booking = get_booking_or_404(db, booking_id)
    doctor_id, on_date = booking.doctor_id, booking.appointment_date

    booking = booking_service.record_payment_outcome(db, booking, outcome.succeeded, notifier)
    invalidate_doctor_slots(redis_client, doctor_id, on_date)
    if booking is None:
        return {"message": "Payment failed, booking released", "id": booking_id}
    return serialize_booking(booking, include_private_info=True)


@router.post('/bookings/{booking_id}/cancel')
@role_required([UserRole.PATIENT.value])
def cancel_booking(
        booking_id: int,
        request: CancelBookingRequest = None,
        db: Session = Depends(get_db),
        redis_client=Depends(get_redis_client),
        now: datetime = Depends(get_now),
        payments=Depends(get_payment_gateway),
        notifier=Depends(get_notifier),
        current_user: User = Depends(get_current_user)
):
    booking = get_booking_or_404(db, booking_id)
    if booking.patient_id != current_user.id and current_user.role != UserRole.ADMIN.value:
        raise HTTPException(status_code=403, detail="Not authorized to cancel this booking")

    reason = request.reason if request else None
    booking = booking_service.cancel_by_patient(db, booking, reason, now, payments, notifier)
    BOOKING_CANCELLATIONS.labels(by="patient").inc()
    invalidate_doctor_slots(redis_client, booking.doctor_id, booking.appointment_date)

    if booking.refund_percent > 0:
        message = f"Booking cancelled. A {booking.refund_percent}% refund will be processed."
    else:
        message = "Booking cancelled. No refund is applicable based on the cancellation policy."
    return {"message": message, **serialize_booking(booking)}


@router.post('/bookings/{booking_id}/status')
@role_required([UserRole.DOCTOR.value])
def update_booking_status(
        booking_id: int,
        request: StatusUpdateRequest,
        db: Session = Depends(get_db),
        redis_client=Depends(get_redis_client),
        now: datetime = Depends(get_now),
        payments=Depends(get_payment_gateway),
        notifier=Depends(get_notifier),
        current_user: User = Depends(get_current_user)
):
    booking = get_booking_or_404(db, booking_id)
    get_owned_doctor(db, booking.doctor_id, current_user)

    booking = booking_service.update_status(db, booking, request.status, request.reason, now, payments, notifier)
    if booking.status == BookingStatus.CANCELLED_DOCTOR.value:
        BOOKING_CANCELLATIONS.labels(by="doctor").inc()
    invalidate_doctor_slots(redis_client, booking.doctor_id, booking.appointment_date)
    return serialize_booking(booking, include_private_info=True)
