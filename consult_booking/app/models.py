# models.py
from datetime import datetime, timezone

from sqlalchemy import (Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, JSON, String,
                        Text, Time, text)
from sqlalchemy.orm import declarative_base, relationship

from .constants import BLOCKING_STATUSES, BookingStatus, CancellationPolicy, ConsultationType

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


_BLOCKING_SQL = "status IN ({})".format(", ".join(f"'{s}'" for s in BLOCKING_STATUSES))


class User(Base):
    __tablename__ = 'users'
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True)
    role = Column(String, nullable=False)  # 'doctor', 'patient', or 'admin'

    doctor = relationship("Doctor", back_populates="user", uselist=False)


class Doctor(Base):
    __tablename__ = 'doctors'
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, unique=True)
    cancellation_policy = Column(String, nullable=False, default=CancellationPolicy.MODERATE.value)
    consultation_types = Column(JSON, nullable=False, default=lambda: [ConsultationType.IN_PERSON.value])
    consultation_fee_cents = Column(Integer, nullable=False, default=0)
    video_consultation_fee_cents = Column(Integer, nullable=True)
    currency = Column(String(3), nullable=False, default="EUR")
    default_slot_duration_minutes = Column(Integer, nullable=False, default=30)
    requires_approval = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    user = relationship("User", back_populates="doctor")
    schedule_rules = relationship("WeeklyScheduleRule", back_populates="doctor", cascade="all, delete-orphan")
    overrides = relationship("AvailabilityOverride", back_populates="doctor", cascade="all, delete-orphan")

    def offers(self, consultation_type):
        return consultation_type in (self.consultation_types or [])

    def fee_for(self, consultation_type):
        if consultation_type == ConsultationType.VIDEO.value and self.video_consultation_fee_cents:
            return self.video_consultation_fee_cents
        return self.consultation_fee_cents


class WeeklyScheduleRule(Base):
    __tablename__ = 'availability_schedules'
    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey('doctors.id'), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday ... 6 = Saturday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    slot_duration_minutes = Column(Integer, nullable=False, default=30)
    consultation_type = Column(String, nullable=False, default=ConsultationType.BOTH.value)

    doctor = relationship("Doctor", back_populates="schedule_rules")


class AvailabilityOverride(Base):
    __tablename__ = 'availability_overrides'
    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey('doctors.id'), nullable=False, index=True)
    override_date = Column(Date, nullable=False)
    is_blocked = Column(Boolean, nullable=False, default=True)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)

    doctor = relationship("Doctor", back_populates="overrides")

    __table_args__ = (
        Index('ix_availability_overrides_doctor_date', 'doctor_id', 'override_date'),
    )


class Booking(Base):
    __tablename__ = 'bookings'
    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey('doctors.id'), nullable=False)
    patient_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    appointment_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    consultation_type = Column(String, nullable=False)
    status = Column(String(32), nullable=False, default=BookingStatus.PENDING_PAYMENT.value)
    patient_notes = Column(Text, nullable=True)

    currency = Column(String(3), nullable=False, default="EUR")
    consultation_fee_cents = Column(Integer, nullable=False, default=0)
    platform_fee_cents = Column(Integer, nullable=False, default=0)
    total_amount_cents = Column(Integer, nullable=False, default=0)
    refund_percent = Column(Integer, nullable=True)
    refund_amount_cents = Column(Integer, nullable=True)

    cancellation_reason = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    confirmed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    doctor = relationship("Doctor")

    __table_args__ = (
        Index('ix_bookings_doctor_date', 'doctor_id', 'appointment_date'),
        # Only one slot-occupying booking may start at a given time for a doctor
        Index(
            'uq_bookings_doctor_slot_active',
            'doctor_id', 'appointment_date', 'start_time',
            unique=True,
            postgresql_where=text(_BLOCKING_SQL),
            sqlite_where=text(_BLOCKING_SQL),
        ),
    )


class DoctorDayLock(Base):
    """Per doctor and date: the row reservations lock, and a version bumped by every booking change."""
    __tablename__ = 'doctor_day_locks'
    doctor_id = Column(Integer, ForeignKey('doctors.id'), primary_key=True)
    lock_date = Column(Date, primary_key=True)
    version = Column(Integer, nullable=False, default=0)
