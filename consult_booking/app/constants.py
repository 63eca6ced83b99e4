# constants.py
from enum import Enum


class BookingStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    PENDING_APPROVAL = "pending_approval"
    CONFIRMED = "confirmed"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CANCELLED_PATIENT = "cancelled_patient"
    CANCELLED_DOCTOR = "cancelled_doctor"
    NO_SHOW = "no_show"
    REFUNDED = "refunded"


class ConsultationType(str, Enum):
    IN_PERSON = "in_person"
    VIDEO = "video"
    BOTH = "both"  # schedule rules only, never requested by a patient


class CancellationPolicy(str, Enum):
    FLEXIBLE = "flexible"
    MODERATE = "moderate"
    STRICT = "strict"


# Statuses that occupy a slot. Anything else (expired holds, cancellations,
# rejections) frees it again.
BLOCKING_STATUSES = (
    BookingStatus.PENDING_PAYMENT.value,
    BookingStatus.PENDING_APPROVAL.value,
    BookingStatus.CONFIRMED.value,
    BookingStatus.APPROVED.value,
    BookingStatus.COMPLETED.value,
)

CANCELLABLE_STATUSES = (
    BookingStatus.CONFIRMED.value,
    BookingStatus.PENDING_APPROVAL.value,
    BookingStatus.APPROVED.value,
)

REQUESTABLE_CONSULTATION_TYPES = (
    ConsultationType.IN_PERSON.value,
    ConsultationType.VIDEO.value,
)

# Transitions a doctor may apply by hand. Payment outcomes and patient
# cancellations go through their own entry points.
DOCTOR_TRANSITIONS = {
    BookingStatus.PENDING_APPROVAL.value: {
        BookingStatus.APPROVED.value,
        BookingStatus.REJECTED.value,
        BookingStatus.CANCELLED_DOCTOR.value,
    },
    BookingStatus.CONFIRMED.value: {
        BookingStatus.COMPLETED.value,
        BookingStatus.NO_SHOW.value,
        BookingStatus.CANCELLED_DOCTOR.value,
    },
    BookingStatus.APPROVED.value: {
        BookingStatus.COMPLETED.value,
        BookingStatus.NO_SHOW.value,
        BookingStatus.CANCELLED_DOCTOR.value,
    },
    BookingStatus.CANCELLED_PATIENT.value: {BookingStatus.REFUNDED.value},
    BookingStatus.CANCELLED_DOCTOR.value: {BookingStatus.REFUNDED.value},
}

# Only reachable once the appointment has started.
POST_APPOINTMENT_STATUSES = (
    BookingStatus.COMPLETED.value,
    BookingStatus.NO_SHOW.value,
)
