# exceptions.py


class BookingError(Exception):
    """Base class for booking rule violations surfaced to the client."""

    code = "booking_error"
    status_code = 400
    default_message = "The booking request could not be completed."

    def __init__(self, message=None):
        super().__init__(message or self.default_message)

    def to_dict(self):
        return {"error": self.code, "detail": str(self)}


class SlotConflict(BookingError):
    code = "conflict"
    status_code = 409
    default_message = "This slot was just taken, please pick another."


class PastSlot(BookingError):
    code = "past"
    status_code = 400
    default_message = "This slot has already started."


class InvalidConsultationType(BookingError):
    code = "not_offered"
    status_code = 422
    default_message = "This doctor does not offer the selected consultation type at this time."


class InvalidStatusTransition(BookingError):
    code = "invalid_transition"
    status_code = 409
    default_message = "This booking cannot be moved to the requested status."
