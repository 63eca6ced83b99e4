# collaborators.py
import logging
from abc import ABC, abstractmethod


class PaymentGateway(ABC):
    """Narrow interface to the payment provider used by the cancellation flow."""

    @abstractmethod
    def refund(self, booking, amount_cents: int):
        ...


class Notifier(ABC):
    """Told about booking lifecycle events; has no say in slot math."""

    @abstractmethod
    def booking_confirmed(self, booking):
        ...

    @abstractmethod
    def booking_cancelled(self, booking):
        ...


class LoggingPaymentGateway(PaymentGateway):
    def refund(self, booking, amount_cents):
        logging.info(f"Refund of {amount_cents} {booking.currency} requested for booking {booking.id}")


class LoggingNotifier(Notifier):
    def booking_confirmed(self, booking):
        logging.info(f"Booking {booking.id} is now {booking.status}")

    def booking_cancelled(self, booking):
        logging.info(f"Booking {booking.id} cancelled ({booking.status})")
