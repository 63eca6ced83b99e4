# metrics.py
from prometheus_client import Counter

BOOKING_ATTEMPTS = Counter("booking_attempts_total", "Reservation attempts by outcome", ["outcome"])
BOOKING_CANCELLATIONS = Counter("booking_cancellations_total", "Cancelled bookings by who cancelled", ["by"])
SLOT_CACHE_LOOKUPS = Counter("slot_cache_lookups_total", "Slot list cache lookups", ["result"])
