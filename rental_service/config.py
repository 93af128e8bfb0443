import os
from fractions import Fraction

DATABASE_URL = os.getenv("RENTAL_DB")
RABBIT_URL = os.getenv("RABBIT_URL")  # optional, events are skipped without it
REDIS_URL = os.getenv("REDIS_URL")  # optional, enables cross-process ledger locks

LOG_LEVEL = (os.getenv("LOG_LEVEL") or "INFO").upper()
SQL_ECHO = (os.getenv("SQL_ECHO") or "").lower() in ("1", "true", "yes")

LEDGER_LOCK_TIMEOUT_SECONDS = float(os.getenv("LEDGER_LOCK_TIMEOUT_SECONDS") or "10")

SERVICE_NAME = "rental-service"

# ---- Business constants ----
POOL_RATE = Fraction(1, 10)
MAX_GUARANTORS = 5
WEEKEND_SURCHARGE = Fraction(15, 100)

LIVE_BOOKING_STATUSES = ("pending", "confirmed", "active")
BOOKING_STATUSES = ("pending", "confirmed", "active", "completed", "cancelled", "rejected")

DEFAULT_PICKUP_TIME = "00:00 am"
DEFAULT_DROPOFF_TIME = "11:59 pm"
DEFAULT_DROP_LOCATION = "Location to be confirmed"
DEFAULT_REJECTION_REASON = "Rejected by guarantor"
DEFAULT_CANCELLATION_REASON = "Booking cancelled"
