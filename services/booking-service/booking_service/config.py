import os

SERVICE_NAME = "booking-service"

DATABASE_URL = os.getenv("BOOKING_DB")
REDIS_URL = os.getenv("REDIS_URL")  # optional: cross-process slot locks and event dedup; db guard rows cover booking without it
RABBIT_URL = os.getenv("RABBIT_URL")  # optional in dev, required if you want events

VENUE_SERVICE_URL = os.getenv("VENUE_SERVICE_URL", "http://venue-service:8000")
COACH_SERVICE_URL = os.getenv("COACH_SERVICE_URL", "http://coach-service:8000")

APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:3000")
PAYMENT_BASE_URL = os.getenv("PAYMENT_BASE_URL", "http://localhost:3000/payments/mock")

BOOKING_HOLD_MINUTES = int(os.getenv("BOOKING_HOLD_MINUTES") or "10")
EXPIRY_SWEEP_SECONDS = float(os.getenv("EXPIRY_SWEEP_SECONDS") or "60")
CHECK_IN_WINDOW_MINUTES = int(os.getenv("CHECK_IN_WINDOW_MINUTES") or "15")
BOOKING_TIMEZONE = os.getenv("BOOKING_TIMEZONE") or "UTC"

# daily window used to derive free hourly slots
AVAILABILITY_OPEN_HOUR = int(os.getenv("AVAILABILITY_OPEN_HOUR") or "6")
AVAILABILITY_CLOSE_HOUR = int(os.getenv("AVAILABILITY_CLOSE_HOUR") or "23")

HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT") or "3.0")
SLOT_LOCK_TIMEOUT_SECONDS = float(os.getenv("SLOT_LOCK_TIMEOUT_SECONDS") or "10")
# how long redis keeps a slot lock if the holder dies; must exceed one booking's catalog calls + db writes
SLOT_LOCK_TTL_SECONDS = float(os.getenv("SLOT_LOCK_TTL_SECONDS") or "30")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
