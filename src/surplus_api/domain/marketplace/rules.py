"""Fixed marketplace business rules."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

MIN_DISCOUNT_RATE = Decimal("0.30")
PLATFORM_FEE_RATE = Decimal("0.15")
GOODWILL_CREDIT_RATE = Decimal("0.10")

MIN_PICKUP_WINDOW = timedelta(hours=1)
MAX_PICKUP_WINDOW = timedelta(hours=3)
MIN_OFFER_QUANTITY = 1
MAX_OFFER_QUANTITY = 50

CANCELLATION_LOCKOUT = timedelta(hours=2)

NO_SHOW_BLOCK_THRESHOLD = 3
NO_SHOW_BLOCK_DURATION = timedelta(days=30)

REVIEW_REQUEST_DELAY = timedelta(hours=1)
PICKUP_REMINDER_LEAD = timedelta(minutes=30)

DEFAULT_SEARCH_RADIUS_KM = 5.0
EARTH_RADIUS_KM = 6371.0

LOW_RATING_MIN_REVIEWS = 10
LOW_RATING_THRESHOLD = 3.0

PICKUP_CODE_LENGTH = 10
