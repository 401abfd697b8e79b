import os
from datetime import timedelta


# Storage
SQLALCHEMY_DATABASE_URL = os.getenv(
    "BOOKER_DATABASE_URL", "sqlite:///./data/resource_booker.db"
)
DB_TIMEOUT_SECONDS = int(os.getenv("BOOKER_DB_TIMEOUT", "10"))
LOCK_TIMEOUT_SECONDS = int(os.getenv("BOOKER_LOCK_TIMEOUT", "10"))

# Booking rules
MIN_DURATION_MINUTES = 30
MAX_DURATION_HOURS = 8
MAX_ACTIVE_BOOKINGS = 5
START_TIME_TOLERANCE = timedelta(minutes=1)
CANCELLATION_STATS_WINDOW = timedelta(days=30)

# Booking references look like RBA-19101430-K3ZQ7M
REFERENCE_PREFIX = "RBA"
REFERENCE_SUFFIX_LENGTH = 6

# Expiry sweep, 0 disables the background loop
EXPIRY_SWEEP_INTERVAL_SECONDS = int(os.getenv("BOOKER_SWEEP_INTERVAL", "3600"))

LOG_LEVEL = os.getenv("BOOKER_LOG_LEVEL", "INFO")
