from datetime import datetime, timedelta
from resource_booker.config import (
    MAX_DURATION_HOURS,
    MIN_DURATION_MINUTES,
    START_TIME_TOLERANCE,
)
from resource_booker.utils.exceptions import ValidationError


def validate_booking_times(start_time: datetime, end_time: datetime, now: datetime):
    """Check the requested window against the timing rules.

    The start may lag ``now`` by START_TIME_TOLERANCE to absorb request latency.
    """
    if start_time < now - START_TIME_TOLERANCE:
        raise ValidationError(
            "Booking start time must be in the future.",
            {"start_time": start_time.isoformat()},
        )
    if end_time <= start_time:
        raise ValidationError(
            "End time must be greater than start time.",
            {"start_time": start_time.isoformat(), "end_time": end_time.isoformat()},
        )

    duration = end_time - start_time
    if duration < timedelta(minutes=MIN_DURATION_MINUTES):
        raise ValidationError(
            f"Booking duration must be at least {MIN_DURATION_MINUTES} minutes."
        )
    if duration > timedelta(hours=MAX_DURATION_HOURS):
        raise ValidationError(
            f"Booking duration cannot exceed {MAX_DURATION_HOURS} hours."
        )


def strip_timezone(value):
    """Datetimes are stored as naive UTC; normalise aware input to that form."""
    if value is not None and value.tzinfo is not None:
        return (value - value.utcoffset()).replace(tzinfo=None)
    return value
