from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Session
from resource_booker.models.booking import Booking, LIVE_STATUSES


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open overlap: back-to-back intervals do not conflict."""
    return start_a < end_b and end_a > start_b


class ConflictFinder:
    """Read-only lookup of live bookings that overlap a window on a resource."""

    def __init__(self, db: Session):
        self.db = db

    def find_conflicts(
        self,
        resource_id: int,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: Optional[int] = None,
    ) -> List[Booking]:
        query = self.db.query(Booking).filter(
            Booking.resource_id == resource_id,
            Booking.status.in_(LIVE_STATUSES),
            Booking.start_time < end_time,
            Booking.end_time > start_time,
        )
        if exclude_booking_id is not None:
            query = query.filter(Booking.id != exclude_booking_id)
        return query.order_by(Booking.priority, Booking.start_time, Booking.id).all()
