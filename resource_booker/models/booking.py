import enum
from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from resource_booker.db import Base, utcnow


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    IN_USE = "in_use"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    PREEMPTED = "preempted"
    EXPIRED = "expired"


class BookingCategory(str, enum.Enum):
    UNIVERSITY_ACTIVITY = "university_activity"
    CLASS = "class"
    STAFF_MEETING = "staff_meeting"
    STUDENT_MEETING = "student_meeting"
    OTHER = "other"


# Statuses that hold a slot on the resource and count against capacity
LIVE_STATUSES = (
    BookingStatus.PENDING.value,
    BookingStatus.APPROVED.value,
    BookingStatus.IN_USE.value,
)

TERMINAL_STATUSES = (
    BookingStatus.COMPLETED.value,
    BookingStatus.CANCELLED.value,
    BookingStatus.REJECTED.value,
    BookingStatus.PREEMPTED.value,
    BookingStatus.EXPIRED.value,
)

_LIVE_EXITS = {
    BookingStatus.CANCELLED.value,
    BookingStatus.REJECTED.value,
    BookingStatus.PREEMPTED.value,
    BookingStatus.EXPIRED.value,
}

ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING.value: {BookingStatus.APPROVED.value} | _LIVE_EXITS,
    BookingStatus.APPROVED.value: {
        BookingStatus.APPROVED.value,
        BookingStatus.IN_USE.value,
        BookingStatus.COMPLETED.value,
    }
    | _LIVE_EXITS,
    BookingStatus.IN_USE.value: {BookingStatus.COMPLETED.value} | _LIVE_EXITS,
}


def can_transition(current: str, target: str) -> bool:
    """Terminal statuses have no outgoing transitions."""
    return target in ALLOWED_TRANSITIONS.get(current, set())


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    booking_reference = Column(String(32), unique=True, nullable=False)
    resource_id = Column(Integer, ForeignKey("resources.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    purpose = Column(String, nullable=True)
    booking_type = Column(String(32), nullable=False, default=BookingCategory.OTHER.value)
    # Snapshot taken at admission; never recomputed on read
    priority = Column(Integer, nullable=False, default=0)
    status = Column(String(16), nullable=False, default=BookingStatus.PENDING.value)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    cancelled_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="check_booking_interval"),
        Index("ix_bookings_resource_window", "resource_id", "status", "start_time", "end_time"),
        Index("ix_bookings_user_status", "user_id", "status"),
    )

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, ref={self.booking_reference}, resource={self.resource_id}, "
            f"status={self.status}, priority={self.priority})>"
        )
