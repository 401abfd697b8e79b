from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, String
from resource_booker.db import Base, utcnow


class Resource(Base):
    __tablename__ = "resources"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, index=True, nullable=False)
    description = Column(String, nullable=True)
    location = Column(String, nullable=True)
    category = Column(String, nullable=True)
    # Number of live bookings the resource can hold at the same instant
    capacity = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("capacity > 0", name="check_resource_capacity_positive"),
    )
