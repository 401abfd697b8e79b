from pydantic import BaseModel, validator
from datetime import datetime
from typing import List, Optional
from resource_booker.models.booking import BookingCategory
from resource_booker.utils.validation_helpers import strip_timezone


class BookingBase(BaseModel):
    resource_id: int
    start_time: datetime
    end_time: datetime
    booking_type: BookingCategory = BookingCategory.OTHER
    purpose: Optional[str] = None

    @validator("start_time", "end_time")
    def normalise_time(cls, value):
        return strip_timezone(value)


class BookingCreate(BookingBase):
    requester_id: int


class BookingUpdate(BaseModel):
    requester_id: int
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    booking_type: Optional[BookingCategory] = None
    purpose: Optional[str] = None

    @validator("start_time", "end_time")
    def normalise_time(cls, value):
        return strip_timezone(value)


class BookingCancel(BaseModel):
    actor_id: int
    reason: Optional[str] = None


class BookingCancelMany(BookingCancel):
    booking_ids: List[int]


class AvailabilityRequest(BaseModel):
    resource_id: int
    start_time: datetime
    end_time: datetime
    exclude_booking_id: Optional[int] = None

    @validator("start_time", "end_time")
    def normalise_time(cls, value):
        return strip_timezone(value)


class BookingResponse(BaseModel):
    id: int
    booking_reference: str
    resource_id: int
    user_id: int
    start_time: datetime
    end_time: datetime
    booking_type: str
    priority: int
    status: str
    purpose: Optional[str] = None
    created_at: datetime
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[int] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancelled_by: Optional[int] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    class Config:
        from_attributes = True


class AvailabilityResponse(BaseModel):
    available: bool
    message: str
    conflicts: List[BookingResponse]

    class Config:
        from_attributes = True


class BulkResultResponse(BaseModel):
    processed: int
    total_requested: int
    errors: List[str]

    class Config:
        from_attributes = True


class CancellationStatsResponse(BaseModel):
    total_bookings: int
    cancelled_bookings: int
    recent_cancellations: int

    class Config:
        from_attributes = True


class AdminAction(BaseModel):
    admin_id: int
    notes: Optional[str] = None


class AdminReasonAction(AdminAction):
    reason: str


class BulkApproveRequest(AdminAction):
    booking_ids: List[int]
