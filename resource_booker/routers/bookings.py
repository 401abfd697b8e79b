from typing import List
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from resource_booker.db import get_db
from resource_booker.models.booking import Booking
from resource_booker.schemas.booking import (
    AvailabilityRequest,
    AvailabilityResponse,
    BookingCancel,
    BookingCancelMany,
    BookingCreate,
    BookingResponse,
    BookingUpdate,
    BulkResultResponse,
    CancellationStatsResponse,
)
from resource_booker.services.scheduler import BookingChanges, BookingRequest, BookingScheduler
from resource_booker.utils.exceptions import BookingError
import logging

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/bookings",
    tags=["bookings"],
)


def get_scheduler(db: Session = Depends(get_db)) -> BookingScheduler:
    return BookingScheduler(db)


@router.post(
    "/",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new booking",
    description="Admit a booking on a resource, preempting lower-priority bookings if needed."
)
def create_booking(
    booking: BookingCreate,
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    """
    Create a new booking.

    - **resource_id**: ID of the resource to book.
    - **start_time** / **end_time**: Requested window, end exclusive.
    - **booking_type**: Category, drives the booking priority.
    - **purpose**: Purpose of the booking.
    - **requester_id**: ID of the user making the request.

    Returns the approved booking. Rejections come back as 400, 404 or 409.
    """
    logger.debug(f"Creating booking for user: {booking.requester_id}, resource_id: {booking.resource_id}")
    try:
        return scheduler.create_booking(
            BookingRequest(
                resource_id=booking.resource_id,
                start_time=booking.start_time,
                end_time=booking.end_time,
                booking_type=booking.booking_type.value,
                requester_id=booking.requester_id,
                purpose=booking.purpose,
            )
        )
    except BookingError as exc:
        raise exc.to_http_exception()


@router.get(
    "/",
    response_model=List[BookingResponse],
    summary="List all bookings",
    description="Retrieve a paginated list of bookings."
)
def get_bookings(
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    bookings = db.query(Booking).order_by(Booking.start_time).offset(skip).limit(limit).all()
    logger.debug(f"Retrieved {len(bookings)} bookings")
    return bookings


@router.post(
    "/check-availability",
    response_model=AvailabilityResponse,
    summary="Check availability",
    description="Report whether a window on a resource still has free capacity."
)
def check_availability(
    request: AvailabilityRequest,
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    try:
        report = scheduler.check_availability(
            request.resource_id,
            request.start_time,
            request.end_time,
            exclude_booking_id=request.exclude_booking_id,
        )
    except BookingError as exc:
        raise exc.to_http_exception()
    return AvailabilityResponse(
        available=report.available,
        message=report.message,
        conflicts=[BookingResponse.model_validate(booking) for booking in report.conflicts],
    )


@router.post(
    "/cancel-many",
    response_model=BulkResultResponse,
    summary="Cancel several bookings",
)
def cancel_many(
    request: BookingCancelMany,
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    """Cancel each listed booking; failures are reported per booking."""
    return scheduler.cancel_many(request.booking_ids, request.actor_id, request.reason)


@router.get(
    "/stats/{user_id}",
    response_model=CancellationStatsResponse,
    summary="Cancellation statistics for a user",
)
def cancellation_stats(
    user_id: int,
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    try:
        return scheduler.cancellation_stats(user_id)
    except BookingError as exc:
        raise exc.to_http_exception()


@router.get(
    "/{booking_id}",
    response_model=BookingResponse,
    summary="Get a booking by ID",
    description="Retrieve a specific booking by its ID."
)
def get_booking(
    booking_id: int,
    db: Session = Depends(get_db),
):
    booking = db.query(Booking).filter(Booking.id == booking_id).first()
    if not booking:
        logger.error(f"Booking not found: {booking_id}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return booking


@router.put(
    "/{booking_id}",
    response_model=BookingResponse,
    summary="Update a booking",
    description="Move or recategorise a booking. Only the owner or an admin may update it."
)
def update_booking(
    booking_id: int,
    booking_update: BookingUpdate,
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    """
    Update a booking that has not started yet.

    - **booking_id**: ID of the booking to update.
    - **start_time** / **end_time**: (Optional) New window.
    - **booking_type**: (Optional) New category, the priority is recomputed.
    - **purpose**: (Optional) New purpose.
    - **requester_id**: ID of the user making the change.
    """
    changes = BookingChanges(
        start_time=booking_update.start_time,
        end_time=booking_update.end_time,
        booking_type=booking_update.booking_type.value if booking_update.booking_type else None,
        purpose=booking_update.purpose,
    )
    try:
        return scheduler.update_booking(booking_id, changes, booking_update.requester_id)
    except BookingError as exc:
        raise exc.to_http_exception()


@router.post(
    "/{booking_id}/cancel",
    response_model=BookingResponse,
    summary="Cancel a booking",
    description="Cancel a live booking whose window has not ended."
)
def cancel_booking(
    booking_id: int,
    request: BookingCancel,
    scheduler: BookingScheduler = Depends(get_scheduler),
):
    try:
        return scheduler.cancel_booking(booking_id, request.actor_id, request.reason)
    except BookingError as exc:
        raise exc.to_http_exception()
