from typing import List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from resource_booker.db import get_db
from resource_booker.schemas.booking import (
    AdminAction,
    AdminReasonAction,
    BookingResponse,
    BulkApproveRequest,
    BulkResultResponse,
)
from resource_booker.services.approvals import ApprovalService
from resource_booker.utils.exceptions import BookingError


router = APIRouter(
    prefix="/approvals",
    tags=["approvals"],
)


def get_approval_service(db: Session = Depends(get_db)) -> ApprovalService:
    return ApprovalService(db)


@router.get("/pending", response_model=List[BookingResponse])
def pending_bookings(
    resource_id: Optional[int] = None,
    user_id: Optional[int] = None,
    skip: int = 0,
    limit: int = 100,
    service: ApprovalService = Depends(get_approval_service),
):
    """
    List bookings waiting for an administrator decision, newest first.
    """
    try:
        return service.pending_bookings(resource_id=resource_id, user_id=user_id, skip=skip, limit=limit)
    except BookingError as exc:
        raise exc.to_http_exception()


@router.post("/bulk-approve", response_model=BulkResultResponse)
def bulk_approve(request: BulkApproveRequest, service: ApprovalService = Depends(get_approval_service)):
    try:
        return service.bulk_approve(request.booking_ids, request.admin_id, request.notes)
    except BookingError as exc:
        raise exc.to_http_exception()


@router.post("/{booking_id}/approve", response_model=BookingResponse)
def approve_booking(booking_id: int, action: AdminAction, service: ApprovalService = Depends(get_approval_service)):
    try:
        return service.approve_booking(booking_id, action.admin_id, action.notes)
    except BookingError as exc:
        raise exc.to_http_exception()


@router.post("/{booking_id}/reject", response_model=BookingResponse)
def reject_booking(booking_id: int, action: AdminReasonAction, service: ApprovalService = Depends(get_approval_service)):
    try:
        return service.reject_booking(booking_id, action.admin_id, action.reason, action.notes)
    except BookingError as exc:
        raise exc.to_http_exception()


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(booking_id: int, action: AdminReasonAction, service: ApprovalService = Depends(get_approval_service)):
    try:
        return service.cancel_booking_by_admin(booking_id, action.admin_id, action.reason, action.notes)
    except BookingError as exc:
        raise exc.to_http_exception()
