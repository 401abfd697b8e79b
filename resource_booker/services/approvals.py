"""Administrator actions on bookings: approve, reject, cancel."""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from resource_booker.db import atomic, utcnow
from resource_booker.models.booking import Booking, BookingStatus, can_transition
from resource_booker.services.notifications import (
    LoggingNotificationSink,
    NotificationEvent,
    NotificationKind,
    booking_payload,
    dispatch,
)
from resource_booker.services.scheduler import BulkResult, user_role
from resource_booker.utils.exceptions import NotFoundError, PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)


class ApprovalService:
    def __init__(self, db: Session, clock=utcnow, notifier=None, role_provider=user_role):
        self.db = db
        self.clock = clock
        self.notifier = notifier or LoggingNotificationSink()
        self.role_provider = role_provider

    def _ensure_admin(self, admin_id: int):
        role = self.role_provider(self.db, admin_id)
        if (role or "").lower() != "admin":
            logger.warning(f"User {admin_id} with role {role!r} attempted an admin booking action")
            raise PermissionDeniedError("Only administrators can perform this action.")

    def _get_booking(self, booking_id: int) -> Booking:
        booking = (
            self.db.query(Booking)
            .filter(Booking.id == booking_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if booking is None:
            raise NotFoundError("Booking not found.", {"booking_id": booking_id})
        return booking

    def pending_bookings(
        self,
        resource_id: Optional[int] = None,
        user_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Booking]:
        with atomic(self.db, "listing pending bookings"):
            query = self.db.query(Booking).filter(Booking.status == BookingStatus.PENDING.value)
            if resource_id is not None:
                query = query.filter(Booking.resource_id == resource_id)
            if user_id is not None:
                query = query.filter(Booking.user_id == user_id)
            bookings = query.order_by(Booking.created_at.desc()).offset(skip).limit(limit).all()
        return bookings

    def approve_booking(self, booking_id: int, admin_id: int, notes: Optional[str] = None) -> Booking:
        now = self.clock()
        with atomic(self.db, "approving the booking"):
            self._ensure_admin(admin_id)
            booking = self._get_booking(booking_id)
            if booking.status != BookingStatus.PENDING.value:
                raise ValidationError("Only pending bookings can be approved.")
            self._approve(booking, admin_id, notes, now)
            event = NotificationEvent(booking.user_id, NotificationKind.APPROVED, booking_payload(booking))

        logger.info(f"Booking {booking_id} approved by admin {admin_id}")
        dispatch(self.notifier, [event])
        return booking

    def _approve(self, booking: Booking, admin_id: int, notes: Optional[str], now):
        booking.status = BookingStatus.APPROVED.value
        booking.approved_by = admin_id
        booking.approved_at = now
        booking.admin_notes = notes
        booking.updated_at = now

    def reject_booking(
        self, booking_id: int, admin_id: int, reason: str, notes: Optional[str] = None
    ) -> Booking:
        now = self.clock()
        with atomic(self.db, "rejecting the booking"):
            self._ensure_admin(admin_id)
            booking = self._get_booking(booking_id)
            if not can_transition(booking.status, BookingStatus.REJECTED.value):
                raise ValidationError(f"Cannot reject a booking that is already {booking.status}.")
            booking.status = BookingStatus.REJECTED.value
            booking.rejected_by = admin_id
            booking.rejected_at = now
            booking.rejection_reason = reason
            booking.admin_notes = notes
            booking.updated_at = now
            event = NotificationEvent(
                booking.user_id, NotificationKind.REJECTED, booking_payload(booking, reason=reason)
            )

        logger.info(f"Booking {booking_id} rejected by admin {admin_id}")
        dispatch(self.notifier, [event])
        return booking

    def cancel_booking_by_admin(
        self, booking_id: int, admin_id: int, reason: str, notes: Optional[str] = None
    ) -> Booking:
        now = self.clock()
        with atomic(self.db, "cancelling the booking"):
            self._ensure_admin(admin_id)
            booking = self._get_booking(booking_id)
            if not can_transition(booking.status, BookingStatus.CANCELLED.value):
                raise ValidationError(f"Cannot cancel a booking that is already {booking.status}.")
            if booking.end_time <= now:
                raise ValidationError("Cannot cancel bookings that have already completed.")
            booking.status = BookingStatus.CANCELLED.value
            booking.cancelled_by = admin_id
            booking.cancelled_at = now
            booking.cancellation_reason = reason
            booking.admin_notes = notes
            booking.updated_at = now
            event = NotificationEvent(
                booking.user_id, NotificationKind.CANCELLED, booking_payload(booking, reason=reason)
            )

        logger.info(f"Booking {booking_id} cancelled by admin {admin_id}")
        dispatch(self.notifier, [event])
        return booking

    def bulk_approve(self, booking_ids: List[int], admin_id: int, notes: Optional[str] = None) -> BulkResult:
        """Approve every pending booking among ``booking_ids`` in one transaction."""
        now = self.clock()
        result = BulkResult(processed=0, total_requested=len(booking_ids))
        events = []
        with atomic(self.db, "bulk approving bookings"):
            self._ensure_admin(admin_id)
            bookings = (
                self.db.query(Booking)
                .filter(
                    Booking.id.in_(booking_ids),
                    Booking.status == BookingStatus.PENDING.value,
                )
                .with_for_update()
                .all()
            )
            found = {booking.id for booking in bookings}
            for booking_id in booking_ids:
                if booking_id not in found:
                    result.errors.append(f"Booking #{booking_id} is not pending or does not exist.")
            for booking in bookings:
                self._approve(booking, admin_id, notes, now)
                events.append(
                    NotificationEvent(booking.user_id, NotificationKind.APPROVED, booking_payload(booking))
                )
            result.processed = len(bookings)

        logger.info(f"Admin {admin_id} bulk approved {result.processed}/{result.total_requested} bookings")
        dispatch(self.notifier, events)
        return result
