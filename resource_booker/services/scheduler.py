"""
Booking admission, update and cancellation.

Every create/update holds the per-resource lock and a row lock on the
resource for the whole read-conflicts, decide, write sequence, so two
concurrent admissions on the same resource cannot both observe a free slot.
Notifications are collected while the transaction runs and dispatched only
after it commits.
"""

import logging
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from resource_booker.config import (
    CANCELLATION_STATS_WINDOW,
    MAX_ACTIVE_BOOKINGS,
    REFERENCE_PREFIX,
    REFERENCE_SUFFIX_LENGTH,
)
from resource_booker.db import atomic, utcnow
from resource_booker.models.booking import (
    Booking,
    BookingStatus,
    LIVE_STATUSES,
    TERMINAL_STATUSES,
)
from resource_booker.models.resource import Resource
from resource_booker.models.user import User
from resource_booker.services.admission import AdmissionDecision, decide
from resource_booker.services.conflicts import ConflictFinder
from resource_booker.services.notifications import (
    LoggingNotificationSink,
    NotificationEvent,
    NotificationKind,
    NotificationSink,
    booking_payload,
    dispatch,
)
from resource_booker.services.priority import calculate_priority
from resource_booker.utils.exceptions import (
    BookingError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from resource_booker.utils.locks import resource_lock
from resource_booker.utils.validation_helpers import strip_timezone, validate_booking_times

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
RoleProvider = Callable[[Session, int], Optional[str]]

_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


def user_role(db: Session, user_id: int) -> Optional[str]:
    """Resolve a user id to its role; None when the user is unknown."""
    return db.query(User.role).filter(User.id == user_id).scalar()


def _random_suffix() -> str:
    return "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(REFERENCE_SUFFIX_LENGTH))


def describe_conflicts(bookings: Iterable[Booking]) -> List[Dict]:
    return [
        {
            "id": b.id,
            "booking_reference": b.booking_reference,
            "user_id": b.user_id,
            "start_time": b.start_time.isoformat(),
            "end_time": b.end_time.isoformat(),
            "priority": b.priority,
            "status": b.status,
        }
        for b in bookings
    ]


@dataclass
class BookingRequest:
    resource_id: int
    start_time: datetime
    end_time: datetime
    booking_type: str
    requester_id: int
    purpose: Optional[str] = None


@dataclass
class BookingChanges:
    """Fields left as None keep the booking's current value."""

    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    booking_type: Optional[str] = None
    purpose: Optional[str] = None


@dataclass
class AvailabilityReport:
    available: bool
    message: str
    conflicts: List[Booking] = field(default_factory=list)


@dataclass
class BulkResult:
    processed: int
    total_requested: int
    errors: List[str] = field(default_factory=list)


@dataclass
class CancellationStats:
    total_bookings: int
    cancelled_bookings: int
    recent_cancellations: int


class BookingScheduler:
    def __init__(
        self,
        db: Session,
        clock: Clock = utcnow,
        notifier: Optional[NotificationSink] = None,
        role_provider: RoleProvider = user_role,
    ):
        self.db = db
        self.clock = clock
        self.notifier = notifier or LoggingNotificationSink()
        self.role_provider = role_provider
        self.conflict_finder = ConflictFinder(db)

    # Lookups

    def _get_resource(self, resource_id: int, for_update: bool = False) -> Resource:
        query = self.db.query(Resource).filter(Resource.id == resource_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        resource = query.first()
        if resource is None:
            raise NotFoundError("Resource not found.", {"resource_id": resource_id})
        return resource

    def _get_active_resource(self, resource_id: int, for_update: bool = False) -> Resource:
        resource = self._get_resource(resource_id, for_update=for_update)
        if not resource.is_active:
            raise ValidationError(
                "The selected resource is currently not active.",
                {"resource_id": resource_id},
            )
        return resource

    def _get_booking(self, booking_id: int, for_update: bool = False) -> Booking:
        query = self.db.query(Booking).filter(Booking.id == booking_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        booking = query.first()
        if booking is None:
            raise NotFoundError("Booking not found.", {"booking_id": booking_id})
        return booking

    def _is_admin(self, user_id: int) -> bool:
        return (self.role_provider(self.db, user_id) or "").lower() == "admin"

    def _ensure_owner_or_admin(self, booking: Booking, actor_id: int, action: str):
        if booking.user_id != actor_id and not self._is_admin(actor_id):
            logger.warning(f"User {actor_id} not authorized to {action} booking {booking.id}")
            raise PermissionDeniedError(
                f"Not authorized to {action} this booking.", {"booking_id": booking.id}
            )

    # Rules

    def _check_quota(self, requester_id: int, now: datetime):
        active = (
            self.db.query(func.count(Booking.id))
            .filter(
                Booking.user_id == requester_id,
                Booking.status.in_(LIVE_STATUSES),
                Booking.end_time > now,
            )
            .scalar()
        )
        if active >= MAX_ACTIVE_BOOKINGS:
            logger.warning(f"User {requester_id} has {active} active bookings, quota reached")
            raise ValidationError(
                f"You have reached the maximum limit of {MAX_ACTIVE_BOOKINGS} active bookings.",
                {"active_bookings": active},
            )

    def _admit(self, resource: Resource, priority: int, start_time, end_time, exclude_booking_id=None) -> AdmissionDecision:
        conflicts = self.conflict_finder.find_conflicts(
            resource.id, start_time, end_time, exclude_booking_id=exclude_booking_id
        )
        decision = decide(resource.capacity, priority, conflicts)
        if not decision.accepted:
            logger.warning(
                f"Admission rejected on resource {resource.id} for {start_time} to {end_time}, "
                f"priority {priority}: {len(decision.blocking)} blocking booking(s)"
            )
            raise ConflictError(
                decision.reason,
                {"conflicts": describe_conflicts(decision.blocking), "capacity": resource.capacity},
            )
        return decision

    def _preempt(self, victims: Iterable[Booking], reference: str, now: datetime) -> List[NotificationEvent]:
        events = []
        for victim in victims:
            victim.status = BookingStatus.PREEMPTED.value
            victim.cancelled_at = now
            victim.updated_at = now
            victim.cancellation_reason = f"Preempted by higher-priority booking (Ref: {reference})"
            logger.info(f"Booking {victim.id} preempted by {reference}")
            events.append(
                NotificationEvent(
                    user_id=victim.user_id,
                    kind=NotificationKind.PREEMPTED,
                    payload=booking_payload(victim, preempted_by=reference),
                )
            )
        return events

    def generate_reference(self, now: Optional[datetime] = None) -> str:
        """Draw ``RBA-<ddmmHHMM>-<suffix>`` until no stored booking uses it."""
        now = now or self.clock()
        while True:
            reference = f"{REFERENCE_PREFIX}-{now:%d%m%H%M}-{_random_suffix()}"
            taken = (
                self.db.query(Booking.id)
                .filter(Booking.booking_reference == reference)
                .first()
            )
            if taken is None:
                return reference
            logger.debug(f"Booking reference {reference} already taken, drawing again")

    # Operations

    def create_booking(self, request: BookingRequest) -> Booking:
        now = self.clock()
        start_time = strip_timezone(request.start_time)
        end_time = strip_timezone(request.end_time)
        validate_booking_times(start_time, end_time, now)

        with resource_lock(request.resource_id):
            with atomic(self.db, "creating the booking"):
                self._check_quota(request.requester_id, now)
                resource = self._get_active_resource(request.resource_id, for_update=True)
                priority = calculate_priority(
                    self.role_provider(self.db, request.requester_id), request.booking_type
                )
                decision = self._admit(resource, priority, start_time, end_time)

                reference = self.generate_reference(now)
                events = self._preempt(decision.to_preempt, reference, now)
                self.db.flush()
                booking = Booking(
                    booking_reference=reference,
                    resource_id=resource.id,
                    user_id=request.requester_id,
                    start_time=start_time,
                    end_time=end_time,
                    purpose=request.purpose,
                    booking_type=request.booking_type,
                    priority=priority,
                    status=BookingStatus.APPROVED.value,
                    approved_at=now,
                    created_at=now,
                    updated_at=now,
                )
                self.db.add(booking)
                self.db.flush()
                events.append(
                    NotificationEvent(
                        user_id=request.requester_id,
                        kind=NotificationKind.APPROVED,
                        payload=booking_payload(booking),
                    )
                )

        self.db.refresh(booking)
        logger.info(
            f"Booking {booking.booking_reference} approved on resource {booking.resource_id} "
            f"with priority {priority}, {len(decision.to_preempt)} preempted"
        )
        dispatch(self.notifier, events)
        return booking

    def update_booking(self, booking_id: int, changes: BookingChanges, requester_id: int) -> Booking:
        now = self.clock()
        with atomic(self.db, "loading the booking"):
            resource_id = self._get_booking(booking_id).resource_id

        with resource_lock(resource_id):
            with atomic(self.db, "updating the booking"):
                booking = self._get_booking(booking_id, for_update=True)
                self._ensure_owner_or_admin(booking, requester_id, "modify")
                if booking.start_time <= now:
                    raise ValidationError("Cannot modify bookings that have already started.")
                if booking.status in TERMINAL_STATUSES:
                    raise ValidationError(f"Cannot modify a {booking.status} booking.")

                start_time = strip_timezone(changes.start_time) or booking.start_time
                end_time = strip_timezone(changes.end_time) or booking.end_time
                booking_type = changes.booking_type or booking.booking_type
                if start_time != booking.start_time or end_time != booking.end_time:
                    validate_booking_times(start_time, end_time, now)

                resource = self._get_active_resource(booking.resource_id, for_update=True)
                priority = calculate_priority(self.role_provider(self.db, requester_id), booking_type)
                decision = self._admit(
                    resource, priority, start_time, end_time, exclude_booking_id=booking.id
                )

                events = self._preempt(decision.to_preempt, booking.booking_reference, now)
                booking.start_time = start_time
                booking.end_time = end_time
                booking.booking_type = booking_type
                booking.priority = priority
                if changes.purpose is not None:
                    booking.purpose = changes.purpose
                if booking.status != BookingStatus.APPROVED.value:
                    booking.approved_at = now
                booking.status = BookingStatus.APPROVED.value
                booking.updated_at = now

        self.db.refresh(booking)
        logger.info(f"Booking {booking.booking_reference} updated by user {requester_id}")
        dispatch(self.notifier, events)
        return booking

    def cancel_booking(self, booking_id: int, actor_id: int, reason: Optional[str] = None) -> Booking:
        now = self.clock()
        with atomic(self.db, "cancelling the booking"):
            booking = self._get_booking(booking_id, for_update=True)
            self._ensure_owner_or_admin(booking, actor_id, "cancel")
            if booking.status in TERMINAL_STATUSES:
                raise ValidationError(f"Cannot cancel a booking that is already {booking.status}.")
            if booking.end_time <= now:
                raise ValidationError("Cannot cancel bookings that have already completed.")

            booking.status = BookingStatus.CANCELLED.value
            booking.cancelled_at = now
            booking.cancelled_by = actor_id
            booking.cancellation_reason = reason or "Cancelled by user."
            booking.updated_at = now
            event = NotificationEvent(
                user_id=booking.user_id,
                kind=NotificationKind.CANCELLED,
                payload=booking_payload(booking, reason=booking.cancellation_reason),
            )

        self.db.refresh(booking)
        logger.info(f"Booking {booking.booking_reference} cancelled by user {actor_id}")
        dispatch(self.notifier, [event])
        return booking

    def cancel_many(self, booking_ids: List[int], actor_id: int, reason: Optional[str] = None) -> BulkResult:
        """Cancel each booking in its own transaction and report the ones that failed."""
        result = BulkResult(processed=0, total_requested=len(booking_ids))
        for booking_id in booking_ids:
            try:
                self.cancel_booking(booking_id, actor_id, reason)
            except BookingError as exc:
                result.errors.append(f"Booking #{booking_id} cannot be cancelled: {exc.message}")
                continue
            result.processed += 1
        return result

    def check_availability(
        self,
        resource_id: int,
        start_time: datetime,
        end_time: datetime,
        exclude_booking_id: Optional[int] = None,
    ) -> AvailabilityReport:
        """Capacity-only view of a window. Priority is not considered here."""
        start_time = strip_timezone(start_time)
        end_time = strip_timezone(end_time)
        validate_booking_times(start_time, end_time, self.clock())

        with atomic(self.db, "checking availability"):
            resource = self._get_active_resource(resource_id)
            conflicts = self.conflict_finder.find_conflicts(
                resource_id, start_time, end_time, exclude_booking_id=exclude_booking_id
            )
            capacity = resource.capacity

        if capacity == 1 and conflicts:
            return AvailabilityReport(
                available=False,
                message="Resource is already fully booked during this time.",
                conflicts=conflicts,
            )
        if capacity > 1 and len(conflicts) >= capacity:
            return AvailabilityReport(
                available=False,
                message=f"Resource capacity ({capacity}) is fully booked for the selected time period.",
                conflicts=conflicts,
            )
        return AvailabilityReport(available=True, message="Time slot is available.", conflicts=conflicts)

    def cancellation_stats(self, user_id: int) -> CancellationStats:
        cancelled = BookingStatus.CANCELLED.value
        since = self.clock() - CANCELLATION_STATS_WINDOW
        with atomic(self.db, "computing cancellation statistics"):
            total, cancelled_count, recent = (
                self.db.query(
                    func.count(Booking.id),
                    func.sum(case((Booking.status == cancelled, 1), else_=0)),
                    func.sum(
                        case(
                            ((Booking.status == cancelled) & (Booking.cancelled_at >= since), 1),
                            else_=0,
                        )
                    ),
                )
                .filter(Booking.user_id == user_id)
                .one()
            )
        return CancellationStats(
            total_bookings=total or 0,
            cancelled_bookings=cancelled_count or 0,
            recent_cancellations=recent or 0,
        )
