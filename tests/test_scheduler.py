import re
import threading
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from resource_booker.models.booking import Booking, BookingStatus
from resource_booker.services import scheduler as scheduler_module
from resource_booker.services.conflicts import ConflictFinder
from resource_booker.services.notifications import NotificationKind
from resource_booker.services.scheduler import BookingChanges, BookingRequest, BookingScheduler
from resource_booker.utils.exceptions import (
    ConflictError,
    InfrastructureError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

from tests.conf_tests import (  # pylint: disable=unused-import
    NOW,
    TestingSessionLocal,
    admin,
    at,
    clear_db,
    frozen_clock,
    make_booking,
    make_resource,
    make_user,
    notifications,
    reload,
    room,
    scheduler,
    staff,
    student,
    test_db,
)


def request_for(resource, user, start, end, booking_type="other", purpose="Lab session"):
    return BookingRequest(
        resource_id=resource.id,
        start_time=start,
        end_time=end,
        booking_type=booking_type,
        requester_id=user.id,
        purpose=purpose,
    )


def live_overlapping(db, resource_id, instant):
    return (
        db.query(Booking)
        .filter(
            Booking.resource_id == resource_id,
            Booking.status.in_(["pending", "approved", "in_use"]),
            Booking.start_time <= instant,
            Booking.end_time > instant,
        )
        .count()
    )


# Scenarios

# pylint: disable-next=redefined-outer-name
def test_higher_priority_preempts_incumbent(scheduler, room, staff, admin, make_user, notifications):
    incumbent = scheduler.create_booking(request_for(room, staff, at(10), at(11), "class"))
    assert incumbent.priority == 4
    notifications.events.clear()

    requester = make_user("lecturer")
    booking = scheduler.create_booking(
        request_for(room, requester, at(10, 30), at(11, 30), "university_activity")
    )

    assert booking.status == BookingStatus.APPROVED.value
    assert booking.priority == 5
    assert (booking.start_time, booking.end_time) == (at(10, 30), at(11, 30))

    victim = reload(incumbent.id)
    assert victim.status == BookingStatus.PREEMPTED.value
    assert victim.cancelled_at == NOW
    assert booking.booking_reference in victim.cancellation_reason

    kinds = [(e.user_id, e.kind) for e in notifications.events]
    assert kinds == [
        (staff.id, NotificationKind.PREEMPTED),
        (requester.id, NotificationKind.APPROVED),
    ]


# pylint: disable-next=redefined-outer-name
def test_preempted_booking_is_stamped_with_scheduler_clock(scheduler, room, student, make_user, make_booking, frozen_clock):
    incumbent = make_booking(room, student, at(10), at(11), priority=1)
    frozen_clock.advance(minutes=5)

    scheduler.create_booking(request_for(room, make_user("admin"), at(10), at(11), "class"))

    victim = reload(incumbent.id)
    assert victim.status == BookingStatus.PREEMPTED.value
    assert victim.updated_at == NOW + timedelta(minutes=5)
    assert victim.cancelled_at == NOW + timedelta(minutes=5)


# pylint: disable-next=redefined-outer-name
def test_scenario_a_stored_priorities(scheduler, room, staff, student, make_booking):
    incumbent = make_booking(room, staff, at(10), at(11), priority=2, booking_type="class")
    booking = scheduler.create_booking(
        request_for(room, student, at(10, 30), at(11, 30), "university_activity")
    )
    assert booking.priority == 4
    assert reload(incumbent.id).status == BookingStatus.PREEMPTED.value


# pylint: disable-next=redefined-outer-name
def test_scenario_b_lower_priority_is_rejected(scheduler, room, staff, student, make_booking, notifications):
    incumbent = make_booking(room, staff, at(10), at(11), priority=2, booking_type="class")

    with pytest.raises(ConflictError) as exc_info:
        scheduler.create_booking(request_for(room, student, at(10, 30), at(11, 30), "student_meeting"))

    assert "higher or equal priority" in exc_info.value.message
    assert [c["id"] for c in exc_info.value.details["conflicts"]] == [incumbent.id]
    untouched = reload(incumbent.id)
    assert untouched.status == BookingStatus.APPROVED.value
    assert untouched.cancelled_at is None
    assert notifications.events == []
    assert TestingSessionLocal().query(Booking).count() == 1


# pylint: disable-next=redefined-outer-name
def test_scenario_c_capacity_exhausted_by_equal_priority(scheduler, make_resource, make_user, make_booking):
    hall = make_resource(capacity=3, name="Hall")
    owner = make_user("student")
    for _ in range(3):
        make_booking(hall, owner, at(10), at(12), priority=2, booking_type="staff_meeting")

    with pytest.raises(ConflictError) as exc_info:
        scheduler.create_booking(request_for(hall, make_user("student"), at(11), at(12), "staff_meeting"))
    assert "(3)" in exc_info.value.message


# pylint: disable-next=redefined-outer-name
def test_scenario_e_rejected_before_conflict_lookup(scheduler, room, student, monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("conflict lookup must not run")

    monkeypatch.setattr(ConflictFinder, "find_conflicts", fail)
    with pytest.raises(ValidationError, match="End time must be greater"):
        scheduler.create_booking(request_for(room, student, at(11), at(11)))
    with pytest.raises(ValidationError, match="End time must be greater"):
        scheduler.create_booking(request_for(room, student, at(11), at(10)))


# Timing and quota rules

# pylint: disable-next=redefined-outer-name
def test_start_in_the_past_is_rejected(scheduler, room, student):
    with pytest.raises(ValidationError, match="future"):
        scheduler.create_booking(request_for(room, student, NOW - timedelta(minutes=5), at(9)))


# pylint: disable-next=redefined-outer-name
def test_start_within_latency_tolerance_is_accepted(scheduler, room, student):
    start = NOW - timedelta(seconds=30)
    booking = scheduler.create_booking(request_for(room, student, start, start + timedelta(hours=1)))
    assert booking.start_time == start


# pylint: disable-next=redefined-outer-name
def test_duration_bounds(scheduler, room, student):
    with pytest.raises(ValidationError, match="at least 30 minutes"):
        scheduler.create_booking(request_for(room, student, at(10), at(10, 29)))
    with pytest.raises(ValidationError, match="cannot exceed 8 hours"):
        scheduler.create_booking(request_for(room, student, at(9), at(17, 1)))

    assert scheduler.create_booking(request_for(room, student, at(9), at(9, 30))).id
    assert scheduler.create_booking(request_for(room, student, at(10), at(18))).id


# pylint: disable-next=redefined-outer-name
def test_active_booking_quota(scheduler, make_resource, student, make_booking):
    resource = make_resource(capacity=10)
    for day in range(5):
        make_booking(resource, student, at(10, days=day + 1), at(11, days=day + 1))
    # Finished and cancelled bookings do not count
    make_booking(resource, student, NOW - timedelta(hours=2), NOW - timedelta(hours=1))
    make_booking(resource, student, at(12), at(13), status=BookingStatus.CANCELLED.value)

    with pytest.raises(ValidationError, match="maximum limit of 5"):
        scheduler.create_booking(request_for(resource, student, at(14), at(15)))


# pylint: disable-next=redefined-outer-name
def test_missing_resource(scheduler, student):
    with pytest.raises(NotFoundError):
        scheduler.create_booking(
            BookingRequest(resource_id=999, start_time=at(10), end_time=at(11),
                           booking_type="other", requester_id=student.id)
        )


# pylint: disable-next=redefined-outer-name
def test_inactive_resource(scheduler, make_resource, student):
    resource = make_resource(is_active=False)
    with pytest.raises(ValidationError, match="not active"):
        scheduler.create_booking(request_for(resource, student, at(10), at(11)))


# Admission details

# pylint: disable-next=redefined-outer-name
def test_equal_priority_is_never_preempted(scheduler, room, make_user):
    first = scheduler.create_booking(request_for(room, make_user("staff"), at(10), at(11), "class"))
    with pytest.raises(ConflictError):
        scheduler.create_booking(request_for(room, make_user("lecturer"), at(10), at(11), "class"))
    assert reload(first.id).status == BookingStatus.APPROVED.value


# pylint: disable-next=redefined-outer-name
def test_back_to_back_booking_is_admitted_without_preemption(scheduler, room, make_user):
    first = scheduler.create_booking(request_for(room, make_user("admin"), at(10), at(11), "class"))
    second = scheduler.create_booking(request_for(room, make_user("student"), at(11), at(12)))
    assert second.status == BookingStatus.APPROVED.value
    assert reload(first.id).status == BookingStatus.APPROVED.value


# pylint: disable-next=redefined-outer-name
def test_all_lower_priority_conflicts_are_bumped(scheduler, make_resource, make_user, make_booking):
    hall = make_resource(capacity=5)
    low = [make_booking(hall, make_user(), at(10), at(11), priority=1) for _ in range(2)]
    high = make_booking(hall, make_user(), at(10), at(11), priority=6)

    scheduler.create_booking(request_for(hall, make_user("staff"), at(10), at(11), "class"))

    assert [reload(b.id).status for b in low] == ["preempted", "preempted"]
    assert reload(high.id).status == "approved"


# pylint: disable-next=redefined-outer-name
def test_capacity_invariant_holds_across_a_busy_day(scheduler, make_resource, make_user, test_db):
    lab = make_resource(capacity=2)
    roles = ["student", "staff", "admin", "lecturer", "student", "staff"]
    categories = ["student_meeting", "class", "other", "staff_meeting", "university_activity", "class"]
    windows = [(9, 11), (10, 12), (9, 10), (10, 11), (11, 13), (9, 13)]

    for role, category, (start, end) in zip(roles * 2, categories * 2, windows * 2):
        try:
            scheduler.create_booking(request_for(lab, make_user(role), at(start), at(end), category))
        except ConflictError:
            pass

    for minute in range(9 * 60, 13 * 60, 15):
        instant = at(minute // 60, minute % 60)
        assert live_overlapping(test_db, lab.id, instant) <= 2


# Transactions and notifications

# pylint: disable-next=redefined-outer-name
def test_failed_insert_rolls_back_preemptions(scheduler, room, staff, student, make_booking, notifications, monkeypatch):
    incumbent = make_booking(room, student, at(10), at(11), priority=1)
    real_flush = scheduler.db.flush
    calls = []

    def flaky_flush(*args, **kwargs):
        calls.append(1)
        if len(calls) == 2:
            raise OperationalError("INSERT INTO bookings", {}, Exception("disk I/O error"))
        return real_flush(*args, **kwargs)

    monkeypatch.setattr(scheduler.db, "flush", flaky_flush)
    with pytest.raises(InfrastructureError):
        scheduler.create_booking(request_for(room, staff, at(10), at(11), "class"))

    monkeypatch.undo()
    assert len(calls) == 2
    victim = reload(incumbent.id)
    assert victim.status == BookingStatus.APPROVED.value
    assert victim.cancellation_reason is None
    assert notifications.events == []
    assert TestingSessionLocal().query(Booking).count() == 1


# pylint: disable-next=redefined-outer-name
def test_notification_failure_does_not_undo_booking(test_db, room, student, frozen_clock, caplog):
    class BrokenSink:
        def notify(self, user_id, kind, payload):
            raise RuntimeError("smtp down")

    broken = BookingScheduler(test_db, clock=frozen_clock, notifier=BrokenSink())
    booking = broken.create_booking(request_for(room, student, at(10), at(11)))

    assert reload(booking.id).status == BookingStatus.APPROVED.value
    assert "Failed to deliver approved notification" in caplog.text


# pylint: disable-next=redefined-outer-name
def test_concurrent_admissions_respect_capacity(room, make_user, frozen_clock):
    requesters = [make_user("staff").id, make_user("staff").id]
    barrier = threading.Barrier(len(requesters))
    outcomes = []

    def attempt(user_id):
        db = TestingSessionLocal()
        try:
            barrier.wait()
            BookingScheduler(db, clock=frozen_clock).create_booking(
                BookingRequest(resource_id=room.id, start_time=at(10), end_time=at(11),
                               booking_type="class", requester_id=user_id)
            )
            outcomes.append("admitted")
        except ConflictError:
            outcomes.append("rejected")
        finally:
            db.close()

    threads = [threading.Thread(target=attempt, args=(user_id,)) for user_id in requesters]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["admitted", "rejected"]


# References

# pylint: disable-next=redefined-outer-name
def test_reference_format(scheduler, room, student):
    booking = scheduler.create_booking(request_for(room, student, at(10), at(11)))
    assert re.fullmatch(r"RBA-07010800-[A-Z0-9]{6}", booking.booking_reference)


# pylint: disable-next=redefined-outer-name
def test_reference_is_redrawn_on_collision(scheduler, room, student, make_booking, monkeypatch):
    taken = make_booking(room, student, at(15), at(16))
    taken.booking_reference = "RBA-07010800-AAAAAA"
    scheduler.db.commit()

    suffixes = iter(["AAAAAA", "AAAAAA", "BBBBBB"])
    monkeypatch.setattr(scheduler_module, "_random_suffix", lambda: next(suffixes))

    booking = scheduler.create_booking(request_for(room, student, at(10), at(11)))
    assert booking.booking_reference == "RBA-07010800-BBBBBB"


# pylint: disable-next=redefined-outer-name
def test_references_are_unique(scheduler, make_resource, make_user):
    hall = make_resource(capacity=20)
    references = {
        scheduler.create_booking(request_for(hall, make_user(), at(10), at(11))).booking_reference
        for _ in range(15)
    }
    assert len(references) == 15


# Update

# pylint: disable-next=redefined-outer-name
def test_update_moves_booking_and_recomputes_priority(scheduler, room, staff):
    booking = scheduler.create_booking(request_for(room, staff, at(10), at(11), "staff_meeting"))
    updated = scheduler.update_booking(
        booking.id,
        BookingChanges(start_time=at(14), end_time=at(15, 30), booking_type="class", purpose="Lecture"),
        staff.id,
    )
    assert (updated.start_time, updated.end_time) == (at(14), at(15, 30))
    assert updated.priority == 4
    assert updated.purpose == "Lecture"
    assert updated.status == BookingStatus.APPROVED.value


# pylint: disable-next=redefined-outer-name
def test_update_does_not_conflict_with_itself(scheduler, room, student):
    booking = scheduler.create_booking(request_for(room, student, at(10), at(11)))
    updated = scheduler.update_booking(booking.id, BookingChanges(end_time=at(11, 30)), student.id)
    assert updated.end_time == at(11, 30)


# pylint: disable-next=redefined-outer-name
def test_update_preempts_lower_priority(scheduler, room, staff, student, make_booking, notifications):
    victim = make_booking(room, student, at(14), at(15), priority=0)
    booking = scheduler.create_booking(request_for(room, staff, at(10), at(11), "class"))
    notifications.events.clear()

    scheduler.update_booking(booking.id, BookingChanges(start_time=at(14), end_time=at(15)), staff.id)

    bumped = reload(victim.id)
    assert bumped.status == BookingStatus.PREEMPTED.value
    assert booking.booking_reference in bumped.cancellation_reason
    assert [e.kind for e in notifications.events] == [NotificationKind.PREEMPTED]


# pylint: disable-next=redefined-outer-name
def test_rejected_update_leaves_booking_untouched(scheduler, room, student, make_user, make_booking):
    make_booking(room, make_user("admin"), at(14), at(15), priority=6)
    booking = scheduler.create_booking(request_for(room, student, at(10), at(11)))

    with pytest.raises(ConflictError):
        scheduler.update_booking(booking.id, BookingChanges(start_time=at(14), end_time=at(15)), student.id)

    stored = reload(booking.id)
    assert (stored.start_time, stored.end_time) == (at(10), at(11))


# pylint: disable-next=redefined-outer-name
def test_update_rules(scheduler, room, student, make_user, make_booking, frozen_clock):
    started = make_booking(room, student, NOW - timedelta(minutes=10), at(9))
    with pytest.raises(ValidationError, match="already started"):
        scheduler.update_booking(started.id, BookingChanges(purpose="x"), student.id)

    cancelled = make_booking(room, student, at(10), at(11), status=BookingStatus.CANCELLED.value)
    with pytest.raises(ValidationError, match="cancelled"):
        scheduler.update_booking(cancelled.id, BookingChanges(purpose="x"), student.id)

    live = make_booking(room, student, at(12), at(13))
    with pytest.raises(PermissionDeniedError):
        scheduler.update_booking(live.id, BookingChanges(purpose="x"), make_user("student").id)
    with pytest.raises(ValidationError, match="at least 30 minutes"):
        scheduler.update_booking(live.id, BookingChanges(end_time=at(12, 10)), student.id)
    with pytest.raises(NotFoundError):
        scheduler.update_booking(12345, BookingChanges(purpose="x"), student.id)


# pylint: disable-next=redefined-outer-name
def test_admin_may_update_someone_elses_booking(scheduler, room, student, admin):
    booking = scheduler.create_booking(request_for(room, student, at(10), at(11)))
    updated = scheduler.update_booking(booking.id, BookingChanges(purpose="Moved by office"), admin.id)
    assert updated.purpose == "Moved by office"
    # Priority follows the effective requester
    assert updated.priority == 2


# Cancel

# pylint: disable-next=redefined-outer-name
def test_cancel_booking(scheduler, room, student, notifications):
    booking = scheduler.create_booking(request_for(room, student, at(10), at(11)))
    notifications.events.clear()

    cancelled = scheduler.cancel_booking(booking.id, student.id, "Plans changed")

    assert cancelled.status == BookingStatus.CANCELLED.value
    assert cancelled.cancelled_by == student.id
    assert cancelled.cancelled_at == NOW
    assert cancelled.cancellation_reason == "Plans changed"
    assert [(e.user_id, e.kind) for e in notifications.events] == [(student.id, NotificationKind.CANCELLED)]


# pylint: disable-next=redefined-outer-name
def test_cancel_frees_the_slot(scheduler, room, student, make_user):
    booking = scheduler.create_booking(request_for(room, student, at(10), at(11)))
    scheduler.cancel_booking(booking.id, student.id)
    assert scheduler.create_booking(request_for(room, make_user(), at(10), at(11))).id


# pylint: disable-next=redefined-outer-name
def test_cancel_rules(scheduler, room, student, make_user, make_booking):
    ended = make_booking(room, student, NOW - timedelta(hours=2), NOW - timedelta(hours=1))
    with pytest.raises(ValidationError, match="already completed"):
        scheduler.cancel_booking(ended.id, student.id)

    for status in ("cancelled", "preempted", "completed"):
        booking = make_booking(room, student, at(10), at(11), status=status)
        with pytest.raises(ValidationError, match=status):
            scheduler.cancel_booking(booking.id, student.id)

    live = make_booking(room, student, at(12), at(13))
    with pytest.raises(PermissionDeniedError):
        scheduler.cancel_booking(live.id, make_user().id)


# pylint: disable-next=redefined-outer-name
def test_ongoing_booking_can_be_cancelled(scheduler, room, student, make_booking):
    ongoing = make_booking(room, student, NOW - timedelta(minutes=30), at(9), status="in_use")
    assert scheduler.cancel_booking(ongoing.id, student.id).status == "cancelled"


# pylint: disable-next=redefined-outer-name
def test_cancel_many_reports_failures(scheduler, room, student, make_booking):
    first = make_booking(room, student, at(10), at(11))
    second = make_booking(room, student, at(12), at(13))
    done = make_booking(room, student, at(14), at(15), status="completed")

    result = scheduler.cancel_many([first.id, second.id, done.id, 999], student.id)

    assert result.processed == 2
    assert result.total_requested == 4
    assert len(result.errors) == 2
    assert any(f"#{done.id}" in error for error in result.errors)


# pylint: disable-next=redefined-outer-name
def test_cancellation_stats(scheduler, room, student, make_booking, frozen_clock):
    make_booking(room, student, at(10), at(11))
    for booking_id in (
        make_booking(room, student, at(12), at(13)).id,
        make_booking(room, student, at(14), at(15)).id,
    ):
        scheduler.cancel_booking(booking_id, student.id)
    frozen_clock.advance(days=45)

    stats = scheduler.cancellation_stats(student.id)
    assert (stats.total_bookings, stats.cancelled_bookings, stats.recent_cancellations) == (3, 2, 0)


# Availability

# pylint: disable-next=redefined-outer-name
def test_check_availability_single_capacity(scheduler, room, student, make_booking):
    existing = make_booking(room, student, at(10), at(11), priority=0)

    report = scheduler.check_availability(room.id, at(10, 30), at(11, 30))
    assert not report.available
    assert [b.id for b in report.conflicts] == [existing.id]

    assert scheduler.check_availability(room.id, at(11), at(12)).available
    assert scheduler.check_availability(room.id, at(10), at(11), exclude_booking_id=existing.id).available


# pylint: disable-next=redefined-outer-name
def test_check_availability_multi_capacity(scheduler, make_resource, student, make_booking):
    hall = make_resource(capacity=2)
    make_booking(hall, student, at(10), at(11))

    report = scheduler.check_availability(hall.id, at(10), at(11))
    assert report.available
    assert len(report.conflicts) == 1

    make_booking(hall, student, at(10), at(11))
    report = scheduler.check_availability(hall.id, at(10), at(11))
    assert not report.available
    assert "(2)" in report.message


# pylint: disable-next=redefined-outer-name
def test_check_availability_validates_input(scheduler, room):
    with pytest.raises(ValidationError):
        scheduler.check_availability(room.id, at(11), at(10))
    with pytest.raises(NotFoundError):
        scheduler.check_availability(999, at(10), at(11))
