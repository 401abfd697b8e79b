import asyncio
import logging

from sqlalchemy.orm import Session

from resource_booker.db import SessionLocal, atomic, utcnow
from resource_booker.models.booking import Booking, BookingStatus, TERMINAL_STATUSES
from resource_booker.utils.exceptions import BookingError

logger = logging.getLogger(__name__)


class ExpiryReaper:
    """Bulk transitions for bookings whose window has passed."""

    def __init__(self, db: Session, clock=utcnow):
        self.db = db
        self.clock = clock

    def sweep(self) -> int:
        """Expire every non-terminal booking that ended before now.

        A single UPDATE guarded on status, so a repeated or concurrent sweep
        touches no row twice.
        """
        now = self.clock()
        with atomic(self.db, "expiring bookings"):
            count = (
                self.db.query(Booking)
                .filter(
                    Booking.end_time < now,
                    Booking.status.notin_(TERMINAL_STATUSES),
                )
                .update(
                    {Booking.status: BookingStatus.EXPIRED.value, Booking.updated_at: now},
                    synchronize_session=False,
                )
            )
        if count:
            logger.info(f"Marked {count} bookings as expired")
        else:
            logger.debug("No bookings found to mark as expired")
        return count

    def mark_completed(self) -> int:
        """Finalise approved and in-use bookings whose end time has passed."""
        now = self.clock()
        with atomic(self.db, "completing bookings"):
            count = (
                self.db.query(Booking)
                .filter(
                    Booking.end_time < now,
                    Booking.status.in_(
                        [BookingStatus.APPROVED.value, BookingStatus.IN_USE.value]
                    ),
                )
                .update(
                    {Booking.status: BookingStatus.COMPLETED.value, Booking.updated_at: now},
                    synchronize_session=False,
                )
            )
        if count:
            logger.info(f"Marked {count} bookings as completed")
        return count


def run_expiry_sweep(session_factory=SessionLocal, clock=utcnow) -> int:
    db = session_factory()
    try:
        return ExpiryReaper(db, clock).sweep()
    finally:
        db.close()


async def expiry_loop(interval_seconds: int, session_factory=SessionLocal):
    """Run the expiry sweep every ``interval_seconds`` until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(run_expiry_sweep, session_factory)
        except BookingError as exc:
            # Already logged with its traceback; the next tick retries
            logger.error(f"Expiry sweep failed: {exc.message}")
        except Exception:
            logger.exception("Unexpected error in expiry sweep, retrying on the next tick")
