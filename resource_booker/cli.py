"""Maintenance commands, meant to be run from cron or by hand.

    python -m resource_booker.cli mark-expired
    python -m resource_booker.cli mark-completed
    python -m resource_booker.cli init-db
"""

import argparse
import logging
import sys

from resource_booker.config import LOG_LEVEL
from resource_booker.db import SessionLocal, init_database
from resource_booker.services.reaper import ExpiryReaper
from resource_booker.utils.exceptions import BookingError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="resource_booker", description=__doc__.splitlines()[0])
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("mark-expired", help="Expire bookings whose end time has passed.")
    sub.add_parser("mark-completed", help="Complete approved/in-use bookings that have ended.")
    sub.add_parser("init-db", help="Create the database tables.")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=LOG_LEVEL)

    if args.command == "init-db":
        init_database()
        print("Database initialised.")
        return 0

    db = SessionLocal()
    try:
        reaper = ExpiryReaper(db)
        if args.command == "mark-expired":
            count = reaper.sweep()
            print(f"Successfully marked {count} bookings as expired.")
        else:
            count = reaper.mark_completed()
            print(f"Successfully marked {count} bookings as completed.")
    except BookingError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
