import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Protocol

logger = logging.getLogger(__name__)


class NotificationKind(str, enum.Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    PREEMPTED = "preempted"
    CANCELLED = "cancelled"


@dataclass
class NotificationEvent:
    user_id: int
    kind: NotificationKind
    payload: Dict[str, Any] = field(default_factory=dict)


class NotificationSink(Protocol):
    def notify(self, user_id: int, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        ...


class LoggingNotificationSink:
    """Default sink; delivery is handled by whatever consumes the log."""

    def notify(self, user_id, kind, payload):
        logger.info(f"Notify user {user_id}: booking {kind.value} {payload}")


class RecordingNotificationSink:
    """Keeps every event in memory, in emission order."""

    def __init__(self):
        self.events: List[NotificationEvent] = []

    def notify(self, user_id, kind, payload):
        self.events.append(NotificationEvent(user_id=user_id, kind=kind, payload=payload))


def booking_payload(booking, **extra) -> Dict[str, Any]:
    payload = {
        "booking_id": booking.id,
        "booking_reference": booking.booking_reference,
        "resource_id": booking.resource_id,
        "start_time": booking.start_time.isoformat(),
        "end_time": booking.end_time.isoformat(),
        "status": booking.status,
    }
    payload.update(extra)
    return payload


def dispatch(sink: NotificationSink, events: Iterable[NotificationEvent]) -> int:
    """Send committed events, one attempt each. Failures are logged, never raised."""
    delivered = 0
    for event in events:
        try:
            sink.notify(event.user_id, event.kind, event.payload)
            delivered += 1
        except Exception:
            logger.exception(
                f"Failed to deliver {event.kind.value} notification to user {event.user_id}"
            )
    return delivered
