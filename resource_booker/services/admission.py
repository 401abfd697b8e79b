from dataclasses import dataclass, field
from typing import List, Optional, Sequence
from resource_booker.models.booking import Booking


@dataclass
class AdmissionDecision:
    accepted: bool
    to_preempt: List[Booking] = field(default_factory=list)
    blocking: List[Booking] = field(default_factory=list)
    reason: Optional[str] = None


def decide(capacity: int, new_priority: int, conflicts: Sequence[Booking]) -> AdmissionDecision:
    """
    Decide whether a booking of ``new_priority`` fits next to ``conflicts``.

    A conflict can be preempted only by a strictly higher priority, so the
    incumbent wins ties. Blocking conflicts plus the newcomer must fit in the
    capacity. When admitted, every preemptable conflict is bumped, not just
    the minimum needed to make room.
    """
    preemptable = [c for c in conflicts if c.priority < new_priority]
    blocking = [c for c in conflicts if c.priority >= new_priority]

    if capacity == 1:
        if blocking:
            return AdmissionDecision(
                accepted=False,
                blocking=blocking,
                reason="The resource is not available due to a higher or equal priority booking.",
            )
    elif len(blocking) + 1 > capacity:
        return AdmissionDecision(
            accepted=False,
            blocking=blocking,
            reason=(
                f"Resource capacity ({capacity}) is fully booked by higher or equal "
                "priority bookings."
            ),
        )

    return AdmissionDecision(accepted=True, to_preempt=preemptable, blocking=blocking)
