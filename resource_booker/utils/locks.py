import logging
import threading
import weakref
from contextlib import contextmanager
from typing import Iterator

from resource_booker.config import LOCK_TIMEOUT_SECONDS
from resource_booker.utils.exceptions import InfrastructureError

logger = logging.getLogger(__name__)

# An entry lives only while some caller holds or waits on its lock
_RESOURCE_LOCKS: "weakref.WeakValueDictionary[int, threading.Lock]" = weakref.WeakValueDictionary()
_RESOURCE_LOCKS_GUARD = threading.Lock()


def _lock_for(resource_id: int) -> threading.Lock:
    with _RESOURCE_LOCKS_GUARD:
        lock = _RESOURCE_LOCKS.get(resource_id)
        if lock is None:
            lock = threading.Lock()
            _RESOURCE_LOCKS[resource_id] = lock
        return lock


@contextmanager
def resource_lock(resource_id: int, timeout: float = LOCK_TIMEOUT_SECONDS) -> Iterator[None]:
    """Serialise admissions on one resource within this process.

    Backends with row locks are additionally serialised by the
    ``SELECT ... FOR UPDATE`` on the resource row taken inside the transaction.
    """
    lock = _lock_for(resource_id)
    if not lock.acquire(timeout=timeout):
        logger.error(f"Timed out after {timeout}s waiting for resource lock {resource_id}")
        raise InfrastructureError(
            "Timed out waiting for the resource to become available for scheduling.",
            {"resource_id": resource_id},
        )
    try:
        yield
    finally:
        lock.release()
