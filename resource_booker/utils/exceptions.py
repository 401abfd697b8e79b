"""
Typed rejections raised by the scheduler.

Business-rule failures (validation, not found, permission, conflict) are
decisions, never retried. InfrastructureError wraps storage failures and lock
timeouts after the enclosing transaction has been rolled back.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class BookingError(Exception):
    """Base exception for all scheduler rejections."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.code = self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationError(BookingError):
    """Bad interval, duration out of bounds, quota exceeded, illegal transition."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(BookingError):
    status_code = status.HTTP_404_NOT_FOUND


class PermissionDeniedError(BookingError):
    status_code = status.HTTP_403_FORBIDDEN


class ConflictError(BookingError):
    """Admission rejected; details carry the blocking bookings."""

    status_code = status.HTTP_409_CONFLICT


class InfrastructureError(BookingError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
