"""Typed failures raised by booking admission, check-in and lifecycle operations.

Every failure names the rule that rejected the request and carries structured
context (for conflicts, the interval that was hit) so callers can render an
exact message. ``retryable`` is only true for ``TransientStoreFailure``.
"""
from __future__ import annotations

from datetime import date, time
from typing import Any, Dict, Optional


class BookingError(Exception):
    kind = "booking_error"
    status_code = 400
    retryable = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detail": self.message,
            "error": self.kind,
            "retryable": self.retryable,
            "context": self.context,
        }


class AdmissionError(BookingError):
    """A booking request was not admitted."""


class CheckInError(BookingError):
    """A check-in attempt was refused."""


class InvalidDate(AdmissionError):
    kind = "invalid_date"


class InvalidDuration(AdmissionError):
    kind = "invalid_duration"


class InvalidAttendeeCount(AdmissionError):
    kind = "invalid_attendee_count"


class QuotaExceeded(AdmissionError):
    kind = "quota_exceeded"


class SlotConflict(AdmissionError):
    kind = "slot_conflict"
    status_code = 409

    def __init__(
        self,
        message: str,
        *,
        booking_id: Optional[int] = None,
        booking_date: Optional[date] = None,
        start_time: Optional[time] = None,
        end_time: Optional[time] = None,
    ) -> None:
        super().__init__(
            message,
            conflicting_booking_id=booking_id,
            conflicting_interval=_interval(booking_date, start_time, end_time),
        )


class ScheduleConflict(AdmissionError):
    kind = "schedule_conflict"
    status_code = 409

    def __init__(
        self,
        message: str,
        *,
        schedule_id: int,
        subject_code: str,
        start_time: time,
        end_time: time,
    ) -> None:
        super().__init__(
            message,
            schedule_id=schedule_id,
            subject_code=subject_code,
            conflicting_interval=_interval(None, start_time, end_time),
        )


class NotFound(AdmissionError, CheckInError):
    kind = "not_found"
    status_code = 404


class Forbidden(CheckInError):
    kind = "forbidden"
    status_code = 403


class WindowClosed(CheckInError):
    kind = "window_closed"


class TransientStoreFailure(AdmissionError, CheckInError):
    kind = "transient_store_failure"
    status_code = 503
    retryable = True


def _interval(on: Optional[date], start: Optional[time], end: Optional[time]) -> Optional[Dict[str, str]]:
    if start is None or end is None:
        return None
    interval = {"start_time": start.strftime("%H:%M"), "end_time": end.strftime("%H:%M")}
    if on is not None:
        interval["date"] = on.isoformat()
    return interval
