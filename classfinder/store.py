"""Storage collaborator used by the admission controller and check-in gate."""
from __future__ import annotations

import logging
from datetime import date, datetime
from functools import wraps
from typing import Callable, Iterable, List, Optional, Set, TypeVar

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from .config import get_settings
from .errors import QuotaExceeded, SlotConflict, TransientStoreFailure
from .models import (
    QUOTA_STATUSES,
    RELEASED_STATUSES,
    Booking,
    BookingQuotaClaim,
    BookingSlotClaim,
    BookingStatus,
    ClassSchedule,
    Classroom,
)
from .schemas import BookingCreate
from .timeslots import campus_weekday, claimed_minutes, first_overlap

logger = logging.getLogger(__name__)
settings = get_settings()

F = TypeVar("F", bound=Callable)

_TRANSIENT_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError)


def _store_call(method: F) -> F:
    """Translate connectivity failures into ``TransientStoreFailure``."""

    @wraps(method)
    def wrapper(self: "BookingStore", *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except _TRANSIENT_ERRORS as exc:
            logger.warning("Store call %s failed: %s", method.__name__, exc)
            self.session.rollback()
            raise TransientStoreFailure(
                "The booking store is temporarily unavailable, please retry",
                operation=method.__name__,
                retry_after=settings.store_retry_after,
            ) from exc

    return wrapper  # type: ignore[return-value]


class BookingStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    @_store_call
    def get_classroom(self, classroom_id: int) -> Optional[Classroom]:
        return self.session.get(Classroom, classroom_id)

    @_store_call
    def get_booking(self, booking_id: int) -> Optional[Booking]:
        return self.session.get(Booking, booking_id)

    @_store_call
    def count_user_bookings(
        self, user_id: int, on: date, statuses: Iterable[BookingStatus] = QUOTA_STATUSES
    ) -> int:
        return (
            self.session.query(func.count(Booking.id))
            .filter(
                Booking.user_id == user_id,
                Booking.booking_date == on,
                Booking.status.in_(list(statuses)),
            )
            .scalar()
        )

    @_store_call
    def room_bookings(
        self, classroom_id: int, on: date, exclude_statuses: Iterable[BookingStatus] = RELEASED_STATUSES
    ) -> List[Booking]:
        return (
            self.session.query(Booking)
            .filter(
                Booking.classroom_id == classroom_id,
                Booking.booking_date == on,
                Booking.status.not_in(list(exclude_statuses)),
            )
            .order_by(Booking.start_time)
            .all()
        )

    @_store_call
    def room_schedules(self, classroom_id: int, on: date) -> List[ClassSchedule]:
        candidates = (
            self.session.query(ClassSchedule)
            .filter(
                ClassSchedule.classroom_id == classroom_id,
                ClassSchedule.start_date <= on,
                ClassSchedule.end_date >= on,
            )
            .order_by(ClassSchedule.start_time)
            .all()
        )
        weekday = campus_weekday(on)
        return [schedule for schedule in candidates if weekday in (schedule.days_of_week or [])]

    @_store_call
    def room_schedules_between(self, classroom_id: int, start: date, end: date) -> List[ClassSchedule]:
        return (
            self.session.query(ClassSchedule)
            .filter(
                ClassSchedule.classroom_id == classroom_id,
                ClassSchedule.start_date <= end,
                ClassSchedule.end_date >= start,
            )
            .order_by(ClassSchedule.start_time)
            .all()
        )

    @_store_call
    def room_bookings_between(
        self, classroom_id: int, start: date, end: date, exclude_statuses: Iterable[BookingStatus] = RELEASED_STATUSES
    ) -> List[Booking]:
        return (
            self.session.query(Booking)
            .filter(
                Booking.classroom_id == classroom_id,
                Booking.booking_date >= start,
                Booking.booking_date <= end,
                Booking.status.not_in(list(exclude_statuses)),
            )
            .order_by(Booking.booking_date, Booking.start_time)
            .all()
        )

    @_store_call
    def held_quota_positions(self, user_id: int, on: date) -> Set[int]:
        rows = (
            self.session.query(BookingQuotaClaim.position)
            .filter(BookingQuotaClaim.user_id == user_id, BookingQuotaClaim.booking_date == on)
            .all()
        )
        return {position for (position,) in rows}

    @_store_call
    def insert_pending_booking(self, user_id: int, request: BookingCreate, quota: Optional[int] = None) -> Booking:
        """Insert a pending booking with its slot claims and a quota position.

        Positions ``0..quota-1`` are unique per user and day, so two
        concurrent requests from the same user cannot both take the last one.
        """
        if quota is None:
            quota = settings.daily_booking_quota
        free = sorted(set(range(quota)) - self.held_quota_positions(user_id, request.booking_date))
        if not free:
            raise self._quota_exceeded(user_id, request.booking_date, quota)
        booking = Booking(
            user_id=user_id,
            classroom_id=request.classroom_id,
            booking_date=request.booking_date,
            start_time=request.start_time,
            end_time=request.end_time,
            purpose=request.purpose,
            purpose_details=request.purpose_details,
            estimated_attendees=request.estimated_attendees,
            status=BookingStatus.PENDING,
        )
        booking.slot_claims = [
            BookingSlotClaim(classroom_id=request.classroom_id, booking_date=request.booking_date, minute=minute)
            for minute in claimed_minutes(request.start_time, request.end_time)
        ]
        booking.quota_claim = BookingQuotaClaim(user_id=user_id, booking_date=request.booking_date, position=free[0])
        self.session.add(booking)
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            winner = first_overlap(
                request.start_time,
                request.end_time,
                self.room_bookings(request.classroom_id, request.booking_date),
            )
            if winner is None:
                if self.count_user_bookings(user_id, request.booking_date) >= quota:
                    logger.info("Concurrent booking took user %s's last slot on %s", user_id, request.booking_date)
                    raise self._quota_exceeded(user_id, request.booking_date, quota) from exc
                raise
            logger.info(
                "Concurrent booking %s won room %s on %s", winner.id, request.classroom_id, request.booking_date
            )
            raise SlotConflict(
                "Time slot conflicts with existing booking",
                booking_id=winner.id,
                booking_date=winner.booking_date,
                start_time=winner.start_time,
                end_time=winner.end_time,
            ) from exc
        return booking

    def _quota_exceeded(self, user_id: int, on: date, quota: int) -> QuotaExceeded:
        return QuotaExceeded(
            f"Daily booking limit reached ({quota} bookings per day)",
            booking_date=on.isoformat(),
            active_bookings=self.count_user_bookings(user_id, on),
        )

    @_store_call
    def set_status(
        self, booking: Booking, status: BookingStatus, checked_in_at: Optional[datetime] = None
    ) -> Booking:
        booking.status = status
        booking.updated_at = datetime.utcnow()
        if checked_in_at is not None:
            booking.checked_in_at = checked_in_at
        if status in RELEASED_STATUSES:
            booking.slot_claims.clear()
        if status not in QUOTA_STATUSES:
            booking.quota_claim = None
        self.session.flush()
        return booking

    @_store_call
    def commit(self) -> None:
        self.session.commit()
