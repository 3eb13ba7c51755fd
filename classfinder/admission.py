"""Booking admission control.

A request is admitted only if it passes, in order: attendee and room checks,
the booking window, the duration bounds, the per-day quota, the room's
existing bookings and the room's class schedule. The first failing rule
raises its own ``AdmissionError`` subclass and nothing is written.

On success exactly one ``pending`` booking is inserted together with its
per-minute slot claims, a quota position and a ``booking_created`` audit row.
The unique keys on those claims reject a concurrent insert that slipped past
the overlap or quota check, which surfaces as the same ``SlotConflict`` or
``QuotaExceeded`` a sequential request gets.
"""
from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Optional

from .audit import booking_details, record
from .config import Settings, get_settings
from .errors import (
    InvalidAttendeeCount,
    InvalidDate,
    InvalidDuration,
    NotFound,
    QuotaExceeded,
    ScheduleConflict,
    SlotConflict,
)
from .events import publish_booking_event
from .models import Booking
from .schemas import BookingCreate, ClassScheduleCreate
from .store import BookingStore
from .timeslots import campus_weekday, duration_minutes, first_overlap, overlaps

logger = logging.getLogger(__name__)


class BookingAdmissionController:
    def __init__(self, store: BookingStore, settings: Optional[Settings] = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    def create_booking(
        self,
        request: BookingCreate,
        user_id: int,
        today: date,
        ip_address: Optional[str] = None,
    ) -> Booking:
        self.validate(request, user_id, today)
        booking = self.store.insert_pending_booking(user_id, request, quota=self.settings.daily_booking_quota)
        record(
            self.store.session,
            "booking_created",
            "booking",
            booking.id,
            user_id=user_id,
            details=booking_details(booking),
            ip_address=ip_address,
        )
        self.store.commit()
        logger.info("Admitted booking %s for user %s in room %s", booking.id, user_id, booking.classroom_id)
        publish_booking_event("booking_created", booking)
        return booking

    def validate(self, request: BookingCreate, user_id: int, today: date) -> None:
        """Run every admission rule without writing anything."""

        self.check_request(request, today)
        self.check_quota(user_id, request.booking_date)
        self.check_availability(request)

    def check_request(self, request: BookingCreate, today: date) -> None:
        if request.estimated_attendees < self.settings.min_attendees:
            raise InvalidAttendeeCount(
                f"Classrooms are booked for groups of at least {self.settings.min_attendees}",
                estimated_attendees=request.estimated_attendees,
                minimum=self.settings.min_attendees,
            )
        if self.store.get_classroom(request.classroom_id) is None:
            raise NotFound("Classroom not found", classroom_id=request.classroom_id)

        latest = today + timedelta(days=self.settings.max_advance_days)
        if request.booking_date < today:
            raise InvalidDate(
                "Cannot book a date in the past",
                booking_date=request.booking_date.isoformat(),
                earliest=today.isoformat(),
            )
        if request.booking_date > latest:
            raise InvalidDate(
                f"Cannot book more than {self.settings.max_advance_days} days in advance",
                booking_date=request.booking_date.isoformat(),
                latest=latest.isoformat(),
            )

        minutes = duration_minutes(request.start_time, request.end_time)
        if minutes <= 0:
            raise InvalidDuration("End time must be after start time", duration_minutes=minutes)
        if minutes < self.settings.min_booking_minutes:
            raise InvalidDuration(
                f"Minimum booking duration is {self.settings.min_booking_minutes} minutes",
                duration_minutes=minutes,
            )
        if minutes > self.settings.max_booking_minutes:
            raise InvalidDuration(
                f"Maximum booking duration is {self.settings.max_booking_minutes // 60} hours",
                duration_minutes=minutes,
            )

    def check_quota(self, user_id: int, on: date) -> None:
        held = self.store.count_user_bookings(user_id, on)
        if held >= self.settings.daily_booking_quota:
            raise QuotaExceeded(
                f"Daily booking limit reached ({self.settings.daily_booking_quota} bookings per day)",
                booking_date=on.isoformat(),
                active_bookings=held,
            )

    def check_availability(self, request: BookingCreate) -> None:
        clash = first_overlap(
            request.start_time,
            request.end_time,
            self.store.room_bookings(request.classroom_id, request.booking_date),
        )
        if clash is not None:
            raise SlotConflict(
                "Time slot conflicts with existing booking",
                booking_id=clash.id,
                booking_date=clash.booking_date,
                start_time=clash.start_time,
                end_time=clash.end_time,
            )

        lecture = first_overlap(
            request.start_time,
            request.end_time,
            self.store.room_schedules(request.classroom_id, request.booking_date),
        )
        if lecture is not None:
            raise ScheduleConflict(
                "Time slot conflicts with scheduled class",
                schedule_id=lecture.id,
                subject_code=lecture.subject_code,
                start_time=lecture.start_time,
                end_time=lecture.end_time,
            )


def check_schedule_fits(store: BookingStore, schedule_in: ClassScheduleCreate) -> None:
    """Reject a class schedule that would overlap a class or booking already in the room.

    Only occurrences inside both validity ranges and on a shared weekday count.
    """
    days = set(schedule_in.days_of_week)
    for schedule in store.room_schedules_between(schedule_in.classroom_id, schedule_in.start_date, schedule_in.end_date):
        if not days.intersection(schedule.days_of_week or []):
            continue
        if overlaps(schedule_in.start_time, schedule_in.end_time, schedule.start_time, schedule.end_time):
            raise ScheduleConflict(
                "Class schedule overlaps an existing class",
                schedule_id=schedule.id,
                subject_code=schedule.subject_code,
                start_time=schedule.start_time,
                end_time=schedule.end_time,
            )

    for booking in store.room_bookings_between(schedule_in.classroom_id, schedule_in.start_date, schedule_in.end_date):
        if campus_weekday(booking.booking_date) not in days:
            continue
        if overlaps(schedule_in.start_time, schedule_in.end_time, booking.start_time, booking.end_time):
            raise SlotConflict(
                "Class schedule overlaps an existing booking",
                booking_id=booking.id,
                booking_date=booking.booking_date,
                start_time=booking.start_time,
                end_time=booking.end_time,
            )
