"""Check-in gate: a pending booking's owner confirms attendance shortly before start."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from .audit import record
from .config import Settings, get_settings
from .errors import Forbidden, NotFound, WindowClosed
from .events import publish_booking_event
from .models import Booking, BookingStatus
from .store import BookingStore

logger = logging.getLogger(__name__)


def checkin_window(booking: Booking, window_minutes: int) -> tuple[datetime, datetime]:
    start = booking.starts_at
    return start - timedelta(minutes=window_minutes), start


class CheckInGate:
    def __init__(self, store: BookingStore, settings: Optional[Settings] = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    def check_in(
        self,
        booking_id: int,
        caller_id: int,
        now: datetime,
        ip_address: Optional[str] = None,
    ) -> Booking:
        booking = self.store.get_booking(booking_id)
        if booking is None:
            raise NotFound("Booking not found", booking_id=booking_id)
        if booking.user_id != caller_id:
            raise Forbidden("Only the booking owner can check in", booking_id=booking_id)
        if booking.status != BookingStatus.PENDING:
            raise Forbidden(
                "Booking is not in pending status",
                booking_id=booking_id,
                status=booking.status.value,
            )

        opens, closes = checkin_window(booking, self.settings.checkin_window_minutes)
        if not opens <= now <= closes:
            raise WindowClosed(
                f"Check-in window is {self.settings.checkin_window_minutes} minutes before start time",
                booking_id=booking_id,
                opens_at=opens.isoformat(),
                closes_at=closes.isoformat(),
            )

        self.store.set_status(booking, BookingStatus.CHECKED_IN, checked_in_at=now)
        record(
            self.store.session,
            "booking_checked_in",
            "booking",
            booking.id,
            user_id=caller_id,
            ip_address=ip_address,
        )
        self.store.commit()
        logger.info("Booking %s checked in by user %s", booking.id, caller_id)
        publish_booking_event("booking_checked_in", booking)
        return booking
