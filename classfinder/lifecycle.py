"""Booking status transitions outside admission and check-in."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_

from .audit import booking_details, record
from .errors import Forbidden, NotFound
from .events import publish_booking_event
from .models import Booking, BookingStatus, Classroom, RoleEnum, User
from .store import BookingStore

logger = logging.getLogger(__name__)

CANCELLABLE = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})


def can_moderate(user: User, classroom: Classroom) -> bool:
    if user.role == RoleEnum.ADMIN:
        return True
    if user.role != RoleEnum.MANAGER:
        return False
    return any(building.id == classroom.building_id for building in user.assigned_buildings)


def _load(store: BookingStore, booking_id: int) -> Booking:
    booking = store.get_booking(booking_id)
    if booking is None:
        raise NotFound("Booking not found", booking_id=booking_id)
    return booking


def _moderate(store: BookingStore, booking_id: int, manager: User, target: BookingStatus, details: dict) -> Booking:
    booking = _load(store, booking_id)
    if not can_moderate(manager, booking.classroom):
        raise Forbidden("Booking is outside your assigned buildings", booking_id=booking_id)
    if booking.status != BookingStatus.PENDING:
        raise Forbidden("Booking is not in pending status", booking_id=booking_id, status=booking.status.value)
    store.set_status(booking, target)
    action = "booking_approved" if target == BookingStatus.CONFIRMED else "booking_rejected"
    record(store.session, action, "booking", booking.id, user_id=manager.id, details=details)
    store.commit()
    logger.info("Booking %s %s by manager %s", booking.id, target.value, manager.id)
    publish_booking_event(action, booking)
    return booking


def confirm_booking(store: BookingStore, booking_id: int, manager: User) -> Booking:
    return _moderate(store, booking_id, manager, BookingStatus.CONFIRMED, {})


def reject_booking(store: BookingStore, booking_id: int, manager: User, reason: Optional[str] = None) -> Booking:
    return _moderate(store, booking_id, manager, BookingStatus.REJECTED, {"reason": reason})


def cancel_booking(store: BookingStore, booking_id: int, caller_id: int, ip_address: Optional[str] = None) -> Booking:
    booking = _load(store, booking_id)
    if booking.user_id != caller_id:
        raise Forbidden("Only the booking owner can cancel", booking_id=booking_id)
    if booking.status not in CANCELLABLE:
        raise Forbidden("Booking can no longer be cancelled", booking_id=booking_id, status=booking.status.value)
    store.set_status(booking, BookingStatus.CANCELLED)
    record(
        store.session,
        "booking_cancelled",
        "booking",
        booking.id,
        user_id=caller_id,
        details=booking_details(booking),
        ip_address=ip_address,
    )
    store.commit()
    publish_booking_event("booking_cancelled", booking)
    return booking


def expire_unclaimed_bookings(store: BookingStore, now: datetime) -> List[Booking]:
    """Auto-cancel pending bookings whose start passed without a check-in."""

    candidates = (
        store.session.query(Booking)
        .filter(Booking.status == BookingStatus.PENDING, Booking.booking_date <= now.date())
        .all()
    )
    expired = [booking for booking in candidates if booking.starts_at < now]
    for booking in expired:
        store.set_status(booking, BookingStatus.AUTO_CANCELLED)
        record(store.session, "booking_auto_cancelled", "booking", booking.id, details={"reason": "no check-in"})
    store.commit()
    for booking in expired:
        publish_booking_event("booking_auto_cancelled", booking)
    if expired:
        logger.info("Auto-cancelled %d unclaimed bookings", len(expired))
    return expired


def complete_finished_bookings(store: BookingStore, now: datetime) -> List[Booking]:
    candidates = (
        store.session.query(Booking)
        .filter(
            or_(Booking.status == BookingStatus.CHECKED_IN, Booking.status == BookingStatus.CONFIRMED),
            Booking.booking_date <= now.date(),
        )
        .all()
    )
    finished = [booking for booking in candidates if booking.ends_at <= now]
    for booking in finished:
        store.set_status(booking, BookingStatus.COMPLETED)
        record(store.session, "booking_completed", "booking", booking.id)
    store.commit()
    for booking in finished:
        publish_booking_event("booking_completed", booking)
    return finished
