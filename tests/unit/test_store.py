"""Unit tests for the booking store's failure translation."""
from datetime import date
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from classfinder.admission import BookingAdmissionController
from classfinder.checkin import CheckInGate
from classfinder.errors import AdmissionError, CheckInError, TransientStoreFailure
from classfinder.schemas import BookingCreate
from classfinder.store import BookingStore
from conftest import NOW, TODAY


def broken_session() -> MagicMock:
    session = MagicMock()
    session.get.side_effect = OperationalError("SELECT 1", {}, Exception("server closed the connection"))
    session.query.side_effect = OperationalError("SELECT 1", {}, Exception("server closed the connection"))
    return session


def test_connectivity_errors_become_transient_failures():
    session = broken_session()
    store = BookingStore(session)

    with pytest.raises(TransientStoreFailure) as excinfo:
        store.get_classroom(1)

    assert excinfo.value.retryable is True
    assert excinfo.value.context["operation"] == "get_classroom"
    session.rollback.assert_called_once()


def test_admission_surfaces_transient_failure():
    request = BookingCreate(
        classroom_id=1,
        booking_date=TODAY,
        start_time="09:00",
        end_time="10:00",
        purpose="group_study",
        estimated_attendees=3,
    )
    controller = BookingAdmissionController(BookingStore(broken_session()))

    with pytest.raises(AdmissionError) as excinfo:
        controller.create_booking(request, user_id=1, today=TODAY)
    assert isinstance(excinfo.value, TransientStoreFailure)


def test_check_in_surfaces_transient_failure():
    gate = CheckInGate(BookingStore(broken_session()))

    with pytest.raises(CheckInError) as excinfo:
        gate.check_in(1, caller_id=1, now=NOW)
    assert excinfo.value.retryable is True


def test_counting_failure_is_transient():
    store = BookingStore(broken_session())
    with pytest.raises(TransientStoreFailure):
        store.count_user_bookings(1, date(2030, 3, 4))


def test_integrity_error_without_overlap_is_not_masked(db_session, seed):
    """A unique violation that no overlapping booking explains is re-raised as is."""
    store = BookingStore(db_session)
    request = BookingCreate(
        classroom_id=seed.room.id,
        booking_date=TODAY,
        start_time="09:00",
        end_time="10:00",
        purpose="group_study",
        estimated_attendees=3,
    )
    original_flush = db_session.flush
    calls = []

    def failing_flush(*args, **kwargs):
        if not calls:
            calls.append(1)
            raise IntegrityError("INSERT", {}, Exception("uq_booking_slot_claim"))
        return original_flush(*args, **kwargs)

    db_session.flush = failing_flush
    with pytest.raises(IntegrityError):
        store.insert_pending_booking(seed.student.id, request)
