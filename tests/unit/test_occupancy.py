"""Unit tests for heat map aggregation."""
from datetime import datetime, time, timedelta

import pytest

from classfinder import occupancy
from classfinder.models import Booking, BookingPurpose, BookingStatus, ClassSchedule, RoomStatus
from conftest import NOW, TODAY


def add_booking(db, classroom, user, start, end, status):
    booking = Booking(
        user_id=user.id,
        classroom_id=classroom.id,
        booking_date=TODAY,
        start_time=start,
        end_time=end,
        purpose=BookingPurpose.GROUP_STUDY,
        estimated_attendees=3,
        status=status,
    )
    db.add(booking)
    return booking


@pytest.fixture()
def busy_campus(db_session, seed):
    """GK301 is in class, GK302 has a pending booking, AH201 is under maintenance."""
    db_session.add(
        ClassSchedule(
            classroom_id=seed.room.id,
            subject_code="CCPROG1",
            instructor_name="Prof. Santos",
            days_of_week=[1, 3, 5],
            start_time=time(7, 30),
            end_time=time(9, 0),
            start_date=TODAY - timedelta(days=60),
            end_date=TODAY + timedelta(days=60),
        )
    )
    add_booking(db_session, seed.room, seed.student, time(9, 0), time(10, 0), BookingStatus.CONFIRMED)
    add_booking(db_session, seed.neighbour, seed.classmate, time(8, 0), time(9, 0), BookingStatus.PENDING)
    add_booking(db_session, seed.neighbour, seed.student, time(7, 0), time(8, 0), BookingStatus.CANCELLED)
    seed.annex_room.current_status = RoomStatus.MAINTENANCE
    db_session.commit()
    return seed


class TestClassroomStatus:
    def test_statuses_at_eight(self, db_session, busy_campus):
        rooms = occupancy.classrooms_with_status(db_session, busy_campus.main.id, 3, NOW)
        by_number = {room.room_number: room for room in rooms}

        assert by_number["GK301"].status == "occupied"
        assert by_number["GK301"].occupied_until == time(9, 0)
        assert by_number["GK301"].next_available_at == time(10, 0)
        assert by_number["GK302"].status == "reserved"
        assert by_number["GK302"].is_occupied is True
        assert by_number["GK302"].next_available_at == time(9, 0)

    def test_released_bookings_are_ignored(self, db_session, busy_campus):
        room = occupancy.classroom_with_status(db_session, busy_campus.neighbour.id, datetime.combine(TODAY, time(7, 30)))

        assert room.status == "available"
        assert room.occupied_until is None

    def test_maintenance_wins(self, db_session, busy_campus):
        room = occupancy.classroom_with_status(db_session, busy_campus.annex_room.id, NOW)

        assert room.status == "maintenance"
        assert room.is_occupied is False

    def test_end_of_interval_is_free(self, db_session, busy_campus):
        room = occupancy.classroom_with_status(db_session, busy_campus.neighbour.id, datetime.combine(TODAY, time(9, 0)))

        assert room.status == "available"

    def test_unknown_classroom(self, db_session, seed):
        assert occupancy.classroom_with_status(db_session, 999, NOW) is None


class TestAggregates:
    def test_building_rates(self, db_session, busy_campus):
        buildings = {row.code: row for row in occupancy.building_occupancy(db_session, NOW)}

        main = buildings["GK"]
        assert main.total_classrooms == 2
        assert main.occupied_count == 1
        assert main.reserved_count == 1
        assert main.occupancy_rate == 100.0

        annex = buildings["AH"]
        assert annex.maintenance_count == 1
        assert annex.occupancy_rate == 0.0

    def test_floor_breakdown(self, db_session, busy_campus):
        later = datetime.combine(TODAY, time(9, 30))
        floors = occupancy.floor_occupancy(db_session, busy_campus.main.id, later)

        assert [row.floor for row in floors] == [3]
        assert floors[0].reserved_count == 1
        assert floors[0].available_count == 1
        assert floors[0].occupancy_rate == 50.0

    def test_snapshots_are_cached_until_invalidated(self, db_session, busy_campus):
        before = occupancy.building_occupancy(db_session, NOW)
        add_booking(db_session, busy_campus.annex_room, busy_campus.classmate, time(8, 0), time(9, 0), BookingStatus.CHECKED_IN)
        busy_campus.annex_room.current_status = RoomStatus.AVAILABLE
        db_session.commit()

        assert occupancy.building_occupancy(db_session, NOW) == before

        occupancy.invalidate()
        annex = {row.code: row for row in occupancy.building_occupancy(db_session, NOW)}["AH"]
        assert annex.occupied_count == 1


def test_schedule_merges_classes_and_bookings(db_session, busy_campus):
    events = occupancy.classroom_schedule(db_session, busy_campus.room.id, TODAY)

    assert [(event.event_type, event.start_time) for event in events] == [
        ("class", time(7, 30)),
        ("booking", time(9, 0)),
    ]
    assert events[0].title == "CCPROG1"
    assert events[1].title == "Group Study"
    assert events[1].user_name == "Juan Cruz"
