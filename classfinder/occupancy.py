"""Heat map aggregation: live classroom status rolled up per floor and building."""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session, selectinload

from .cache import SimpleTTLCache
from .config import get_settings
from .models import Booking, BookingStatus, Building, ClassSchedule, Classroom, RoomStatus
from .schemas import BuildingOccupancy, ClassroomWithStatus, FloorOccupancy, ScheduleEvent
from .timeslots import campus_weekday

settings = get_settings()
occupancy_cache: SimpleTTLCache[list] = SimpleTTLCache(ttl=settings.occupancy_cache_ttl)

CACHE_PREFIX = "occupancy:"
OCCUPYING = frozenset({BookingStatus.CHECKED_IN})
RESERVING = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})

OCCUPIED = "occupied"
RESERVED = "reserved"
AVAILABLE = "available"
MAINTENANCE = "maintenance"


@dataclass(frozen=True)
class BusyInterval:
    start_time: time
    end_time: time
    kind: str


def invalidate() -> None:
    """Drop every cached snapshot; called whenever a booking or room changes."""

    occupancy_cache.invalidate_prefix(CACHE_PREFIX)


def _cache_key(scope: str, at: datetime) -> str:
    return f"{CACHE_PREFIX}{scope}:{at.strftime('%Y-%m-%dT%H:%M')}"


def _busy_intervals(db: Session, classroom_ids: Sequence[int], on: date) -> Dict[int, List[BusyInterval]]:
    busy: Dict[int, List[BusyInterval]] = defaultdict(list)
    if not classroom_ids:
        return busy

    bookings = (
        db.query(Booking)
        .filter(
            Booking.classroom_id.in_(classroom_ids),
            Booking.booking_date == on,
            Booking.status.in_(list(OCCUPYING | RESERVING)),
        )
        .all()
    )
    for booking in bookings:
        kind = OCCUPIED if booking.status in OCCUPYING else RESERVED
        busy[booking.classroom_id].append(BusyInterval(booking.start_time, booking.end_time, kind))

    weekday = campus_weekday(on)
    schedules = (
        db.query(ClassSchedule)
        .filter(
            ClassSchedule.classroom_id.in_(classroom_ids),
            ClassSchedule.start_date <= on,
            ClassSchedule.end_date >= on,
        )
        .all()
    )
    for schedule in schedules:
        if weekday in (schedule.days_of_week or []):
            busy[schedule.classroom_id].append(BusyInterval(schedule.start_time, schedule.end_time, OCCUPIED))
    return busy


def _next_free(intervals: Iterable[BusyInterval], moment: time) -> Optional[time]:
    """End of the contiguous run of busy intervals covering ``moment``."""

    intervals = list(intervals)
    cursor: Optional[time] = None
    instant = moment
    while True:
        covering = [interval.end_time for interval in intervals if interval.start_time <= instant < interval.end_time]
        if not covering:
            return cursor
        cursor = max(covering)
        instant = cursor


def classroom_status(classroom: Classroom, intervals: Sequence[BusyInterval], at: datetime) -> ClassroomWithStatus:
    moment = at.time().replace(second=0, microsecond=0)
    covering = [interval for interval in intervals if interval.start_time <= moment < interval.end_time]

    occupied_until = None
    next_available_at = None
    if classroom.current_status == RoomStatus.MAINTENANCE:
        status = MAINTENANCE
    elif any(interval.kind == OCCUPIED for interval in covering):
        status = OCCUPIED
    elif covering:
        status = RESERVED
    else:
        status = AVAILABLE
    if status in (OCCUPIED, RESERVED):
        occupied_until = max(interval.end_time for interval in covering)
        next_available_at = _next_free(intervals, moment)

    return ClassroomWithStatus(
        id=classroom.id,
        room_number=classroom.room_number,
        floor=classroom.floor,
        capacity=classroom.capacity,
        amenities=list(classroom.amenities or []),
        is_occupied=status in (OCCUPIED, RESERVED),
        status=status,
        occupied_until=occupied_until,
        next_available_at=next_available_at,
    )


def _statuses(db: Session, classrooms: Sequence[Classroom], at: datetime) -> List[ClassroomWithStatus]:
    busy = _busy_intervals(db, [room.id for room in classrooms], at.date())
    return [classroom_status(room, busy.get(room.id, []), at) for room in classrooms]


def _rate(counts: Dict[str, int]) -> float:
    usable = counts[OCCUPIED] + counts[RESERVED] + counts[AVAILABLE]
    if not usable:
        return 0.0
    return round((counts[OCCUPIED] + counts[RESERVED]) * 100 / usable, 1)


def _tally(rooms: Iterable[ClassroomWithStatus]) -> Dict[str, int]:
    counts = {OCCUPIED: 0, RESERVED: 0, AVAILABLE: 0, MAINTENANCE: 0}
    for room in rooms:
        counts[room.status] += 1
    return counts


def building_occupancy(db: Session, at: datetime) -> List[BuildingOccupancy]:
    def compute() -> List[BuildingOccupancy]:
        buildings = db.query(Building).options(selectinload(Building.classrooms)).order_by(Building.name).all()
        result = []
        for building in buildings:
            counts = _tally(_statuses(db, building.classrooms, at))
            result.append(
                BuildingOccupancy(
                    id=building.id,
                    name=building.name,
                    code=building.code,
                    total_classrooms=len(building.classrooms),
                    occupied_count=counts[OCCUPIED],
                    reserved_count=counts[RESERVED],
                    available_count=counts[AVAILABLE],
                    maintenance_count=counts[MAINTENANCE],
                    occupancy_rate=_rate(counts),
                )
            )
        return result

    return occupancy_cache.get_or_set(_cache_key("buildings", at), compute)


def floor_occupancy(db: Session, building_id: int, at: datetime) -> List[FloorOccupancy]:
    def compute() -> List[FloorOccupancy]:
        classrooms = db.query(Classroom).filter(Classroom.building_id == building_id).all()
        by_floor: Dict[int, List[ClassroomWithStatus]] = defaultdict(list)
        for room in _statuses(db, classrooms, at):
            by_floor[room.floor].append(room)
        result = []
        for floor in sorted(by_floor):
            counts = _tally(by_floor[floor])
            result.append(
                FloorOccupancy(
                    floor=floor,
                    total_classrooms=len(by_floor[floor]),
                    occupied_count=counts[OCCUPIED],
                    reserved_count=counts[RESERVED],
                    available_count=counts[AVAILABLE],
                    maintenance_count=counts[MAINTENANCE],
                    occupancy_rate=_rate(counts),
                )
            )
        return result

    return occupancy_cache.get_or_set(_cache_key(f"floors:{building_id}", at), compute)


def classrooms_with_status(db: Session, building_id: int, floor: int, at: datetime) -> List[ClassroomWithStatus]:
    def compute() -> List[ClassroomWithStatus]:
        classrooms = (
            db.query(Classroom)
            .filter(Classroom.building_id == building_id, Classroom.floor == floor)
            .order_by(Classroom.room_number)
            .all()
        )
        return _statuses(db, classrooms, at)

    return occupancy_cache.get_or_set(_cache_key(f"classrooms:{building_id}:{floor}", at), compute)


def classroom_with_status(db: Session, classroom_id: int, at: datetime) -> Optional[ClassroomWithStatus]:
    classroom = db.get(Classroom, classroom_id)
    if classroom is None:
        return None
    for room in classrooms_with_status(db, classroom.building_id, classroom.floor, at):
        if room.id == classroom_id:
            return room
    return None


def classroom_schedule(db: Session, classroom_id: int, on: date) -> List[ScheduleEvent]:
    events: List[ScheduleEvent] = []
    bookings = (
        db.query(Booking)
        .options(selectinload(Booking.user))
        .filter(
            Booking.classroom_id == classroom_id,
            Booking.booking_date == on,
            Booking.status.in_([BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN, BookingStatus.COMPLETED]),
        )
        .all()
    )
    for booking in bookings:
        events.append(
            ScheduleEvent(
                event_type="booking",
                start_time=booking.start_time,
                end_time=booking.end_time,
                title=booking.purpose.value.replace("_", " ").title(),
                status=booking.status.value,
                user_name=booking.user.name if booking.user else None,
            )
        )

    weekday = campus_weekday(on)
    schedules = (
        db.query(ClassSchedule)
        .filter(
            ClassSchedule.classroom_id == classroom_id,
            ClassSchedule.start_date <= on,
            ClassSchedule.end_date >= on,
        )
        .all()
    )
    for schedule in schedules:
        if weekday in (schedule.days_of_week or []):
            events.append(
                ScheduleEvent(
                    event_type="class",
                    start_time=schedule.start_time,
                    end_time=schedule.end_time,
                    title=schedule.subject_code,
                    status="scheduled",
                    user_name=schedule.instructor_name,
                )
            )
    return sorted(events, key=lambda event: event.start_time)
