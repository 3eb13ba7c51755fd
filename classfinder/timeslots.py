"""Wall-clock interval helpers."""
from datetime import date, time
from typing import Iterable, Optional, Protocol, TypeVar


class TimeRange(Protocol):
    start_time: time
    end_time: time


R = TypeVar("R", bound=TimeRange)


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def duration_minutes(start: time, end: time) -> int:
    return to_minutes(end) - to_minutes(start)


def overlaps(start: time, end: time, other_start: time, other_end: time) -> bool:
    """Half-open overlap: intervals that only touch at an endpoint do not overlap."""

    return start < other_end and end > other_start


def first_overlap(start: time, end: time, candidates: Iterable[R]) -> Optional[R]:
    for candidate in candidates:
        if overlaps(start, end, candidate.start_time, candidate.end_time):
            return candidate
    return None


def claimed_minutes(start: time, end: time) -> range:
    return range(to_minutes(start), to_minutes(end))


def campus_weekday(on: date) -> int:
    """Weekday numbered 0 = Sunday ... 6 = Saturday, the convention schedules are stored in."""

    return on.isoweekday() % 7
