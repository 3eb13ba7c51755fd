"""Pydantic schemas shared across the services."""
from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from .models import BookingPurpose, BookingStatus, RoleEnum, RoomStatus, UserStatus

T = TypeVar("T")


def _whole_minute(value: time) -> time:
    if value.second or value.microsecond:
        raise ValueError("Times must be whole minutes (HH:MM)")
    return value


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class Page(BaseModel, Generic[T]):
    items: List[T]
    pagination: Pagination


class BookingCreate(BaseModel):
    classroom_id: int
    booking_date: date
    start_time: time
    end_time: time
    purpose: BookingPurpose
    purpose_details: Optional[str] = Field(None, max_length=200)
    # Lower bound is an admission rule so it is reported as InvalidAttendeeCount.
    estimated_attendees: int

    @field_validator("start_time", "end_time")
    @classmethod
    def whole_minutes(cls, value: time) -> time:
        return _whole_minute(value)


class BookingRead(BaseModel):
    id: int
    user_id: int
    classroom_id: int
    booking_date: date
    start_time: time
    end_time: time
    purpose: BookingPurpose
    purpose_details: Optional[str] = None
    estimated_attendees: int
    status: BookingStatus
    created_at: datetime
    checked_in_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BookingRejection(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class AvailabilityRead(BaseModel):
    classroom_id: int
    booking_date: date
    start_time: time
    end_time: time
    available: bool
    reason: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)


class ClassScheduleBase(BaseModel):
    classroom_id: int
    subject_code: str = Field(..., min_length=1, max_length=50)
    instructor_name: Optional[str] = Field(None, max_length=255)
    days_of_week: List[int] = Field(..., min_length=1)
    start_time: time
    end_time: time
    start_date: date
    end_date: date


class ClassScheduleCreate(ClassScheduleBase):
    @field_validator("start_time", "end_time")
    @classmethod
    def whole_minutes(cls, value: time) -> time:
        return _whole_minute(value)

    @field_validator("days_of_week")
    @classmethod
    def valid_days(cls, value: List[int]) -> List[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("days_of_week entries must be between 0 (Sunday) and 6 (Saturday)")
        return sorted(set(value))

    @model_validator(mode="after")
    def ordered(self) -> "ClassScheduleCreate":
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        if self.end_date < self.start_date:
            raise ValueError("End date must not be before start date")
        return self


class ClassScheduleRead(ClassScheduleBase):
    id: int

    model_config = {"from_attributes": True}


class BuildingRead(BaseModel):
    id: int
    name: str
    code: str
    floors: int

    model_config = {"from_attributes": True}


class ClassroomRead(BaseModel):
    id: int
    building_id: int
    room_number: str
    floor: int
    capacity: int
    amenities: List[str]
    current_status: RoomStatus

    model_config = {"from_attributes": True}


class ClassroomUpdate(BaseModel):
    capacity: Optional[int] = Field(None, ge=1)
    amenities: Optional[List[str]] = None
    current_status: Optional[RoomStatus] = None


class UserBase(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)
    id_number: str = Field(..., min_length=1, max_length=50)
    department: Optional[str] = None
    role: RoleEnum = RoleEnum.USER


class UserCreate(UserBase):
    assigned_buildings: List[int] = Field(default_factory=list)


class UserUpdate(BaseModel):
    role: Optional[RoleEnum] = None
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    id_number: Optional[str] = Field(None, min_length=1, max_length=50)
    department: Optional[str] = None
    assigned_buildings: Optional[List[int]] = None
    status: Optional[UserStatus] = None


class UserRead(UserBase):
    id: int
    status: UserStatus
    created_at: datetime

    model_config = {"from_attributes": True}


class UserDetail(UserRead):
    assigned_buildings: List[BuildingRead] = Field(default_factory=list)


class AuditLogRead(BaseModel):
    id: int
    user_id: Optional[int] = None
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    details: Dict[str, Any]
    ip_address: Optional[str] = None
    timestamp: datetime

    model_config = {"from_attributes": True}


class BuildingOccupancy(BaseModel):
    id: int
    name: str
    code: str
    total_classrooms: int
    occupied_count: int
    reserved_count: int
    available_count: int
    maintenance_count: int
    occupancy_rate: float


class FloorOccupancy(BaseModel):
    floor: int
    total_classrooms: int
    occupied_count: int
    reserved_count: int
    available_count: int
    maintenance_count: int
    occupancy_rate: float


class ClassroomWithStatus(BaseModel):
    id: int
    room_number: str
    floor: int
    capacity: int
    amenities: List[str]
    is_occupied: bool
    status: str
    occupied_until: Optional[time] = None
    next_available_at: Optional[time] = None


class ScheduleEvent(BaseModel):
    event_type: str
    start_time: time
    end_time: time
    title: str
    status: str
    user_name: Optional[str] = None
