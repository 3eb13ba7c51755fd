"""SQLAlchemy models shared across all services."""
from __future__ import annotations

from datetime import date, datetime, time
from enum import Enum
from typing import Any, List, Optional

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Table,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


class RoleEnum(str, Enum):
    USER = "user"
    MANAGER = "manager"
    ADMIN = "admin"


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class RoomStatus(str, Enum):
    AVAILABLE = "available"
    MAINTENANCE = "maintenance"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    AUTO_CANCELLED = "auto_cancelled"
    REJECTED = "rejected"


class BookingPurpose(str, Enum):
    GROUP_STUDY = "group_study"
    PROJECT_MEETING = "project_meeting"
    REVIEW_SESSION = "review_session"
    ORG_ACTIVITY = "org_activity"
    PRESENTATION_PREP = "presentation_prep"
    TUTORING = "tutoring"
    WORKSHOP = "workshop"


# Statuses counted against the per-day quota.
QUOTA_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN})
# Statuses that no longer occupy their slot.
RELEASED_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.AUTO_CANCELLED})


user_buildings = Table(
    "user_buildings",
    Base.metadata,
    Column("user_id", ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("building_id", ForeignKey("buildings.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255))
    id_number: Mapped[str] = mapped_column(String(50))
    department: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    role: Mapped[RoleEnum] = mapped_column(SqlEnum(RoleEnum), default=RoleEnum.USER)
    status: Mapped[UserStatus] = mapped_column(SqlEnum(UserStatus), default=UserStatus.ACTIVE)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)

    bookings: Mapped[List["Booking"]] = relationship(back_populates="user")
    assigned_buildings: Mapped[List["Building"]] = relationship(secondary=user_buildings)


class Building(Base):
    __tablename__ = "buildings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100), unique=True)
    code: Mapped[str] = mapped_column(String(20), unique=True)
    floors: Mapped[int] = mapped_column(Integer, default=1)

    classrooms: Mapped[List["Classroom"]] = relationship(back_populates="building")


class Classroom(Base):
    __tablename__ = "classrooms"
    __table_args__ = (UniqueConstraint("building_id", "room_number", name="uq_classroom_room_number"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    building_id: Mapped[int] = mapped_column(ForeignKey("buildings.id", ondelete="CASCADE"), index=True)
    room_number: Mapped[str] = mapped_column(String(20))
    floor: Mapped[int] = mapped_column(Integer, index=True)
    capacity: Mapped[int] = mapped_column(Integer)
    amenities: Mapped[list[str]] = mapped_column(JSON, default=list)
    current_status: Mapped[RoomStatus] = mapped_column(SqlEnum(RoomStatus), default=RoomStatus.AVAILABLE)

    building: Mapped[Building] = relationship(back_populates="classrooms")
    bookings: Mapped[List["Booking"]] = relationship(back_populates="classroom")
    schedules: Mapped[List["ClassSchedule"]] = relationship(back_populates="classroom")


class ClassSchedule(Base):
    __tablename__ = "class_schedules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    classroom_id: Mapped[int] = mapped_column(ForeignKey("classrooms.id", ondelete="CASCADE"), index=True)
    subject_code: Mapped[str] = mapped_column(String(50))
    instructor_name: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    # 0 = Sunday ... 6 = Saturday
    days_of_week: Mapped[list[int]] = mapped_column(JSON, default=list)
    start_time: Mapped[time] = mapped_column(Time)
    end_time: Mapped[time] = mapped_column(Time)
    start_date: Mapped[date] = mapped_column(Date, index=True)
    end_date: Mapped[date] = mapped_column(Date, index=True)

    classroom: Mapped[Classroom] = relationship(back_populates="schedules")


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    classroom_id: Mapped[int] = mapped_column(ForeignKey("classrooms.id", ondelete="CASCADE"), index=True)
    booking_date: Mapped[date] = mapped_column(Date, index=True)
    start_time: Mapped[time] = mapped_column(Time)
    end_time: Mapped[time] = mapped_column(Time)
    purpose: Mapped[BookingPurpose] = mapped_column(SqlEnum(BookingPurpose))
    purpose_details: Mapped[Optional[str]] = mapped_column(String(200), default=None)
    estimated_attendees: Mapped[int] = mapped_column(Integer)
    status: Mapped[BookingStatus] = mapped_column(SqlEnum(BookingStatus), default=BookingStatus.PENDING, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    checked_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)

    user: Mapped[User] = relationship(back_populates="bookings")
    classroom: Mapped[Classroom] = relationship(back_populates="bookings")
    slot_claims: Mapped[List["BookingSlotClaim"]] = relationship(
        back_populates="booking", cascade="all, delete-orphan"
    )
    quota_claim: Mapped[Optional["BookingQuotaClaim"]] = relationship(
        back_populates="booking", cascade="all, delete-orphan"
    )

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.booking_date, self.start_time)

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(self.booking_date, self.end_time)


class BookingSlotClaim(Base):
    """One row per occupied minute; the unique key rejects a second overlapping insert."""

    __tablename__ = "booking_slot_claims"
    __table_args__ = (
        UniqueConstraint("classroom_id", "booking_date", "minute", name="uq_booking_slot_claim"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"), index=True)
    classroom_id: Mapped[int] = mapped_column(Integer)
    booking_date: Mapped[date] = mapped_column(Date)
    minute: Mapped[int] = mapped_column(Integer)

    booking: Mapped[Booking] = relationship(back_populates="slot_claims")


class BookingQuotaClaim(Base):
    """Numbered seat in a user's daily quota; the unique key caps concurrent admissions."""

    __tablename__ = "booking_quota_claims"
    __table_args__ = (
        UniqueConstraint("user_id", "booking_date", "position", name="uq_booking_quota_claim"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"), unique=True)
    user_id: Mapped[int] = mapped_column(Integer)
    booking_date: Mapped[date] = mapped_column(Date)
    position: Mapped[int] = mapped_column(Integer)

    booking: Mapped[Booking] = relationship(back_populates="quota_claim")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), index=True, default=None)
    action: Mapped[str] = mapped_column(String(100), index=True)
    resource_type: Mapped[str] = mapped_column(String(50), index=True)
    resource_id: Mapped[Optional[str]] = mapped_column(String(100), default=None)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), default=None)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    user: Mapped[Optional[User]] = relationship()
