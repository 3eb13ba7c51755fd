from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.orm import Query as OrmQuery, Session

from classfinder import audit, lifecycle, occupancy
from classfinder.admission import check_schedule_fits
from classfinder.config import get_settings
from classfinder.database import Base, engine, get_db
from classfinder.dependencies import allow_roles, client_ip, get_now, get_store
from classfinder.error_handlers import apply_error_handlers
from classfinder.logging_middleware import add_audit_middleware
from classfinder.models import Booking, BookingStatus, ClassSchedule, Classroom, RoleEnum, User
from classfinder.rate_limit import apply_rate_limiter, limiter
from classfinder.schemas import (
    BookingRead,
    BookingRejection,
    ClassroomRead,
    ClassroomUpdate,
    ClassScheduleCreate,
    ClassScheduleRead,
    Page,
)
from classfinder.store import BookingStore

settings = get_settings()
require_manager = allow_roles(RoleEnum.MANAGER, RoleEnum.ADMIN)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Manager Service", version="0.3.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    apply_error_handlers(fastapi_app)
    add_audit_middleware(fastapi_app, "manager")
    Instrumentator().instrument(fastapi_app).expose(fastapi_app)
    return fastapi_app


app = create_app()


def _scoped(query: OrmQuery, manager: User) -> OrmQuery:
    """Limit a classroom-joined query to the buildings a manager looks after."""

    if manager.role == RoleEnum.ADMIN:
        return query
    building_ids = [building.id for building in manager.assigned_buildings]
    return query.filter(Classroom.building_id.in_(building_ids))


def _managed_classroom(db: Session, classroom_id: int, manager: User) -> Classroom:
    classroom = db.get(Classroom, classroom_id)
    if not classroom:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Classroom not found")
    if not lifecycle.can_moderate(manager, classroom):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Classroom is outside your assigned buildings")
    return classroom


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "manager"}


@app.get("/manager/bookings", response_model=Page[BookingRead])
@limiter.limit("60/minute")
def list_bookings(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    booking_status: Optional[BookingStatus] = Query(BookingStatus.PENDING, alias="status"),
    current_user: User = Depends(require_manager),
    db: Session = Depends(get_db),
) -> dict:
    query = _scoped(db.query(Booking).join(Classroom, Booking.classroom_id == Classroom.id), current_user)
    if booking_status:
        query = query.filter(Booking.status == booking_status)
    query = query.order_by(Booking.booking_date, Booking.start_time)
    items, pagination = audit.paginate(query, page, limit)
    return {"items": items, "pagination": pagination}


@app.post("/manager/bookings/{booking_id}/approve", response_model=BookingRead)
@limiter.limit("30/minute")
def approve_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(require_manager),
    store: BookingStore = Depends(get_store),
) -> Booking:
    booking = lifecycle.confirm_booking(store, booking_id, current_user)
    occupancy.invalidate()
    return booking


@app.post("/manager/bookings/{booking_id}/reject", response_model=BookingRead)
@limiter.limit("30/minute")
def reject_booking(
    request: Request,
    booking_id: int,
    rejection: Optional[BookingRejection] = None,
    current_user: User = Depends(require_manager),
    store: BookingStore = Depends(get_store),
) -> Booking:
    reason = rejection.reason if rejection else None
    booking = lifecycle.reject_booking(store, booking_id, current_user, reason)
    occupancy.invalidate()
    return booking


@app.get("/manager/schedules", response_model=Page[ClassScheduleRead])
@limiter.limit("60/minute")
def list_schedules(
    request: Request,
    classroom_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(require_manager),
    db: Session = Depends(get_db),
) -> dict:
    query = _scoped(db.query(ClassSchedule).join(Classroom, ClassSchedule.classroom_id == Classroom.id), current_user)
    if classroom_id is not None:
        query = query.filter(ClassSchedule.classroom_id == classroom_id)
    query = query.order_by(ClassSchedule.classroom_id, ClassSchedule.start_time)
    items, pagination = audit.paginate(query, page, limit)
    return {"items": items, "pagination": pagination}


@app.post("/manager/schedules", response_model=ClassScheduleRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_schedule(
    request: Request,
    schedule_in: ClassScheduleCreate,
    current_user: User = Depends(require_manager),
    db: Session = Depends(get_db),
) -> ClassSchedule:
    _managed_classroom(db, schedule_in.classroom_id, current_user)
    check_schedule_fits(BookingStore(db), schedule_in)
    schedule = ClassSchedule(**schedule_in.model_dump())
    db.add(schedule)
    db.flush()
    audit.record(
        db,
        "schedule_created",
        "class_schedule",
        schedule.id,
        user_id=current_user.id,
        details=schedule_in.model_dump(),
        ip_address=client_ip(request),
    )
    db.commit()
    db.refresh(schedule)
    occupancy.invalidate()
    return schedule


@app.delete("/manager/schedules/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("20/minute")
def delete_schedule(
    request: Request,
    schedule_id: int,
    current_user: User = Depends(require_manager),
    db: Session = Depends(get_db),
) -> None:
    schedule = db.get(ClassSchedule, schedule_id)
    if not schedule:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Schedule not found")
    _managed_classroom(db, schedule.classroom_id, current_user)
    audit.record(
        db,
        "schedule_deleted",
        "class_schedule",
        schedule.id,
        user_id=current_user.id,
        details={"classroom_id": schedule.classroom_id, "subject_code": schedule.subject_code},
        ip_address=client_ip(request),
    )
    db.delete(schedule)
    db.commit()
    occupancy.invalidate()


@app.patch("/manager/rooms/{classroom_id}", response_model=ClassroomRead)
@limiter.limit("20/minute")
def update_room(
    request: Request,
    classroom_id: int,
    room_update: ClassroomUpdate,
    current_user: User = Depends(require_manager),
    db: Session = Depends(get_db),
) -> Classroom:
    classroom = _managed_classroom(db, classroom_id, current_user)
    changes = room_update.model_dump(exclude_unset=True)
    previous = {key: getattr(classroom, key) for key in changes}
    for key, value in changes.items():
        setattr(classroom, key, value)
    audit.record(
        db,
        "room_updated",
        "classroom",
        classroom.id,
        user_id=current_user.id,
        details={"changes": changes, "previous_values": previous},
        ip_address=client_ip(request),
    )
    db.commit()
    db.refresh(classroom)
    occupancy.invalidate()
    return classroom


@app.post("/manager/maintenance/sweep")
@limiter.limit("10/minute")
def sweep_bookings(
    request: Request,
    current_user: User = Depends(require_manager),
    store: BookingStore = Depends(get_store),
    now: datetime = Depends(get_now),
) -> dict[str, list[int]]:
    expired = lifecycle.expire_unclaimed_bookings(store, now)
    completed = lifecycle.complete_finished_bookings(store, now)
    occupancy.invalidate()
    return {
        "auto_cancelled": [booking.id for booking in expired],
        "completed": [booking.id for booking in completed],
    }
