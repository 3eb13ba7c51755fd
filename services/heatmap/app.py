from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import List, Optional
from zoneinfo import ZoneInfo

from circuitbreaker import circuit
from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.orm import Session

from classfinder import occupancy
from classfinder.config import get_settings
from classfinder.database import Base, engine, get_db
from classfinder.dependencies import get_current_active_user, get_now
from classfinder.error_handlers import apply_error_handlers
from classfinder.logging_middleware import add_audit_middleware
from classfinder.models import Classroom, RoomStatus, User
from classfinder.rate_limit import apply_rate_limiter, limiter
from classfinder.schemas import (
    BuildingOccupancy,
    ClassroomRead,
    ClassroomWithStatus,
    FloorOccupancy,
    ScheduleEvent,
)

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Heat Map Service", version="0.3.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    apply_error_handlers(fastapi_app)
    add_audit_middleware(fastapi_app, "heatmap")
    Instrumentator().instrument(fastapi_app).expose(fastapi_app)
    return fastapi_app


app = create_app()


def _target(moment: Optional[datetime], now: datetime) -> datetime:
    if moment is None:
        return now
    if moment.tzinfo is not None:
        moment = moment.astimezone(ZoneInfo(settings.campus_timezone))
    return moment.replace(tzinfo=None)


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "heatmap"}


@app.get("/classrooms", response_model=List[ClassroomRead])
@limiter.limit("60/minute")
@circuit(failure_threshold=5, recovery_timeout=60)
def list_classrooms(
    request: Request,
    building_id: Optional[int] = None,
    room_status: Optional[RoomStatus] = Query(None, alias="status"),
    floor: Optional[int] = None,
    _: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> List[Classroom]:
    query = db.query(Classroom)
    if building_id is not None:
        query = query.filter(Classroom.building_id == building_id)
    if room_status:
        query = query.filter(Classroom.current_status == room_status)
    if floor is not None:
        query = query.filter(Classroom.floor == floor)
    return query.order_by(Classroom.room_number).all()


@app.get("/heatmap/buildings")
@limiter.limit("60/minute")
def buildings(
    request: Request,
    moment: Optional[datetime] = Query(None, alias="datetime"),
    _: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
) -> dict[str, List[BuildingOccupancy]]:
    return {"buildings": occupancy.building_occupancy(db, _target(moment, now))}


@app.get("/heatmap/floors")
@limiter.limit("60/minute")
def floors(
    request: Request,
    building_id: int,
    moment: Optional[datetime] = Query(None, alias="datetime"),
    _: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
) -> dict[str, List[FloorOccupancy]]:
    return {"floors": occupancy.floor_occupancy(db, building_id, _target(moment, now))}


@app.get("/heatmap/classrooms")
@limiter.limit("60/minute")
def classrooms(
    request: Request,
    building_id: int,
    floor: int,
    moment: Optional[datetime] = Query(None, alias="datetime"),
    _: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
) -> dict[str, List[ClassroomWithStatus]]:
    return {"classrooms": occupancy.classrooms_with_status(db, building_id, floor, _target(moment, now))}


@app.get("/heatmap/classroom")
@limiter.limit("60/minute")
def classroom(
    request: Request,
    classroom_id: int = Query(..., alias="id"),
    moment: Optional[datetime] = Query(None, alias="datetime"),
    _: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
) -> dict[str, ClassroomWithStatus]:
    room = occupancy.classroom_with_status(db, classroom_id, _target(moment, now))
    if room is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Classroom not found")
    return {"classroom": room}


@app.get("/heatmap/schedule")
@limiter.limit("60/minute")
def schedule(
    request: Request,
    classroom_id: int,
    on: Optional[date] = Query(None, alias="date"),
    _: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
) -> dict[str, List[ScheduleEvent]]:
    if db.get(Classroom, classroom_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Classroom not found")
    return {"schedule": occupancy.classroom_schedule(db, classroom_id, on or now.date())}
