from contextlib import asynccontextmanager
from datetime import date, datetime, time
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from classfinder import lifecycle, occupancy
from classfinder.admission import BookingAdmissionController
from classfinder.checkin import CheckInGate
from classfinder.config import get_settings
from classfinder.database import Base, engine
from classfinder.dependencies import client_ip, get_current_active_user, get_now, get_store, get_today
from classfinder.error_handlers import apply_error_handlers
from classfinder.errors import AdmissionError, Forbidden, NotFound
from classfinder.lifecycle import can_moderate
from classfinder.logging_middleware import add_audit_middleware
from classfinder.models import Booking, BookingPurpose, BookingStatus, User
from classfinder.rate_limit import apply_rate_limiter, booking_attempts, limiter
from classfinder.schemas import AvailabilityRead, BookingCreate, BookingRead
from classfinder.store import BookingStore

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Bookings Service", version="0.3.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    apply_error_handlers(fastapi_app)
    add_audit_middleware(fastapi_app, "bookings")
    Instrumentator().instrument(fastapi_app).expose(fastapi_app)
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "bookings"}


@app.post("/bookings", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_booking(
    request: Request,
    booking_in: BookingCreate,
    current_user: User = Depends(get_current_active_user),
    store: BookingStore = Depends(get_store),
    today: date = Depends(get_today),
) -> Booking:
    decision = booking_attempts.check(f"user:{current_user.id}")
    if not decision.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many booking attempts, try again later",
            headers={"Retry-After": str(decision.retry_after)},
        )
    controller = BookingAdmissionController(store, settings)
    booking = controller.create_booking(booking_in, current_user.id, today, ip_address=client_ip(request))
    occupancy.invalidate()
    return booking


@app.get("/bookings", response_model=List[BookingRead])
@limiter.limit("60/minute")
def list_my_bookings(
    request: Request,
    booking_status: Optional[BookingStatus] = Query(None, alias="status"),
    current_user: User = Depends(get_current_active_user),
    store: BookingStore = Depends(get_store),
) -> List[Booking]:
    query = store.session.query(Booking).filter(Booking.user_id == current_user.id)
    if booking_status:
        query = query.filter(Booking.status == booking_status)
    return query.order_by(Booking.booking_date.desc(), Booking.start_time.desc()).all()


@app.get("/bookings/availability", response_model=AvailabilityRead)
@limiter.limit("60/minute")
def check_availability(
    request: Request,
    room_id: int,
    booking_date: date = Query(..., alias="date"),
    start_time: time = Query(...),
    end_time: time = Query(...),
    current_user: User = Depends(get_current_active_user),
    store: BookingStore = Depends(get_store),
    today: date = Depends(get_today),
) -> AvailabilityRead:
    candidate = BookingCreate(
        classroom_id=room_id,
        booking_date=booking_date,
        start_time=start_time,
        end_time=end_time,
        purpose=BookingPurpose.GROUP_STUDY,
        estimated_attendees=settings.min_attendees,
    )
    controller = BookingAdmissionController(store, settings)
    try:
        controller.check_request(candidate, today)
        controller.check_availability(candidate)
    except AdmissionError as exc:
        if exc.retryable:
            raise
        return AvailabilityRead(
            classroom_id=room_id,
            booking_date=booking_date,
            start_time=start_time,
            end_time=end_time,
            available=False,
            reason=exc.kind,
            context=exc.context,
        )
    return AvailabilityRead(
        classroom_id=room_id,
        booking_date=booking_date,
        start_time=start_time,
        end_time=end_time,
        available=True,
    )


@app.get("/bookings/{booking_id}", response_model=BookingRead)
@limiter.limit("60/minute")
def get_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_active_user),
    store: BookingStore = Depends(get_store),
) -> Booking:
    booking = store.get_booking(booking_id)
    if booking is None:
        raise NotFound("Booking not found", booking_id=booking_id)
    if booking.user_id != current_user.id and not can_moderate(current_user, booking.classroom):
        raise Forbidden("Access denied", booking_id=booking_id)
    return booking


@app.post("/bookings/{booking_id}/checkin", response_model=BookingRead)
@limiter.limit("20/minute")
def check_in(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_active_user),
    store: BookingStore = Depends(get_store),
    now: datetime = Depends(get_now),
) -> Booking:
    booking = CheckInGate(store, settings).check_in(booking_id, current_user.id, now, ip_address=client_ip(request))
    occupancy.invalidate()
    return booking


@app.post("/bookings/{booking_id}/cancel", response_model=BookingRead)
@limiter.limit("20/minute")
def cancel_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_active_user),
    store: BookingStore = Depends(get_store),
) -> Booking:
    booking = lifecycle.cancel_booking(store, booking_id, current_user.id, ip_address=client_ip(request))
    occupancy.invalidate()
    return booking
