from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import or_
from sqlalchemy.orm import Session

from classfinder import audit
from classfinder.config import get_settings
from classfinder.database import Base, engine, get_db
from classfinder.dependencies import allow_roles, client_ip
from classfinder.error_handlers import apply_error_handlers
from classfinder.logging_middleware import add_audit_middleware
from classfinder.models import Building, RoleEnum, User, UserStatus
from classfinder.rate_limit import apply_rate_limiter, limiter
from classfinder.schemas import AuditLogRead, Page, UserCreate, UserDetail, UserRead, UserUpdate

settings = get_settings()
require_admin = allow_roles(RoleEnum.ADMIN)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Admin Service", version="0.3.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    apply_error_handlers(fastapi_app)
    add_audit_middleware(fastapi_app, "admin")
    Instrumentator().instrument(fastapi_app).expose(fastapi_app)
    return fastapi_app


app = create_app()


def _get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def _buildings(db: Session, building_ids: list[int]) -> list[Building]:
    if not building_ids:
        return []
    buildings = db.query(Building).filter(Building.id.in_(building_ids)).all()
    missing = set(building_ids) - {building.id for building in buildings}
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown building ids: {sorted(missing)}",
        )
    return buildings


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "admin"}


@app.get("/admin/users", response_model=Page[UserRead])
@limiter.limit("30/minute")
def list_users(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    role: Optional[RoleEnum] = None,
    user_status: Optional[UserStatus] = Query(None, alias="status"),
    search: Optional[str] = None,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(User)
    if role:
        query = query.filter(User.role == role)
    if user_status:
        query = query.filter(User.status == user_status)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern), User.id_number.ilike(pattern)))
    items, pagination = audit.paginate(query.order_by(User.created_at.desc(), User.id.desc()), page, limit)
    return {"items": items, "pagination": pagination}


@app.post("/admin/users", response_model=UserDetail, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def create_user(
    request: Request,
    user_in: UserCreate,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> User:
    email = user_in.email.lower()
    if not email.endswith(f"@{settings.allowed_email_domain}"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Email must be from @{settings.allowed_email_domain} domain",
        )
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User with this email already exists")

    user = User(
        email=email,
        name=user_in.name,
        id_number=user_in.id_number,
        department=user_in.department,
        role=user_in.role,
        status=UserStatus.ACTIVE,
    )
    user.assigned_buildings = _buildings(db, user_in.assigned_buildings)
    db.add(user)
    db.flush()
    audit.record(
        db,
        "user_created",
        "user",
        user.id,
        user_id=current_user.id,
        details={"created_user_email": email, "created_user_role": user.role},
        ip_address=client_ip(request),
    )
    db.commit()
    db.refresh(user)
    return user


@app.get("/admin/users/{user_id}", response_model=UserDetail)
@limiter.limit("60/minute")
def get_user(
    request: Request,
    user_id: int,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> User:
    return _get_user(db, user_id)


@app.put("/admin/users/{user_id}", response_model=UserDetail)
@limiter.limit("20/minute")
def update_user(
    request: Request,
    user_id: int,
    user_update: UserUpdate,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> User:
    user = _get_user(db, user_id)
    changes = user_update.model_dump(exclude_unset=True)
    previous = {"role": user.role, "status": user.status, "name": user.name}

    building_ids = changes.pop("assigned_buildings", None)
    if building_ids is not None:
        user.assigned_buildings = _buildings(db, building_ids)
    for key, value in changes.items():
        setattr(user, key, value)
    user.updated_at = datetime.utcnow()

    if building_ids is not None:
        changes["assigned_buildings"] = building_ids
    audit.record(
        db,
        "user_updated",
        "user",
        user.id,
        user_id=current_user.id,
        details={"updated_user_email": user.email, "changes": changes, "previous_values": previous},
        ip_address=client_ip(request),
    )
    db.commit()
    db.refresh(user)
    return user


@app.delete("/admin/users/{user_id}")
@limiter.limit("10/minute")
def deactivate_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> dict[str, str]:
    if user_id == current_user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot deactivate your own account")
    user = _get_user(db, user_id)
    user.status = UserStatus.INACTIVE
    user.updated_at = datetime.utcnow()
    audit.record(
        db,
        "user_deactivated",
        "user",
        user.id,
        user_id=current_user.id,
        details={"deactivated_user_email": user.email, "deactivated_user_role": user.role},
        ip_address=client_ip(request),
    )
    db.commit()
    return {"message": "User deactivated successfully"}


@app.get("/admin/audit-logs", response_model=Page[AuditLogRead])
@limiter.limit("30/minute")
def list_audit_logs(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    action: Optional[str] = None,
    user_id: Optional[int] = None,
    resource_type: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> dict:
    items, pagination = audit.search_logs(
        db,
        page=page,
        limit=limit,
        action=action,
        user_id=user_id,
        resource_type=resource_type,
        date_from=date_from,
        date_to=date_to,
    )
    return {"items": items, "pagination": pagination}
