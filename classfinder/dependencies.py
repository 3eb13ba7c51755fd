"""Reusable FastAPI dependencies for auth, clock and database access."""
from datetime import date, datetime
from typing import Callable
from zoneinfo import ZoneInfo

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from .auth import decode_token
from .config import get_settings
from .database import get_db
from .models import RoleEnum, User, UserStatus
from .store import BookingStore

settings = get_settings()
oauth_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


def get_current_user(token: str = Depends(oauth_scheme), db: Session = Depends(get_db)) -> User:
    payload = decode_token(token)
    email: str | None = payload.get("sub")
    if email is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing subject in token")
    user = db.query(User).filter(User.email == email).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    return user


def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    if current_user.status != UserStatus.ACTIVE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Account is {current_user.status.value}")
    return current_user


def allow_roles(*roles: RoleEnum) -> Callable[[User], User]:
    def dependency(current_user: User = Depends(get_current_active_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return current_user

    return dependency


def get_now() -> datetime:
    """Current campus wall-clock time (naive, in the campus timezone)."""

    return datetime.now(ZoneInfo(settings.campus_timezone)).replace(tzinfo=None)


def get_today(now: datetime = Depends(get_now)) -> date:
    return now.date()


def get_store(db: Session = Depends(get_db)) -> BookingStore:
    return BookingStore(db)


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None
