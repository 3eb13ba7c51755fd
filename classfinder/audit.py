"""Audit trail writes and filtered reads."""
from __future__ import annotations

import math
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Query, Session

from .models import AuditLog, Booking
from .schemas import Pagination


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(item) for item in value]
    return value


def record(
    db: Session,
    action: str,
    resource_type: str,
    resource_id: Any = None,
    *,
    user_id: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
) -> AuditLog:
    """Stage an audit row in the caller's transaction."""

    entry = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=None if resource_id is None else str(resource_id),
        details=_jsonable(details or {}),
        ip_address=ip_address,
    )
    db.add(entry)
    return entry


def booking_details(booking: Booking) -> Dict[str, Any]:
    return _jsonable(
        {
            "classroom_id": booking.classroom_id,
            "booking_date": booking.booking_date,
            "start_time": booking.start_time,
            "end_time": booking.end_time,
            "purpose": booking.purpose,
            "estimated_attendees": booking.estimated_attendees,
            "status": booking.status,
        }
    )


def paginate(query: Query, page: int, limit: int) -> Tuple[list, Pagination]:
    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return items, Pagination(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit) if limit else 0)


def search_logs(
    db: Session,
    *,
    page: int = 1,
    limit: int = 20,
    action: Optional[str] = None,
    user_id: Optional[int] = None,
    resource_type: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> Tuple[list, Pagination]:
    query = db.query(AuditLog)
    if action:
        query = query.filter(AuditLog.action == action)
    if user_id is not None:
        query = query.filter(AuditLog.user_id == user_id)
    if resource_type:
        query = query.filter(AuditLog.resource_type == resource_type)
    if date_from:
        query = query.filter(AuditLog.timestamp >= date_from)
    if date_to:
        query = query.filter(AuditLog.timestamp <= date_to)
    return paginate(query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()), page, limit)
