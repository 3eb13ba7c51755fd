"""Render domain failures as JSON responses."""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .errors import BookingError, TransientStoreFailure

logger = logging.getLogger(__name__)


def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    headers = {}
    if isinstance(exc, TransientStoreFailure):
        headers["Retry-After"] = str(exc.context.get("retry_after", 5))
    logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def apply_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingError, booking_error_handler)
