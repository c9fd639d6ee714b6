"""
Translation of domain and storage failures into HTTP responses.
Routers raise the returned HTTPException; `detail` is always the stable error code.
"""
from __future__ import annotations

import logging

from fastapi import HTTPException, status
from sqlalchemy.exc import DBAPIError, IntegrityError

from .domain.errors import (
    BookingError,
    BookingValidationError,
    ConflictError,
    ForbiddenError,
    InternalError,
    NotFoundError,
    NotJoinableError,
    SlotFullError,
)

logger = logging.getLogger(__name__)

# First match wins; order subclasses before their bases.
ERROR_STATUS: list[tuple[type[BookingError], int]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (BookingValidationError, status.HTTP_400_BAD_REQUEST),
    (NotJoinableError, status.HTTP_409_CONFLICT),
    (SlotFullError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InternalError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def booking_error_to_http(exc: BookingError) -> HTTPException:
    for error_cls, status_code in ERROR_STATUS:
        if isinstance(exc, error_cls):
            return HTTPException(status_code=status_code, detail=exc.code)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.code)


_FOREIGN_KEY_ERRNOS = {1451, 1452}


def _is_foreign_key_violation(exc: IntegrityError) -> bool:
    args = getattr(exc.orig, "args", ())
    if args and args[0] in _FOREIGN_KEY_ERRNOS:
        return True
    return "foreign key constraint" in str(exc.orig).lower()


def storage_error_to_http(exc: DBAPIError) -> HTTPException:
    """
    A missing referenced row (unknown user or slot) is a 404, other integrity errors are
    unique-constraint races (409); anything else (lock timeout, deadlock, lost connection)
    is retryable.
    """
    if isinstance(exc, IntegrityError):
        if _is_foreign_key_violation(exc):
            return booking_error_to_http(NotFoundError())
        return booking_error_to_http(ConflictError())
    logger.error("storage failure: %s", exc.__class__.__name__, exc_info=exc)
    return booking_error_to_http(InternalError())
