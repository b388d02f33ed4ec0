from __future__ import annotations

import logging
from typing import NoReturn

from fastapi import HTTPException, status

from personnel_console.domain.errors import (
    AuthError,
    ConflictError,
    ConsoleError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)

_STATUS_BY_ERROR: tuple[tuple[type[ConsoleError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (PreconditionError, status.HTTP_412_PRECONDITION_FAILED),
    (AuthError, status.HTTP_401_UNAUTHORIZED),
)

logger = logging.getLogger(__name__)


def handle_service_error(exc: ConsoleError) -> NoReturn:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            logger.warning("operation rejected", extra={"error": type(exc).__name__, "detail": str(exc)})
            raise HTTPException(status_code=status_code, detail=str(exc)) from exc
    raise exc
