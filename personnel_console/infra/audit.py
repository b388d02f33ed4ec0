from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from personnel_console.domain.models import AuditLog
from personnel_console.infra.context import set_request_context
from personnel_console.infra.db import engine

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
AUDIT_CONTEXT_STATE_KEY = "_audit_context"
REQUEST_ID_HEADER = "X-Request-ID"

logger = logging.getLogger(__name__)


def set_audit_context(request: Request, *, action: str, resource: str, detail: dict[str, Any] | None = None) -> None:
    """Name the audited operation of the current request.

    Without it a mutating request is still recorded, keyed by method and path.
    """
    setattr(
        request.state,
        AUDIT_CONTEXT_STATE_KEY,
        {"action": action, "resource": resource, "detail": dict(detail or {})},
    )


class AuditMiddleware(BaseHTTPMiddleware):
    """Propagates ``X-Request-ID`` and records one ``AuditLog`` row per mutating request."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        set_request_context(None, request_id)
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        if request.method not in WRITE_METHODS:
            return response

        path = request.url.path
        context: dict[str, Any] = getattr(request.state, AUDIT_CONTEXT_STATE_KEY, {})
        claims: dict[str, Any] = getattr(request.state, "claims", {})
        log = AuditLog(
            actor_id=claims.get("sub"),
            action=context.get("action", f"{request.method}:{path}"),
            resource=context.get("resource", path),
            method=request.method,
            status_code=response.status_code,
            detail={"request_id": request_id, "path": path, **context.get("detail", {})},
        )
        try:
            with Session(engine) as session:
                session.add(log)
                session.commit()
        except Exception:
            logger.exception("audit log write failed", extra={"action": log.action, "request_id": request_id})
        return response
