from __future__ import annotations

from fastapi import FastAPI, HTTPException

from personnel_console.api.routers import assignments, auth, permissions, roles, users
from personnel_console.infra.audit import AuditMiddleware
from personnel_console.infra.db import check_db_ready
from personnel_console.infra.log_config import configure_logging

configure_logging()

app = FastAPI(
    title="personnel-console",
    description="Account lifecycle and role/permission administration for municipal personnel.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(users.router, prefix="/api/users", tags=["users"])
app.include_router(roles.router, prefix="/api/roles", tags=["roles"])
app.include_router(permissions.router, prefix="/api/permissions", tags=["permissions"])
app.include_router(assignments.router, prefix="/api", tags=["assignments"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
