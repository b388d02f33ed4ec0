from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Request, status

from personnel_console.api.deps import actor_of, get_current_claims, require_perm
from personnel_console.api.errors import handle_service_error
from personnel_console.domain.errors import ConsoleError
from personnel_console.domain.models import (
    ForceUnblockRead,
    UserBlockRequest,
    UserCreate,
    UsernameExistsRead,
    UserRead,
    UserSuspendRequest,
    UserUpdate,
    now_utc,
)
from personnel_console.domain.permissions import PERM_USERS_LOCK, PERM_USERS_READ, PERM_USERS_WRITE
from personnel_console.domain.state_machine import UserStatus
from personnel_console.infra.audit import set_audit_context
from personnel_console.services.user_service import DEFAULT_PAGE_SIZE, UserService

router = APIRouter()

logger = logging.getLogger(__name__)


def get_user_service() -> UserService:
    return UserService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[UserService, Depends(get_user_service)]
UpdatedBy = Annotated[
    str | None,
    Query(alias="updatedBy", deprecated=True, description="Ignored; the actor is taken from the token."),
]


def _resolve_actor(claims: dict[str, Any], updated_by: str | None) -> str:
    actor_id = actor_of(claims)
    if updated_by is not None and updated_by != actor_id:
        logger.warning(
            "updatedBy does not match authenticated actor",
            extra={"actor_id": actor_id, "updated_by": updated_by},
        )
    return actor_id


def _audit_transition(request: Request, action: str, user_id: str, result: UserRead) -> None:
    set_audit_context(
        request,
        action=f"user.{action}",
        resource=f"user:{user_id}",
        detail={"status": result.status.value, "version": result.version},
    )


@router.get("", response_model=list[UserRead], dependencies=[Depends(require_perm(PERM_USERS_READ))])
def list_users(
    service: Service,
    status_filter: Annotated[UserStatus | None, Query(alias="status")] = None,
) -> list[UserRead]:
    if status_filter is None:
        return service.list_console_users()
    now = now_utc()
    return [service.to_read(item, now) for item in service.list_users(status_filter)]


@router.get("/blocked", response_model=list[UserRead], dependencies=[Depends(require_perm(PERM_USERS_READ))])
def list_blocked_users(
    service: Service,
    page: int = 0,
    size: int = DEFAULT_PAGE_SIZE,
) -> list[UserRead]:
    try:
        users = service.list_blocked_users(page=page, size=size)
    except ConsoleError as exc:
        handle_service_error(exc)
    now = now_utc()
    return [service.to_read(item, now) for item in users]


@router.get("/active", response_model=list[UserRead], dependencies=[Depends(require_perm(PERM_USERS_READ))])
def list_active_users(service: Service) -> list[UserRead]:
    now = now_utc()
    return [service.to_read(item, now) for item in service.list_users(UserStatus.ACTIVE)]


@router.get("/inactive", response_model=list[UserRead], dependencies=[Depends(require_perm(PERM_USERS_READ))])
def list_inactive_users(service: Service) -> list[UserRead]:
    now = now_utc()
    return [service.to_read(item, now) for item in service.list_users(UserStatus.INACTIVE)]


@router.get("/suspended", response_model=list[UserRead], dependencies=[Depends(require_perm(PERM_USERS_READ))])
def list_suspended_users(service: Service) -> list[UserRead]:
    now = now_utc()
    return [service.to_read(item, now) for item in service.list_users(UserStatus.SUSPENDED)]


@router.get(
    "/username/{username}",
    response_model=UserRead,
    dependencies=[Depends(require_perm(PERM_USERS_READ))],
)
def get_user_by_username(username: str, service: Service) -> UserRead:
    try:
        user = service.get_user_by_username(username)
    except ConsoleError as exc:
        handle_service_error(exc)
    return service.to_read(user)


@router.get(
    "/exists/{username}",
    response_model=UsernameExistsRead,
    dependencies=[Depends(require_perm(PERM_USERS_READ))],
)
def username_exists(username: str, service: Service) -> UsernameExistsRead:
    return UsernameExistsRead(username=username, exists=service.username_exists(username))


@router.post(
    "",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_USERS_WRITE))],
)
def create_user(payload: UserCreate, claims: Claims, service: Service) -> UserRead:
    try:
        user = service.create_user(payload, actor_id=actor_of(claims))
    except ConsoleError as exc:
        handle_service_error(exc)
    return service.to_read(user)


@router.post(
    "/force-unblock-expired",
    response_model=ForceUnblockRead,
    dependencies=[Depends(require_perm(PERM_USERS_LOCK))],
)
def force_unblock_expired(request: Request, claims: Claims, service: Service) -> ForceUnblockRead:
    user_ids = service.force_unblock_expired(actor_id=actor_of(claims))
    set_audit_context(
        request,
        action="user.force_unblock_expired",
        resource="users",
        detail={"unblocked_count": len(user_ids)},
    )
    return ForceUnblockRead(unblocked_count=len(user_ids), user_ids=user_ids)


@router.get("/{user_id}", response_model=UserRead, dependencies=[Depends(require_perm(PERM_USERS_READ))])
def get_user(user_id: str, service: Service) -> UserRead:
    try:
        user = service.get_user(user_id)
    except ConsoleError as exc:
        handle_service_error(exc)
    return service.to_read(user)


@router.put("/{user_id}", response_model=UserRead, dependencies=[Depends(require_perm(PERM_USERS_WRITE))])
def update_user(
    user_id: str,
    payload: UserUpdate,
    claims: Claims,
    service: Service,
    updated_by: UpdatedBy = None,
) -> UserRead:
    try:
        user = service.update_user(user_id, payload, actor_id=_resolve_actor(claims, updated_by))
    except ConsoleError as exc:
        handle_service_error(exc)
    return service.to_read(user)


@router.delete("/{user_id}", response_model=UserRead, dependencies=[Depends(require_perm(PERM_USERS_WRITE))])
def delete_user(
    user_id: str,
    request: Request,
    claims: Claims,
    service: Service,
    updated_by: UpdatedBy = None,
) -> UserRead:
    try:
        user = service.soft_delete_user(user_id, actor_id=_resolve_actor(claims, updated_by))
    except ConsoleError as exc:
        handle_service_error(exc)
    result = service.to_read(user)
    _audit_transition(request, "soft_delete", user_id, result)
    return result


@router.patch(
    "/{user_id}/suspend",
    response_model=UserRead,
    dependencies=[Depends(require_perm(PERM_USERS_LOCK))],
)
def suspend_user(
    user_id: str,
    payload: UserSuspendRequest,
    request: Request,
    claims: Claims,
    service: Service,
) -> UserRead:
    try:
        user = service.suspend_user(
            user_id,
            reason=payload.reason,
            suspension_end=payload.suspension_end,
            actor_id=actor_of(claims),
        )
    except ConsoleError as exc:
        handle_service_error(exc)
    result = service.to_read(user)
    _audit_transition(request, "suspend", user_id, result)
    return result


@router.patch(
    "/{user_id}/restore",
    response_model=UserRead,
    dependencies=[Depends(require_perm(PERM_USERS_LOCK))],
)
def restore_user(
    user_id: str,
    request: Request,
    claims: Claims,
    service: Service,
    updated_by: UpdatedBy = None,
) -> UserRead:
    try:
        user = service.lift_restriction(user_id, actor_id=_resolve_actor(claims, updated_by))
    except ConsoleError as exc:
        handle_service_error(exc)
    result = service.to_read(user)
    _audit_transition(request, "restore", user_id, result)
    return result


@router.patch(
    "/{user_id}/block",
    response_model=UserRead,
    dependencies=[Depends(require_perm(PERM_USERS_LOCK))],
)
def block_user(
    user_id: str,
    payload: UserBlockRequest,
    request: Request,
    claims: Claims,
    service: Service,
) -> UserRead:
    now = now_utc()
    try:
        user = service.block_user(
            user_id,
            reason=payload.reason,
            duration_hours=payload.duration_hours,
            blocked_until=payload.blocked_until,
            actor_id=actor_of(claims),
            now=now,
        )
    except ConsoleError as exc:
        handle_service_error(exc)
    result = service.to_read(user, now)
    _audit_transition(request, "block", user_id, result)
    return result


@router.patch(
    "/{user_id}/unblock",
    response_model=UserRead,
    dependencies=[Depends(require_perm(PERM_USERS_LOCK))],
)
def unblock_user(user_id: str, request: Request, claims: Claims, service: Service) -> UserRead:
    try:
        user = service.unblock_user(user_id, actor_id=actor_of(claims))
    except ConsoleError as exc:
        handle_service_error(exc)
    result = service.to_read(user)
    _audit_transition(request, "unblock", user_id, result)
    return result
