from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Request, Response, status

from personnel_console.api.deps import actor_of, get_current_claims, require_perm
from personnel_console.api.errors import handle_service_error
from personnel_console.domain.errors import ConsoleError
from personnel_console.domain.models import (
    EffectivePermissionsRead,
    RolePermissionAssignmentRead,
    UserRoleAssignmentRead,
    UserRoleAssignRequest,
    now_utc,
)
from personnel_console.domain.permissions import PERM_ASSIGNMENTS_READ, PERM_ASSIGNMENTS_WRITE
from personnel_console.infra.audit import set_audit_context
from personnel_console.services.assignment_service import AssignmentService

router = APIRouter()


def get_assignment_service() -> AssignmentService:
    return AssignmentService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[AssignmentService, Depends(get_assignment_service)]


@router.post(
    "/users/{user_id}/roles/{role_id}",
    response_model=UserRoleAssignmentRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENTS_WRITE))],
)
def assign_role_to_user(
    user_id: str,
    role_id: str,
    request: Request,
    claims: Claims,
    service: Service,
    payload: Annotated[UserRoleAssignRequest | None, Body()] = None,
) -> UserRoleAssignmentRead:
    try:
        edge = service.assign_role_to_user(
            user_id,
            role_id,
            expiration_date=payload.expiration_date if payload is not None else None,
            actor_id=actor_of(claims),
        )
    except ConsoleError as exc:
        handle_service_error(exc)
    set_audit_context(request, action="role.assign", resource=f"user:{user_id}", detail={"role_id": role_id})
    return edge


@router.delete(
    "/users/{user_id}/roles/{role_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENTS_WRITE))],
)
def remove_role_from_user(
    user_id: str,
    role_id: str,
    request: Request,
    claims: Claims,
    service: Service,
) -> Response:
    try:
        service.remove_role_from_user(user_id, role_id, actor_id=actor_of(claims))
    except ConsoleError as exc:
        handle_service_error(exc)
    set_audit_context(request, action="role.remove", resource=f"user:{user_id}", detail={"role_id": role_id})
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/users/{user_id}/roles",
    response_model=list[UserRoleAssignmentRead],
    dependencies=[Depends(require_perm(PERM_ASSIGNMENTS_READ))],
)
def get_user_roles(user_id: str, service: Service) -> list[UserRoleAssignmentRead]:
    try:
        return service.get_user_roles(user_id)
    except ConsoleError as exc:
        handle_service_error(exc)


@router.get(
    "/users/{user_id}/effective-permissions",
    response_model=EffectivePermissionsRead,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENTS_READ))],
)
def get_effective_permissions(user_id: str, service: Service) -> EffectivePermissionsRead:
    now = now_utc()
    try:
        permissions = service.effective_permissions(user_id, now)
    except ConsoleError as exc:
        handle_service_error(exc)
    return EffectivePermissionsRead(
        user_id=user_id,
        evaluated_at=now,
        keys=[item.key for item in permissions],
        permissions=permissions,
    )


@router.post(
    "/roles/{role_id}/permissions/{permission_id}",
    response_model=RolePermissionAssignmentRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENTS_WRITE))],
)
def assign_permission_to_role(
    role_id: str,
    permission_id: str,
    request: Request,
    claims: Claims,
    service: Service,
) -> RolePermissionAssignmentRead:
    try:
        edge = service.assign_permission_to_role(role_id, permission_id, actor_id=actor_of(claims))
    except ConsoleError as exc:
        handle_service_error(exc)
    set_audit_context(
        request,
        action="permission.grant",
        resource=f"role:{role_id}",
        detail={"permission_id": permission_id},
    )
    return edge


@router.delete(
    "/roles/{role_id}/permissions/{permission_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENTS_WRITE))],
)
def remove_permission_from_role(
    role_id: str,
    permission_id: str,
    request: Request,
    claims: Claims,
    service: Service,
) -> Response:
    try:
        service.remove_permission_from_role(role_id, permission_id, actor_id=actor_of(claims))
    except ConsoleError as exc:
        handle_service_error(exc)
    set_audit_context(
        request,
        action="permission.revoke",
        resource=f"role:{role_id}",
        detail={"permission_id": permission_id},
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch(
    "/roles/{role_id}/permissions/{permission_id}/restore",
    response_model=RolePermissionAssignmentRead,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENTS_WRITE))],
)
def restore_permission_to_role(
    role_id: str,
    permission_id: str,
    request: Request,
    claims: Claims,
    service: Service,
) -> RolePermissionAssignmentRead:
    try:
        edge = service.restore_permission_to_role(role_id, permission_id, actor_id=actor_of(claims))
    except ConsoleError as exc:
        handle_service_error(exc)
    set_audit_context(
        request,
        action="permission.restore",
        resource=f"role:{role_id}",
        detail={"permission_id": permission_id},
    )
    return edge


@router.get(
    "/roles/{role_id}/permissions",
    response_model=list[RolePermissionAssignmentRead],
    dependencies=[Depends(require_perm(PERM_ASSIGNMENTS_READ))],
)
def get_role_permissions(role_id: str, service: Service) -> list[RolePermissionAssignmentRead]:
    try:
        return service.get_role_permissions(role_id)
    except ConsoleError as exc:
        handle_service_error(exc)
