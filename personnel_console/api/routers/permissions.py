from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status

from personnel_console.api.deps import require_perm
from personnel_console.api.errors import handle_service_error
from personnel_console.domain.errors import ConsoleError
from personnel_console.domain.models import PermissionCreate, PermissionRead, PermissionUpdate
from personnel_console.domain.permissions import PERM_PERMISSIONS_READ, PERM_PERMISSIONS_WRITE
from personnel_console.services.permission_service import PermissionService

router = APIRouter()


def get_permission_service() -> PermissionService:
    return PermissionService()


Service = Annotated[PermissionService, Depends(get_permission_service)]


@router.get(
    "",
    response_model=list[PermissionRead],
    dependencies=[Depends(require_perm(PERM_PERMISSIONS_READ))],
)
def list_permissions(service: Service, active_only: bool = False) -> list[PermissionRead]:
    return [PermissionRead.model_validate(item) for item in service.list_permissions(active_only=active_only)]


@router.get(
    "/search",
    response_model=list[PermissionRead],
    dependencies=[Depends(require_perm(PERM_PERMISSIONS_READ))],
)
def search_permissions(
    service: Service,
    module: str | None = None,
    action: str | None = None,
    resource: str | None = None,
) -> list[PermissionRead]:
    items = service.search_permissions(module=module, action=action, resource=resource)
    return [PermissionRead.model_validate(item) for item in items]


@router.post(
    "",
    response_model=PermissionRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_PERMISSIONS_WRITE))],
)
def create_permission(payload: PermissionCreate, service: Service) -> PermissionRead:
    try:
        return PermissionRead.model_validate(service.create_permission(payload))
    except ConsoleError as exc:
        handle_service_error(exc)


@router.get(
    "/{permission_id}",
    response_model=PermissionRead,
    dependencies=[Depends(require_perm(PERM_PERMISSIONS_READ))],
)
def get_permission(permission_id: str, service: Service) -> PermissionRead:
    try:
        return PermissionRead.model_validate(service.get_permission(permission_id))
    except ConsoleError as exc:
        handle_service_error(exc)


@router.patch(
    "/{permission_id}",
    response_model=PermissionRead,
    dependencies=[Depends(require_perm(PERM_PERMISSIONS_WRITE))],
)
def update_permission(permission_id: str, payload: PermissionUpdate, service: Service) -> PermissionRead:
    try:
        return PermissionRead.model_validate(service.update_permission(permission_id, payload))
    except ConsoleError as exc:
        handle_service_error(exc)


@router.delete(
    "/{permission_id}",
    response_model=PermissionRead,
    dependencies=[Depends(require_perm(PERM_PERMISSIONS_WRITE))],
)
def delete_permission(permission_id: str, service: Service) -> PermissionRead:
    try:
        return PermissionRead.model_validate(service.delete_permission(permission_id))
    except ConsoleError as exc:
        handle_service_error(exc)


@router.patch(
    "/{permission_id}/restore",
    response_model=PermissionRead,
    dependencies=[Depends(require_perm(PERM_PERMISSIONS_WRITE))],
)
def restore_permission(permission_id: str, service: Service) -> PermissionRead:
    try:
        return PermissionRead.model_validate(service.restore_permission(permission_id))
    except ConsoleError as exc:
        handle_service_error(exc)
