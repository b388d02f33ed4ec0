from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status

from personnel_console.api.deps import require_perm
from personnel_console.api.errors import handle_service_error
from personnel_console.domain.errors import ConsoleError
from personnel_console.domain.models import RoleCreate, RoleRead, RoleUpdate
from personnel_console.domain.permissions import PERM_ROLES_READ, PERM_ROLES_WRITE
from personnel_console.services.role_service import RoleService

router = APIRouter()


def get_role_service() -> RoleService:
    return RoleService()


Service = Annotated[RoleService, Depends(get_role_service)]


@router.get("", response_model=list[RoleRead], dependencies=[Depends(require_perm(PERM_ROLES_READ))])
def list_roles(service: Service, include_deleted: bool = False) -> list[RoleRead]:
    return [RoleRead.model_validate(item) for item in service.list_roles(include_deleted=include_deleted)]


@router.get("/name/{name}", response_model=RoleRead, dependencies=[Depends(require_perm(PERM_ROLES_READ))])
def get_role_by_name(name: str, service: Service) -> RoleRead:
    try:
        return RoleRead.model_validate(service.get_role_by_name(name))
    except ConsoleError as exc:
        handle_service_error(exc)


@router.post(
    "",
    response_model=RoleRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ROLES_WRITE))],
)
def create_role(payload: RoleCreate, service: Service) -> RoleRead:
    try:
        return RoleRead.model_validate(service.create_role(payload))
    except ConsoleError as exc:
        handle_service_error(exc)


@router.get("/{role_id}", response_model=RoleRead, dependencies=[Depends(require_perm(PERM_ROLES_READ))])
def get_role(role_id: str, service: Service) -> RoleRead:
    try:
        return RoleRead.model_validate(service.get_role(role_id))
    except ConsoleError as exc:
        handle_service_error(exc)


@router.patch("/{role_id}", response_model=RoleRead, dependencies=[Depends(require_perm(PERM_ROLES_WRITE))])
def update_role(role_id: str, payload: RoleUpdate, service: Service) -> RoleRead:
    try:
        return RoleRead.model_validate(service.update_role(role_id, payload))
    except ConsoleError as exc:
        handle_service_error(exc)


@router.delete("/{role_id}", response_model=RoleRead, dependencies=[Depends(require_perm(PERM_ROLES_WRITE))])
def delete_role(role_id: str, service: Service) -> RoleRead:
    try:
        return RoleRead.model_validate(service.delete_role(role_id))
    except ConsoleError as exc:
        handle_service_error(exc)


@router.patch(
    "/{role_id}/restore",
    response_model=RoleRead,
    dependencies=[Depends(require_perm(PERM_ROLES_WRITE))],
)
def restore_role(role_id: str, service: Service) -> RoleRead:
    try:
        return RoleRead.model_validate(service.restore_role(role_id))
    except ConsoleError as exc:
        handle_service_error(exc)
