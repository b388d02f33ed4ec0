from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status

from personnel_console.api.errors import handle_service_error
from personnel_console.domain.errors import ConsoleError
from personnel_console.domain.models import BootstrapAdminRequest, LoginRequest, TokenResponse, UserRead
from personnel_console.infra.auth import create_access_token
from personnel_console.services.auth_service import AuthService
from personnel_console.services.user_service import UserService

router = APIRouter()


def get_auth_service() -> AuthService:
    return AuthService()


Service = Annotated[AuthService, Depends(get_auth_service)]


@router.post("/bootstrap-admin", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def bootstrap_admin(payload: BootstrapAdminRequest, service: Service) -> UserRead:
    try:
        user = service.bootstrap_admin(payload)
    except ConsoleError as exc:
        handle_service_error(exc)
    return UserService().to_read(user)


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, service: Service) -> TokenResponse:
    try:
        user, permissions = service.login(payload.username, payload.password)
    except ConsoleError as exc:
        handle_service_error(exc)
    token = create_access_token(user_id=user.id, username=user.username, permissions=permissions)
    return TokenResponse(access_token=token, permissions=permissions)
