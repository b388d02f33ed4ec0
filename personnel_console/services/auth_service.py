from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from personnel_console.domain.errors import AuthError, ConflictError
from personnel_console.domain.models import (
    BootstrapAdminRequest,
    Role,
    RolePermissionAssignment,
    User,
    UserRoleAssignment,
    now_utc,
)
from personnel_console.domain.state_machine import UserStatus
from personnel_console.domain.temporal_lock import effective_status
from personnel_console.infra.auth import hash_password, verify_password
from personnel_console.infra.db import get_engine
from personnel_console.services.assignment_service import AssignmentService
from personnel_console.services.permission_service import PermissionService
from personnel_console.services.user_service import UserService

logger = logging.getLogger(__name__)

ADMIN_ROLE_NAME = "admin"


class AuthService:
    def __init__(
        self,
        users: UserService | None = None,
        assignments: AssignmentService | None = None,
        permissions: PermissionService | None = None,
    ) -> None:
        self._users = users or UserService()
        self._assignments = assignments or AssignmentService()
        self._permissions = permissions or PermissionService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def bootstrap_admin(self, payload: BootstrapAdminRequest) -> User:
        """Seed default permissions, an admin role holding all of them and the first user."""
        with self._session() as session:
            if session.exec(select(User.id)).first() is not None:
                raise ConflictError("console already initialized")

            all_permissions = self._permissions.ensure_default_permissions(session)
            now = now_utc()
            admin_role = Role(name=ADMIN_ROLE_NAME, description="bootstrap admin role")
            admin_user = User(
                username=payload.username,
                password_hash=hash_password(payload.password),
                status=UserStatus.ACTIVE,
            )
            session.add(admin_role)
            session.add(admin_user)
            try:
                session.flush()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("admin role already exists") from exc

            for permission in all_permissions:
                session.add(
                    RolePermissionAssignment(
                        role_id=admin_role.id,
                        permission_id=permission.id,
                        assigned_at=now,
                        assigned_by=admin_user.id,
                    )
                )
            session.add(
                UserRoleAssignment(
                    user_id=admin_user.id,
                    role_id=admin_role.id,
                    assigned_at=now,
                    assigned_by=admin_user.id,
                )
            )
            session.commit()
            session.refresh(admin_user)
            logger.info("console bootstrapped", extra={"user_id": admin_user.id})
            return admin_user

    def login(self, username: str, password: str, now: datetime | None = None) -> tuple[User, list[str]]:
        now = now or now_utc()
        with self._session() as session:
            user = session.exec(select(User).where(User.username == username)).first()
            if user is None or not verify_password(password, user.password_hash):
                raise AuthError("invalid credentials")
            status = effective_status(user, now)
            if status != UserStatus.ACTIVE:
                logger.warning("login refused", extra={"user_id": user.id, "status": status.value})
                raise AuthError(f"user is {status.value.lower()}")

        self._users.mark_login(user.id, now)
        keys = [item.key for item in self._assignments.effective_permissions(user.id, now)]
        return user, keys
