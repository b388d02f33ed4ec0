from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from personnel_console.domain.errors import ConflictError, NotFoundError, PreconditionError
from personnel_console.domain.models import (
    Permission,
    PermissionRead,
    Role,
    RolePermissionAssignment,
    RolePermissionAssignmentRead,
    RoleRead,
    User,
    UserRoleAssignment,
    UserRoleAssignmentRead,
    now_utc,
)
from personnel_console.domain.permissions import flatten_permissions
from personnel_console.domain.state_machine import require_future
from personnel_console.infra.db import get_engine
from personnel_console.infra.events import event_bus

logger = logging.getLogger(__name__)


def _user_role_read(edge: UserRoleAssignment, role: Role) -> UserRoleAssignmentRead:
    return UserRoleAssignmentRead.model_validate(
        {
            **edge.model_dump(),
            "role": RoleRead.model_validate(role),
            "removable": edge.active,
        }
    )


def _role_permission_read(edge: RolePermissionAssignment, permission: Permission) -> RolePermissionAssignmentRead:
    frozen = not permission.status
    return RolePermissionAssignmentRead.model_validate(
        {
            **edge.model_dump(),
            "permission": PermissionRead.model_validate(permission),
            "frozen": frozen,
            "removable": edge.active and not frozen,
            "restorable": not edge.active and not frozen,
        }
    )


class AssignmentService:
    """User-role and role-permission edges with soft-delete history."""

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _require_user(self, session: Session, user_id: str) -> User:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("user not found")
        return user

    def _require_role(self, session: Session, role_id: str) -> Role:
        role = session.get(Role, role_id)
        if role is None:
            raise NotFoundError("role not found")
        return role

    def _require_permission(self, session: Session, permission_id: str) -> Permission:
        permission = session.get(Permission, permission_id)
        if permission is None:
            raise NotFoundError("permission not found")
        return permission

    def _active_user_role(self, session: Session, user_id: str, role_id: str) -> UserRoleAssignment | None:
        statement = (
            select(UserRoleAssignment)
            .where(UserRoleAssignment.user_id == user_id)
            .where(UserRoleAssignment.role_id == role_id)
            .where(col(UserRoleAssignment.active).is_(True))
        )
        return session.exec(statement).first()

    def _active_role_permission(
        self,
        session: Session,
        role_id: str,
        permission_id: str,
    ) -> RolePermissionAssignment | None:
        statement = (
            select(RolePermissionAssignment)
            .where(RolePermissionAssignment.role_id == role_id)
            .where(RolePermissionAssignment.permission_id == permission_id)
            .where(col(RolePermissionAssignment.active).is_(True))
        )
        return session.exec(statement).first()

    def assign_role_to_user(
        self,
        user_id: str,
        role_id: str,
        *,
        expiration_date: datetime | None = None,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> UserRoleAssignmentRead:
        now = now or now_utc()
        with self._session() as session:
            self._require_user(session, user_id)
            role = self._require_role(session, role_id)
            if self._active_user_role(session, user_id, role_id) is not None:
                raise ConflictError("role is already assigned to user")
            if expiration_date is not None:
                require_future(expiration_date, now, field="expiration_date")
            edge = UserRoleAssignment(
                user_id=user_id,
                role_id=role_id,
                assigned_at=now,
                assigned_by=actor_id,
                expiration_date=expiration_date,
                active=True,
            )
            session.add(edge)
            event_bus.publish_dict(
                "role.assigned",
                {"user_id": user_id, "role_id": role_id, "assignment_id": edge.id},
                actor_id=actor_id,
                session=session,
            )
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("role is already assigned to user") from exc
            session.refresh(edge)
            logger.info("role assigned", extra={"user_id": user_id, "role_id": role_id})
            return _user_role_read(edge, role)

    def remove_role_from_user(self, user_id: str, role_id: str, *, actor_id: str | None = None) -> None:
        with self._session() as session:
            self._require_user(session, user_id)
            self._require_role(session, role_id)
            edge = self._active_user_role(session, user_id, role_id)
            if edge is None:
                raise PreconditionError("user has no active assignment for this role")
            edge.active = False
            session.add(edge)
            event_bus.publish_dict(
                "role.removed",
                {"user_id": user_id, "role_id": role_id, "assignment_id": edge.id},
                actor_id=actor_id,
                session=session,
            )
            session.commit()
            logger.info("role removed", extra={"user_id": user_id, "role_id": role_id})

    def assign_permission_to_role(
        self,
        role_id: str,
        permission_id: str,
        *,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> RolePermissionAssignmentRead:
        with self._session() as session:
            self._require_role(session, role_id)
            permission = self._require_permission(session, permission_id)
            if self._active_role_permission(session, role_id, permission_id) is not None:
                raise ConflictError("permission is already granted to role")
            if not permission.status:
                raise PreconditionError("permission is inactive and cannot be granted")
            edge = RolePermissionAssignment(
                role_id=role_id,
                permission_id=permission_id,
                assigned_at=now or now_utc(),
                assigned_by=actor_id,
                active=True,
            )
            session.add(edge)
            event_bus.publish_dict(
                "permission.granted",
                {"role_id": role_id, "permission_id": permission_id, "assignment_id": edge.id},
                actor_id=actor_id,
                session=session,
            )
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("permission is already granted to role") from exc
            session.refresh(edge)
            logger.info("permission granted", extra={"role_id": role_id, "permission_id": permission_id})
            return _role_permission_read(edge, permission)

    def remove_permission_from_role(self, role_id: str, permission_id: str, *, actor_id: str | None = None) -> None:
        with self._session() as session:
            self._require_role(session, role_id)
            permission = self._require_permission(session, permission_id)
            if not permission.status:
                raise PreconditionError("permission is inactive; restore it before changing its grants")
            edge = self._active_role_permission(session, role_id, permission_id)
            if edge is None:
                raise PreconditionError("role has no active grant for this permission")
            edge.active = False
            session.add(edge)
            event_bus.publish_dict(
                "permission.revoked",
                {"role_id": role_id, "permission_id": permission_id, "assignment_id": edge.id},
                actor_id=actor_id,
                session=session,
            )
            session.commit()
            logger.info("permission revoked", extra={"role_id": role_id, "permission_id": permission_id})

    def restore_permission_to_role(
        self,
        role_id: str,
        permission_id: str,
        *,
        actor_id: str | None = None,
    ) -> RolePermissionAssignmentRead:
        with self._session() as session:
            self._require_role(session, role_id)
            permission = self._require_permission(session, permission_id)
            if self._active_role_permission(session, role_id, permission_id) is not None:
                raise ConflictError("permission is already granted to role")
            if not permission.status:
                raise PreconditionError("permission is inactive; restore it before changing its grants")
            edge = session.exec(
                select(RolePermissionAssignment)
                .where(RolePermissionAssignment.role_id == role_id)
                .where(RolePermissionAssignment.permission_id == permission_id)
                .where(col(RolePermissionAssignment.active).is_(False))
                .order_by(col(RolePermissionAssignment.assigned_at).desc())
            ).first()
            if edge is None:
                raise PreconditionError("role has no revoked grant for this permission")
            edge.active = True
            session.add(edge)
            event_bus.publish_dict(
                "permission.restored",
                {"role_id": role_id, "permission_id": permission_id, "assignment_id": edge.id},
                actor_id=actor_id,
                session=session,
            )
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("permission is already granted to role") from exc
            session.refresh(edge)
            logger.info("permission grant restored", extra={"role_id": role_id, "permission_id": permission_id})
            return _role_permission_read(edge, permission)

    def get_user_roles(self, user_id: str) -> list[UserRoleAssignmentRead]:
        with self._session() as session:
            self._require_user(session, user_id)
            rows = session.exec(
                select(UserRoleAssignment, Role)
                .join(Role, col(Role.id) == col(UserRoleAssignment.role_id))
                .where(UserRoleAssignment.user_id == user_id)
                .order_by(col(UserRoleAssignment.assigned_at), col(UserRoleAssignment.id))
            ).all()
            return [_user_role_read(edge, role) for edge, role in rows]

    def get_role_permissions(self, role_id: str) -> list[RolePermissionAssignmentRead]:
        with self._session() as session:
            self._require_role(session, role_id)
            rows = session.exec(
                select(RolePermissionAssignment, Permission)
                .join(Permission, col(Permission.id) == col(RolePermissionAssignment.permission_id))
                .where(RolePermissionAssignment.role_id == role_id)
                .order_by(col(RolePermissionAssignment.assigned_at), col(RolePermissionAssignment.id))
            ).all()
            return [_role_permission_read(edge, permission) for edge, permission in rows]

    def effective_permissions(self, user_id: str, now: datetime | None = None) -> list[PermissionRead]:
        return flatten_permissions(
            self.get_user_roles(user_id),
            self.get_role_permissions,
            now or now_utc(),
        )
