from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from personnel_console.domain.errors import ConflictError, NotFoundError, PreconditionError, ValidationError
from personnel_console.domain.models import Permission, PermissionCreate, PermissionUpdate, now_utc
from personnel_console.domain.permissions import DEFAULT_PERMISSIONS
from personnel_console.infra.db import get_engine

logger = logging.getLogger(__name__)


class PermissionService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_permission(self, session: Session, permission_id: str) -> Permission:
        permission = session.get(Permission, permission_id)
        if permission is None:
            raise NotFoundError("permission not found")
        return permission

    def ensure_default_permissions(self, session: Session) -> list[Permission]:
        existing = session.exec(select(Permission)).all()
        by_key = {item.key: item for item in existing}
        created: list[Permission] = []
        for module, resource, action, display_name in DEFAULT_PERMISSIONS:
            candidate = Permission(module=module, resource=resource, action=action, display_name=display_name)
            if candidate.key in by_key:
                continue
            session.add(candidate)
            created.append(candidate)
        if created:
            session.commit()
            for permission in created:
                session.refresh(permission)
        return list(session.exec(select(Permission)).all())

    def create_permission(self, payload: PermissionCreate) -> Permission:
        parts = {
            "module": payload.module.strip(),
            "resource": payload.resource.strip(),
            "action": payload.action.strip(),
        }
        empty = [name for name, value in parts.items() if not value]
        if empty:
            raise ValidationError(f"{', '.join(empty)} must not be empty")
        with self._session() as session:
            permission = Permission(
                **parts,
                display_name=payload.display_name,
                description=payload.description,
            )
            session.add(permission)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("permission already exists") from exc
            session.refresh(permission)
            logger.info("permission created", extra={"permission_id": permission.id, "key": permission.key})
            return permission

    def list_permissions(self, *, active_only: bool = False) -> list[Permission]:
        with self._session() as session:
            statement = select(Permission)
            if active_only:
                statement = statement.where(col(Permission.status).is_(True))
            statement = statement.order_by(col(Permission.module), col(Permission.resource), col(Permission.action))
            return list(session.exec(statement).all())

    def search_permissions(
        self,
        *,
        module: str | None = None,
        action: str | None = None,
        resource: str | None = None,
    ) -> list[Permission]:
        with self._session() as session:
            statement = select(Permission)
            if module:
                statement = statement.where(Permission.module == module)
            if action:
                statement = statement.where(Permission.action == action)
            if resource:
                statement = statement.where(Permission.resource == resource)
            statement = statement.order_by(col(Permission.module), col(Permission.resource), col(Permission.action))
            return list(session.exec(statement).all())

    def get_permission(self, permission_id: str) -> Permission:
        with self._session() as session:
            return self._get_permission(session, permission_id)

    def update_permission(self, permission_id: str, payload: PermissionUpdate) -> Permission:
        with self._session() as session:
            permission = self._get_permission(session, permission_id)
            if payload.display_name is not None:
                permission.display_name = payload.display_name
            if payload.description is not None:
                permission.description = payload.description
            permission.updated_at = now_utc()
            session.add(permission)
            session.commit()
            session.refresh(permission)
            return permission

    def delete_permission(self, permission_id: str) -> Permission:
        """Deactivate a permission. Grants stay in place but become frozen."""
        with self._session() as session:
            permission = self._get_permission(session, permission_id)
            if not permission.status:
                raise PreconditionError("permission is already inactive")
            permission.status = False
            permission.updated_at = now_utc()
            session.add(permission)
            session.commit()
            session.refresh(permission)
            logger.info("permission deactivated", extra={"permission_id": permission_id})
            return permission

    def restore_permission(self, permission_id: str) -> Permission:
        with self._session() as session:
            permission = self._get_permission(session, permission_id)
            if permission.status:
                raise PreconditionError("permission is already active")
            permission.status = True
            permission.updated_at = now_utc()
            session.add(permission)
            session.commit()
            session.refresh(permission)
            logger.info("permission reactivated", extra={"permission_id": permission_id})
            return permission
