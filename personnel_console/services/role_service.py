from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from personnel_console.domain.errors import ConflictError, NotFoundError, PreconditionError, ValidationError
from personnel_console.domain.models import Role, RoleCreate, RoleUpdate, now_utc
from personnel_console.infra.db import get_engine

logger = logging.getLogger(__name__)


class RoleService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_role(self, session: Session, role_id: str) -> Role:
        role = session.get(Role, role_id)
        if role is None:
            raise NotFoundError("role not found")
        return role

    def create_role(self, payload: RoleCreate) -> Role:
        name = payload.name.strip()
        if not name:
            raise ValidationError("role name is required")
        with self._session() as session:
            role = Role(name=name, description=payload.description)
            session.add(role)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("role name already exists") from exc
            session.refresh(role)
            logger.info("role created", extra={"role_id": role.id, "role_name": role.name})
            return role

    def list_roles(self, *, include_deleted: bool = False) -> list[Role]:
        with self._session() as session:
            statement = select(Role)
            if not include_deleted:
                statement = statement.where(col(Role.deleted_at).is_(None))
            return list(session.exec(statement.order_by(col(Role.name))).all())

    def get_role(self, role_id: str) -> Role:
        with self._session() as session:
            return self._get_role(session, role_id)

    def get_role_by_name(self, name: str) -> Role:
        with self._session() as session:
            role = session.exec(select(Role).where(Role.name == name)).first()
            if role is None:
                raise NotFoundError("role not found")
            return role

    def update_role(self, role_id: str, payload: RoleUpdate) -> Role:
        with self._session() as session:
            role = self._get_role(session, role_id)
            if payload.name is not None:
                if not payload.name.strip():
                    raise ValidationError("role name is required")
                role.name = payload.name.strip()
            if payload.description is not None:
                role.description = payload.description
            role.updated_at = now_utc()
            session.add(role)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("role name already exists") from exc
            session.refresh(role)
            return role

    def delete_role(self, role_id: str) -> Role:
        """Soft delete; assignments pointing at the role are left untouched."""
        with self._session() as session:
            role = self._get_role(session, role_id)
            if role.deleted_at is not None:
                raise PreconditionError("role is already deleted")
            role.deleted_at = now_utc()
            role.updated_at = role.deleted_at
            session.add(role)
            session.commit()
            session.refresh(role)
            logger.info("role deleted", extra={"role_id": role_id})
            return role

    def restore_role(self, role_id: str) -> Role:
        with self._session() as session:
            role = self._get_role(session, role_id)
            if role.deleted_at is None:
                raise PreconditionError("role is not deleted")
            role.deleted_at = None
            role.updated_at = now_utc()
            session.add(role)
            session.commit()
            session.refresh(role)
            logger.info("role restored", extra={"role_id": role_id})
            return role
