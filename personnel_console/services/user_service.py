from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from personnel_console.domain.clock import as_utc
from personnel_console.domain.errors import ConflictError, NotFoundError, PreconditionError, ValidationError
from personnel_console.domain.models import User, UserCreate, UserRead, UserUpdate, now_utc
from personnel_console.domain.reconciler import merge_user_listings
from personnel_console.domain.state_machine import (
    BlockMode,
    UserAction,
    UserStatus,
    require_future,
    require_reason,
    resolve_block_mode,
    transition_target,
)
from personnel_console.domain.temporal_lock import effective_status, lock_expired
from personnel_console.infra.auth import hash_password
from personnel_console.infra.db import get_engine
from personnel_console.infra.events import event_bus

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 200

_CLEARED_BLOCK = {"blocked_until": None, "block_reason": None}
_CLEARED_SUSPENSION = {"suspension_end": None, "suspension_reason": None}


class UserService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_user(self, session: Session, user_id: str) -> User:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("user not found")
        return user

    def _ensure_manager(self, session: Session, manager_id: str | None, user_id: str | None = None) -> None:
        if manager_id is None:
            return
        if manager_id == user_id:
            raise ValidationError("user cannot be their own direct manager")
        if session.get(User, manager_id) is None:
            raise NotFoundError("direct manager not found")

    def _write(
        self,
        session: Session,
        user: User,
        values: dict[str, Any],
        *,
        actor_id: str | None,
        now: datetime,
    ) -> User:
        """Persist ``values`` as the next version of ``user``.

        The row is only written if nobody else bumped the version since it
        was read; otherwise the caller gets a ConflictError.
        """
        expected_version = user.version
        statement = (
            sa.update(User)
            .where(col(User.id) == user.id)
            .where(col(User.version) == expected_version)
            .values(
                **values,
                version=expected_version + 1,
                updated_at=now,
                updated_by=actor_id,
            )
        )
        result = session.execute(statement)
        if int(getattr(result, "rowcount", 0) or 0) != 1:
            session.rollback()
            raise ConflictError("user was modified concurrently, reload and try again")
        return user

    def _transition(
        self,
        user_id: str,
        action: UserAction,
        *,
        actor_id: str | None,
        now: datetime,
        changes: dict[str, Any] | None = None,
        event_payload: dict[str, Any] | None = None,
    ) -> User:
        with self._session() as session:
            user = self._get_user(session, user_id)
            source = UserStatus(user.status)
            target = transition_target(source, action)
            self._write(
                session,
                user,
                {"status": target, **(changes or {})},
                actor_id=actor_id,
                now=now,
            )
            event_bus.publish_dict(
                f"user.{action.value}",
                {"user_id": user_id, "from": source.value, "to": target.value, **(event_payload or {})},
                actor_id=actor_id,
                session=session,
            )
            session.commit()
            session.refresh(user)
            logger.info(
                "user status changed",
                extra={"user_id": user_id, "action": action.value, "from": source.value, "to": target.value},
            )
            return user

    def to_read(self, user: User, now: datetime | None = None) -> UserRead:
        read = UserRead.model_validate(user)
        read.effective_status = effective_status(user, now or now_utc())
        return read

    def create_user(self, payload: UserCreate, actor_id: str | None = None) -> User:
        with self._session() as session:
            self._ensure_manager(session, payload.direct_manager_id)
            user = User(
                username=payload.username,
                password_hash=hash_password(payload.password),
                person_id=payload.person_id,
                direct_manager_id=payload.direct_manager_id,
                area_id=payload.area_id,
                position_id=payload.position_id,
                status=UserStatus.ACTIVE,
                updated_by=actor_id,
            )
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("username already exists") from exc
            session.refresh(user)
            logger.info("user created", extra={"user_id": user.id, "username": user.username})
            return user

    def get_user(self, user_id: str) -> User:
        with self._session() as session:
            return self._get_user(session, user_id)

    def get_user_by_username(self, username: str) -> User:
        with self._session() as session:
            user = session.exec(select(User).where(User.username == username)).first()
            if user is None:
                raise NotFoundError("user not found")
            return user

    def username_exists(self, username: str) -> bool:
        with self._session() as session:
            return session.exec(select(User.id).where(User.username == username)).first() is not None

    def list_users(self, status: UserStatus | None = None) -> list[User]:
        with self._session() as session:
            statement = select(User)
            if status is not None:
                statement = statement.where(User.status == status)
            return list(session.exec(statement.order_by(col(User.created_at), col(User.id))).all())

    def list_blocked_users(self, page: int = 0, size: int = DEFAULT_PAGE_SIZE) -> list[User]:
        if page < 0:
            raise ValidationError("page must not be negative")
        if size <= 0 or size > MAX_PAGE_SIZE:
            raise ValidationError(f"size must be between 1 and {MAX_PAGE_SIZE}")
        with self._session() as session:
            statement = (
                select(User)
                .where(User.status == UserStatus.BLOCKED)
                .order_by(col(User.created_at), col(User.id))
                .offset(page * size)
                .limit(size)
            )
            return list(session.exec(statement).all())

    def list_console_users(self, now: datetime | None = None) -> list[UserRead]:
        """General listing reconciled with the blocked-only listing.

        The two reads are independent and may observe different points in
        time; the merge tolerates that.
        """
        now = now or now_utc()
        all_users = [UserRead.model_validate(item) for item in self.list_users()]
        blocked = [UserRead.model_validate(item) for item in self.list_blocked_users(size=MAX_PAGE_SIZE)]
        merged = merge_user_listings(all_users, blocked)
        for item in merged:
            item.effective_status = effective_status(item, now)
        return merged

    def update_user(self, user_id: str, payload: UserUpdate, actor_id: str | None = None) -> User:
        now = now_utc()
        with self._session() as session:
            user = self._get_user(session, user_id)
            values: dict[str, Any] = {}
            fields = payload.model_fields_set
            if "direct_manager_id" in fields:
                self._ensure_manager(session, payload.direct_manager_id, user_id)
                values["direct_manager_id"] = payload.direct_manager_id
            for name in ("person_id", "area_id", "position_id"):
                if name in fields:
                    values[name] = getattr(payload, name)
            if "password" in fields and payload.password is not None:
                values["password_hash"] = hash_password(payload.password)
            if not values:
                return user
            self._write(session, user, values, actor_id=actor_id, now=now)
            session.commit()
            session.refresh(user)
            return user

    def mark_login(self, user_id: str, now: datetime | None = None) -> None:
        with self._session() as session:
            user = self._get_user(session, user_id)
            user.last_login = now or now_utc()
            session.add(user)
            session.commit()

    def suspend_user(
        self,
        user_id: str,
        *,
        reason: str | None,
        suspension_end: datetime | None = None,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> User:
        now = now or now_utc()
        self.get_user(user_id)
        cleaned = require_reason(reason)
        if suspension_end is not None:
            require_future(suspension_end, now, field="suspension_end")
            suspension_end = as_utc(suspension_end)
        return self._transition(
            user_id,
            UserAction.SUSPEND,
            actor_id=actor_id,
            now=now,
            changes={**_CLEARED_BLOCK, "suspension_reason": cleaned, "suspension_end": suspension_end},
            event_payload={"reason": cleaned, "suspension_end": suspension_end.isoformat() if suspension_end else None},
        )

    def unsuspend_user(self, user_id: str, *, actor_id: str | None = None, now: datetime | None = None) -> User:
        return self._transition(
            user_id,
            UserAction.UNSUSPEND,
            actor_id=actor_id,
            now=now or now_utc(),
            changes=dict(_CLEARED_SUSPENSION),
        )

    def block_user(
        self,
        user_id: str,
        *,
        reason: str | None,
        mode: BlockMode | None = None,
        duration_hours: int | None = None,
        blocked_until: datetime | None = None,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> User:
        """Block for a duration or until an instant.

        Either pass a resolved ``mode`` or the raw ``duration_hours`` /
        ``blocked_until`` pair; the user must exist before the pair is checked.
        """
        now = now or now_utc()
        self.get_user(user_id)
        if mode is None:
            mode = resolve_block_mode(duration_hours=duration_hours, blocked_until=blocked_until, now=now)
        cleaned = require_reason(reason)
        blocked_until = as_utc(mode.blocked_until(now))
        require_future(blocked_until, now, field="blocked_until")
        return self._transition(
            user_id,
            UserAction.BLOCK,
            actor_id=actor_id,
            now=now,
            changes={**_CLEARED_SUSPENSION, "block_reason": cleaned, "blocked_until": blocked_until},
            event_payload={"reason": cleaned, "blocked_until": blocked_until.isoformat()},
        )

    def unblock_user(self, user_id: str, *, actor_id: str | None = None, now: datetime | None = None) -> User:
        return self._transition(
            user_id,
            UserAction.UNBLOCK,
            actor_id=actor_id,
            now=now or now_utc(),
            changes=dict(_CLEARED_BLOCK),
        )

    def soft_delete_user(self, user_id: str, *, actor_id: str | None = None, now: datetime | None = None) -> User:
        return self._transition(user_id, UserAction.SOFT_DELETE, actor_id=actor_id, now=now or now_utc())

    def restore_user(self, user_id: str, *, actor_id: str | None = None, now: datetime | None = None) -> User:
        return self._transition(
            user_id,
            UserAction.RESTORE,
            actor_id=actor_id,
            now=now or now_utc(),
            changes={**_CLEARED_BLOCK, **_CLEARED_SUSPENSION},
        )

    def lift_restriction(self, user_id: str, *, actor_id: str | None = None, now: datetime | None = None) -> User:
        """Restore endpoint semantics: a suspended user is unsuspended, an inactive one reactivated."""
        status = UserStatus(self.get_user(user_id).status)
        if status == UserStatus.SUSPENDED:
            return self.unsuspend_user(user_id, actor_id=actor_id, now=now)
        if status == UserStatus.INACTIVE:
            return self.restore_user(user_id, actor_id=actor_id, now=now)
        raise PreconditionError(f"cannot restore a user in status {status.value}")

    def force_unblock_expired(self, *, actor_id: str | None = None, now: datetime | None = None) -> list[str]:
        """Revert every BLOCKED user whose lock window ended at or before ``now`` to ACTIVE."""
        now = now or now_utc()
        with self._session() as session:
            candidates = session.exec(
                select(User)
                .where(User.status == UserStatus.BLOCKED)
                .where(col(User.blocked_until).is_not(None))
                .where(col(User.blocked_until) <= now)
            ).all()
            expired_ids = [user.id for user in candidates if lock_expired(user, now)]

        unblocked: list[str] = []
        for user_id in expired_ids:
            try:
                self.unblock_user(user_id, actor_id=actor_id, now=now)
            except (ConflictError, PreconditionError):
                logger.warning("skipped expired lock changed by another writer", extra={"user_id": user_id})
                continue
            unblocked.append(user_id)
        logger.info(
            "expired locks reverted",
            extra={"unblocked_count": len(unblocked), "candidates": len(expired_ids)},
        )
        return unblocked
