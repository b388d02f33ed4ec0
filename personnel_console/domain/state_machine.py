from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum

from personnel_console.domain.clock import as_utc
from personnel_console.domain.errors import PreconditionError, ValidationError


class UserStatus(StrEnum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"
    BLOCKED = "BLOCKED"


class UserAction(StrEnum):
    SUSPEND = "suspend"
    UNSUSPEND = "unsuspend"
    BLOCK = "block"
    UNBLOCK = "unblock"
    SOFT_DELETE = "soft_delete"
    RESTORE = "restore"


ALLOWED_SOURCES: dict[UserAction, set[UserStatus]] = {
    UserAction.SUSPEND: {UserStatus.ACTIVE, UserStatus.SUSPENDED, UserStatus.BLOCKED},
    UserAction.UNSUSPEND: {UserStatus.SUSPENDED},
    UserAction.BLOCK: {UserStatus.ACTIVE, UserStatus.SUSPENDED, UserStatus.BLOCKED},
    UserAction.UNBLOCK: {UserStatus.BLOCKED},
    UserAction.SOFT_DELETE: set(UserStatus),
    UserAction.RESTORE: {UserStatus.INACTIVE},
}

TRANSITION_TARGETS: dict[UserAction, UserStatus] = {
    UserAction.SUSPEND: UserStatus.SUSPENDED,
    UserAction.UNSUSPEND: UserStatus.ACTIVE,
    UserAction.BLOCK: UserStatus.BLOCKED,
    UserAction.UNBLOCK: UserStatus.ACTIVE,
    UserAction.SOFT_DELETE: UserStatus.INACTIVE,
    UserAction.RESTORE: UserStatus.ACTIVE,
}


def can_apply(source: UserStatus, action: UserAction) -> bool:
    return source in ALLOWED_SOURCES.get(action, set())


def transition_target(source: UserStatus, action: UserAction) -> UserStatus:
    if not can_apply(source, action):
        raise PreconditionError(f"cannot {action.value.replace('_', ' ')} a user in status {source.value}")
    return TRANSITION_TARGETS[action]


@dataclass(frozen=True)
class BlockForHours:
    duration_hours: int

    def blocked_until(self, now: datetime) -> datetime:
        return now + timedelta(hours=self.duration_hours)


@dataclass(frozen=True)
class BlockUntil:
    until: datetime

    def blocked_until(self, now: datetime) -> datetime:
        return self.until


BlockMode = BlockForHours | BlockUntil


def require_reason(reason: str | None) -> str:
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationError("reason is required")
    return cleaned


def resolve_block_mode(
    *,
    duration_hours: int | None,
    blocked_until: datetime | None,
    now: datetime,
) -> BlockMode:
    """Turn the loosely-typed block options of a request into one ``BlockMode``.

    Exactly one of ``duration_hours`` and ``blocked_until`` must be given.
    """
    if duration_hours is None and blocked_until is None:
        raise ValidationError("block requires either duration_hours or blocked_until")
    if duration_hours is not None and blocked_until is not None:
        raise ValidationError("block accepts duration_hours or blocked_until, not both")
    if duration_hours is not None:
        if isinstance(duration_hours, bool) or duration_hours <= 0:
            raise ValidationError("duration_hours must be a positive integer")
        return BlockForHours(duration_hours=duration_hours)
    assert blocked_until is not None
    require_future(blocked_until, now, field="blocked_until")
    return BlockUntil(until=blocked_until)


def require_future(value: datetime, now: datetime, *, field: str) -> None:
    if as_utc(value) <= as_utc(now):
        raise ValidationError(f"{field} must be in the future")
