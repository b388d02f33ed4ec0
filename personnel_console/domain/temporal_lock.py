from __future__ import annotations

from datetime import datetime
from typing import Protocol

from personnel_console.domain.clock import as_utc
from personnel_console.domain.state_machine import UserStatus


class LockedAccount(Protocol):
    status: UserStatus
    blocked_until: datetime | None


def lock_in_force(blocked_until: datetime | None, now: datetime) -> bool:
    return blocked_until is not None and as_utc(blocked_until) > as_utc(now)


def lock_expired(account: LockedAccount, now: datetime) -> bool:
    """A stored BLOCKED status whose lock window has already elapsed."""
    if UserStatus(account.status) != UserStatus.BLOCKED:
        return False
    return account.blocked_until is not None and not lock_in_force(account.blocked_until, now)


def effective_status(account: LockedAccount, now: datetime) -> UserStatus:
    """Status as it should be presented at ``now``.

    A lock that is still in force wins over whatever status is stored. The
    record itself is never touched here; expired locks are reverted only by
    the force-unblock sweep.
    """
    if lock_in_force(account.blocked_until, now):
        return UserStatus.BLOCKED
    return UserStatus(account.status)
