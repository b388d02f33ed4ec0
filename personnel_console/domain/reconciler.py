from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Protocol, TypeVar

from personnel_console.domain.state_machine import UserStatus


class ListedUser(Protocol):
    id: str
    status: UserStatus

    def model_copy(self, *, update: dict[str, Any] | None = None, deep: bool = False) -> Any: ...


UserT = TypeVar("UserT", bound=ListedUser)


def merge_user_listings(all_users: Iterable[UserT], blocked_users: Iterable[UserT]) -> list[UserT]:
    """Read-repair the general user listing with the blocked-only listing.

    The two listings are fetched independently and may disagree. Ids seen in
    ``blocked_users`` always come out BLOCKED; the rest keep their status.
    Order follows ``all_users``, with blocked-only ids appended.
    """
    index: dict[str, UserT] = {}
    for user in all_users:
        index[user.id] = user
    for blocked in blocked_users:
        base = index.get(blocked.id, blocked)
        if base is blocked and blocked.status == UserStatus.BLOCKED:
            index[blocked.id] = blocked
            continue
        index[blocked.id] = base.model_copy(update={"status": UserStatus.BLOCKED})
    return list(index.values())
