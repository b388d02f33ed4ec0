from __future__ import annotations

from datetime import UTC, datetime

from personnel_console.domain.models import UserRead
from personnel_console.domain.reconciler import merge_user_listings
from personnel_console.domain.state_machine import UserStatus

CREATED = datetime(2026, 1, 1, tzinfo=UTC)


def _user(user_id: str, status: UserStatus, **fields: object) -> UserRead:
    return UserRead(
        id=user_id,
        username=f"user-{user_id}",
        status=status,
        version=1,
        created_at=CREATED,
        updated_at=CREATED,
        **fields,
    )


def test_overlay_and_append_blocked_only_records() -> None:
    all_users = [_user("1", UserStatus.ACTIVE)]
    blocked = [_user("1", UserStatus.BLOCKED), _user("2", UserStatus.BLOCKED)]

    merged = merge_user_listings(all_users, blocked)

    assert [item.id for item in merged] == ["1", "2"]
    assert all(item.status == UserStatus.BLOCKED for item in merged)


def test_overlay_keeps_fields_from_general_listing() -> None:
    all_users = [_user("1", UserStatus.ACTIVE, area_id="area-from-listing")]
    blocked = [_user("1", UserStatus.BLOCKED, area_id="stale-area")]

    merged = merge_user_listings(all_users, blocked)

    assert merged[0].area_id == "area-from-listing"
    assert merged[0].status == UserStatus.BLOCKED
    assert all_users[0].status == UserStatus.ACTIVE


def test_general_only_ids_keep_their_status_and_order() -> None:
    all_users = [
        _user("a", UserStatus.SUSPENDED),
        _user("b", UserStatus.ACTIVE),
        _user("c", UserStatus.INACTIVE),
    ]
    merged = merge_user_listings(all_users, [_user("b", UserStatus.BLOCKED)])

    assert [(item.id, item.status) for item in merged] == [
        ("a", UserStatus.SUSPENDED),
        ("b", UserStatus.BLOCKED),
        ("c", UserStatus.INACTIVE),
    ]


def test_duplicates_in_blocked_listing_collapse() -> None:
    blocked = [_user("x", UserStatus.BLOCKED), _user("x", UserStatus.BLOCKED)]
    merged = merge_user_listings([], blocked)
    assert [item.id for item in merged] == ["x"]


def test_blocked_listing_record_with_stale_status_is_forced_blocked() -> None:
    merged = merge_user_listings([], [_user("z", UserStatus.ACTIVE)])
    assert merged[0].status == UserStatus.BLOCKED
