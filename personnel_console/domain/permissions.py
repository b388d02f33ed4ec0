from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any, Protocol

from personnel_console.domain.clock import as_utc

PERM_USERS_READ = "auth.users.read"
PERM_USERS_WRITE = "auth.users.write"
PERM_USERS_LOCK = "auth.users.lock"
PERM_ROLES_READ = "auth.roles.read"
PERM_ROLES_WRITE = "auth.roles.write"
PERM_PERMISSIONS_READ = "auth.permissions.read"
PERM_PERMISSIONS_WRITE = "auth.permissions.write"
PERM_ASSIGNMENTS_READ = "auth.assignments.read"
PERM_ASSIGNMENTS_WRITE = "auth.assignments.write"

# (module, resource, action, display name)
DEFAULT_PERMISSIONS: tuple[tuple[str, str, str, str], ...] = (
    ("auth", "users", "read", "View users"),
    ("auth", "users", "write", "Manage users"),
    ("auth", "users", "lock", "Suspend and block users"),
    ("auth", "roles", "read", "View roles"),
    ("auth", "roles", "write", "Manage roles"),
    ("auth", "permissions", "read", "View permissions"),
    ("auth", "permissions", "write", "Manage permissions"),
    ("auth", "assignments", "read", "View role and permission assignments"),
    ("auth", "assignments", "write", "Manage role and permission assignments"),
)


def permission_key(module: str, resource: str, action: str) -> str:
    return f"{module}.{resource}.{action}"


def has_permission(claims: dict[str, Any], permission: str) -> bool:
    permissions = claims.get("permissions", [])
    if not isinstance(permissions, list):
        return False
    return permission in permissions


class UserRoleEdge(Protocol):
    active: bool
    expiration_date: datetime | None

    @property
    def role(self) -> Any: ...


class RolePermissionEdge(Protocol):
    active: bool

    @property
    def permission(self) -> Any: ...


def role_edge_in_force(edge: UserRoleEdge, now: datetime) -> bool:
    if not edge.active:
        return False
    return edge.expiration_date is None or as_utc(edge.expiration_date) > as_utc(now)


def flatten_permissions(
    role_edges: Iterable[UserRoleEdge],
    permissions_for_role: Callable[[str], Iterable[RolePermissionEdge]],
    now: datetime,
) -> list[Any]:
    """Union of active permissions reachable through roles in force at ``now``.

    Permissions are compared by id only; first occurrence wins the ordering.
    """
    seen: dict[str, Any] = {}
    for role_edge in role_edges:
        if not role_edge_in_force(role_edge, now):
            continue
        for grant in permissions_for_role(role_edge.role.id):
            if not grant.active or not grant.permission.status:
                continue
            seen.setdefault(grant.permission.id, grant.permission)
    return list(seen.values())
