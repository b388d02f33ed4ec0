from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel

from personnel_console.domain.clock import now_utc
from personnel_console.domain.permissions import permission_key
from personnel_console.domain.state_machine import UserStatus


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    correlation_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    username: str = Field(index=True, unique=True)
    password_hash: str
    person_id: str | None = Field(default=None, index=True)
    status: UserStatus = Field(default=UserStatus.ACTIVE, index=True)
    blocked_until: datetime | None = Field(default=None, index=True)
    block_reason: str | None = None
    suspension_end: datetime | None = None
    suspension_reason: str | None = None
    direct_manager_id: str | None = Field(default=None, foreign_key="users.id")
    area_id: str | None = None
    position_id: str | None = None
    version: int = Field(default=1)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)
    updated_by: str | None = None
    last_login: datetime | None = None


class Role(SQLModel, table=True):
    __tablename__ = "roles"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    description: str | None = None
    deleted_at: datetime | None = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class Permission(SQLModel, table=True):
    __tablename__ = "permissions"
    __table_args__ = (
        UniqueConstraint("module", "resource", "action", name="uq_permissions_module_resource_action"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    module: str = Field(index=True)
    action: str = Field(index=True)
    resource: str = Field(index=True)
    display_name: str
    description: str | None = None
    status: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)

    @property
    def key(self) -> str:
        return permission_key(self.module, self.resource, self.action)


class UserRoleAssignment(SQLModel, table=True):
    __tablename__ = "user_role_assignments"
    __table_args__ = (
        Index(
            "uq_user_role_assignments_active_pair",
            "user_id",
            "role_id",
            unique=True,
            sqlite_where=text("active = 1"),
            postgresql_where=text("active"),
        ),
        Index("ix_user_role_assignments_user_role", "user_id", "role_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    role_id: str = Field(foreign_key="roles.id", index=True)
    assigned_at: datetime = Field(default_factory=now_utc, index=True)
    assigned_by: str | None = None
    expiration_date: datetime | None = None
    active: bool = Field(default=True)


class RolePermissionAssignment(SQLModel, table=True):
    __tablename__ = "role_permission_assignments"
    __table_args__ = (
        Index(
            "uq_role_permission_assignments_active_pair",
            "role_id",
            "permission_id",
            unique=True,
            sqlite_where=text("active = 1"),
            postgresql_where=text("active"),
        ),
        Index("ix_role_permission_assignments_role_permission", "role_id", "permission_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    role_id: str = Field(foreign_key="roles.id", index=True)
    permission_id: str = Field(foreign_key="permissions.id", index=True)
    assigned_at: datetime = Field(default_factory=now_utc, index=True)
    assigned_by: str | None = None
    active: bool = Field(default=True)


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any]


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class UserCreate(BaseModel):
    username: str
    password: str
    person_id: str | None = None
    direct_manager_id: str | None = None
    area_id: str | None = None
    position_id: str | None = None


class UserUpdate(BaseModel):
    password: str | None = None
    person_id: str | None = None
    direct_manager_id: str | None = None
    area_id: str | None = None
    position_id: str | None = None


class UserRead(ORMReadModel):
    id: str
    username: str
    person_id: str | None = None
    status: UserStatus
    effective_status: UserStatus | None = None
    blocked_until: datetime | None = None
    block_reason: str | None = None
    suspension_end: datetime | None = None
    suspension_reason: str | None = None
    direct_manager_id: str | None = None
    area_id: str | None = None
    position_id: str | None = None
    version: int
    created_at: datetime
    updated_at: datetime
    updated_by: str | None = None
    last_login: datetime | None = None


class UserSuspendRequest(BaseModel):
    reason: str | None = None
    suspension_end: datetime | None = None


class UserBlockRequest(BaseModel):
    reason: str | None = None
    blocked_until: datetime | None = None
    duration_hours: int | None = None


class UsernameExistsRead(BaseModel):
    username: str
    exists: bool


class ForceUnblockRead(BaseModel):
    unblocked_count: int
    user_ids: list[str]


class RoleCreate(BaseModel):
    name: str
    description: str | None = None


class RoleUpdate(BaseModel):
    name: str | None = None
    description: str | None = None


class RoleRead(ORMReadModel):
    id: str
    name: str
    description: str | None = None
    deleted_at: datetime | None = None
    created_at: datetime


class PermissionCreate(BaseModel):
    module: str
    action: str
    resource: str
    display_name: str
    description: str | None = None


class PermissionUpdate(BaseModel):
    display_name: str | None = None
    description: str | None = None


class PermissionRead(ORMReadModel):
    id: str
    key: str
    module: str
    action: str
    resource: str
    display_name: str
    description: str | None = None
    status: bool
    created_at: datetime


class UserRoleAssignRequest(BaseModel):
    expiration_date: datetime | None = None


class UserRoleAssignmentRead(ORMReadModel):
    id: str
    user_id: str
    role_id: str
    assigned_at: datetime
    assigned_by: str | None = None
    expiration_date: datetime | None = None
    active: bool
    role: RoleRead
    removable: bool


class RolePermissionAssignmentRead(ORMReadModel):
    id: str
    role_id: str
    permission_id: str
    assigned_at: datetime
    assigned_by: str | None = None
    active: bool
    permission: PermissionRead
    frozen: bool
    removable: bool
    restorable: bool


class EffectivePermissionsRead(BaseModel):
    user_id: str
    evaluated_at: datetime
    keys: list[str]
    permissions: list[PermissionRead]


class LoginRequest(BaseModel):
    username: str
    password: str


class BootstrapAdminRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    permissions: list[str] = PydanticField(default_factory=list)
