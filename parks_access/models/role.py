"""Role permission documents and API schemas."""
from __future__ import annotations

from datetime import datetime

from beanie import Document, Indexed
from pydantic import BaseModel, Field


class RolePermissions(Document):
    """One role's granted capabilities, stored as ``"module.action"`` keys."""

    role: Indexed(str, unique=True)
    grants: list[str] = Field(default_factory=list)
    version: int = 1
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    updated_by: str | None = None

    class Settings:
        name = "role_permissions"
        use_state_management = True


class PermissionAuditEntry(Document):
    role: str
    action: str  # "update" | "reset" | "seed"
    granted: list[str] = Field(default_factory=list)
    revoked: list[str] = Field(default_factory=list)
    version: int
    performed_by: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "permission_audit"


class RoleGrantsUpdate(BaseModel):
    grants: list[str] = Field(default_factory=list)
    version: int | None = None


class RoleSummary(BaseModel):
    key: str
    version: int
    grant_count: int
    editable: bool


class RoleGrantsResponse(BaseModel):
    role: str
    version: int
    editable: bool
    grants: list[str]


class PermissionCheckResponse(BaseModel):
    role: str
    module: str
    action: str
    allowed: bool


class AuditEntryResponse(BaseModel):
    role: str
    action: str
    granted: list[str]
    revoked: list[str]
    version: int
    performed_by: str | None = None
    created_at: datetime

