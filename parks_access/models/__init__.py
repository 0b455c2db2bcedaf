"""Beanie document models and Pydantic schemas."""
from parks_access.models.user import User, UserOut
from parks_access.models.role import (
    AuditEntryResponse,
    PermissionAuditEntry,
    PermissionCheckResponse,
    RoleGrantsResponse,
    RoleGrantsUpdate,
    RolePermissions,
    RoleSummary,
)

__all__ = [
    "User",
    "UserOut",
    "RolePermissions",
    "PermissionAuditEntry",
    "RoleGrantsUpdate",
    "RoleSummary",
    "RoleGrantsResponse",
    "PermissionCheckResponse",
    "AuditEntryResponse",
]
