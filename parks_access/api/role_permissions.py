"""Role permission matrix API: the administrative editor and UI guard endpoints."""
from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Query

from parks_access.api.deps import CurrentPrincipal, PermissionsEditor, PermissionsViewer, Store, check_permission
from parks_access.errors import InvalidCapability
from parks_access.models.role import (
    AuditEntryResponse,
    PermissionCheckResponse,
    RoleGrantsResponse,
    RoleGrantsUpdate,
    RoleSummary,
)
from parks_access.rbac import MODULE_KEYS, PermissionAction, is_valid_role, list_actions, list_modules
from parks_access.services.store import MatrixStore

router = APIRouter()


def _role_response(store: MatrixStore, role: str) -> RoleGrantsResponse:
    matrix = store.get_matrix()
    return RoleGrantsResponse(
        role=role,
        version=matrix.version_of(role),
        editable=not store.is_protected(role),
        grants=sorted(cap.key for cap in matrix.grants_for(role)),
    )


@router.get("")
async def get_matrix(user: PermissionsViewer, store: Store):
    return store.get_matrix().to_document()


@router.put("")
async def replace_matrix(
    user: PermissionsEditor,
    store: Store,
    document: dict[str, dict[str, Any]] = Body(...),
):
    matrix = await store.replace_matrix(document, actor=user.subject)
    return {"message": "Permissions updated", "permissions": matrix.to_document()}


@router.post("")
async def save_matrix(
    user: PermissionsEditor,
    store: Store,
    permissions: dict[str, dict[str, Any]] = Body(..., embed=True),
):
    """Same as ``PUT`` with the document wrapped as ``{"permissions": {...}}``."""
    matrix = await store.replace_matrix(permissions, actor=user.subject)
    return {"message": "Permissions updated", "permissions": matrix.to_document()}


@router.get("/modules")
async def list_permission_modules(user: PermissionsViewer):
    return {
        "items": [module.as_dict() for module in list_modules()],
        "actions": [action.value for action in list_actions()],
    }


@router.get("/roles")
async def list_roles(user: PermissionsViewer, store: Store):
    matrix = store.get_matrix()
    items = [
        RoleSummary(
            key=role,
            version=matrix.version_of(role),
            grant_count=len(matrix.grants_for(role)),
            editable=not store.is_protected(role),
        ).model_dump()
        for role in matrix.roles()
    ]
    return {"items": items}


@router.get("/me")
async def my_permissions(user: CurrentPrincipal, store: Store):
    """Capabilities of the caller's role, for menus and buttons."""
    grants = store.get_matrix().grants_for(user.role)
    return {"role": user.role, "grants": sorted(cap.key for cap in grants)}


@router.get("/check", response_model=PermissionCheckResponse)
async def check(
    user: CurrentPrincipal,
    store: Store,
    module: str = Query(...),
    action: PermissionAction = Query(...),
):
    if module not in MODULE_KEYS:
        raise InvalidCapability(f"{module}.{action.value}")
    return PermissionCheckResponse(
        role=user.role,
        module=module,
        action=action.value,
        allowed=check_permission(store, user.role, module, action),
    )


@router.get("/audit", response_model=list[AuditEntryResponse])
async def audit_log(
    user: PermissionsViewer,
    store: Store,
    limit: int = Query(50, ge=1, le=500),
    role: str | None = Query(None),
):
    entries = await store.audit_log(limit=limit, role=role)
    return [AuditEntryResponse(**asdict(entry)) for entry in entries]


@router.post("/reset")
async def reset_to_defaults(user: PermissionsEditor, store: Store):
    matrix = await store.reset_to_defaults(actor=user.subject)
    return {"message": "Permissions restored to defaults", "permissions": matrix.to_document()}


@router.post("/reload")
async def reload_matrix(user: PermissionsEditor, store: Store):
    matrix = await store.reload()
    return {"degraded": store.degraded, "permissions": matrix.to_document()}


@router.get("/{role}", response_model=RoleGrantsResponse)
async def get_role(role: str, user: PermissionsViewer, store: Store):
    if not is_valid_role(role):
        raise HTTPException(status_code=404, detail="Role not found")
    return _role_response(store, role)


@router.put("/{role}", response_model=RoleGrantsResponse)
async def replace_role(role: str, data: RoleGrantsUpdate, user: PermissionsEditor, store: Store):
    await store.replace_role_grants(role, data.grants, expected_version=data.version, actor=user.subject)
    return _role_response(store, role)
