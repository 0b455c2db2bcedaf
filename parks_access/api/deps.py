"""Shared dependencies: JWT auth and permission guards."""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Annotated, Optional

import bcrypt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from parks_access.config import settings
from parks_access.errors import InvalidCapability
from parks_access.rbac import ACTION_BY_METHOD, MODULE_KEYS, PermissionAction, make_capability
from parks_access.services.store import MatrixStore

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

DENIED_MESSAGE = "You do not have permission to perform this action."


@dataclass(frozen=True)
class Principal:
    subject: str
    role: str


def verify_password(plain: str, hashed: str) -> bool:
    return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def create_access_token(subject: str, role: str) -> str:
    expire = datetime.utcnow() + timedelta(minutes=settings.jwt_access_token_expire_minutes)
    to_encode = {"sub": subject, "role": role, "exp": expire, "type": "access"}
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_refresh_token(subject: str) -> str:
    expire = datetime.utcnow() + timedelta(days=settings.jwt_refresh_token_expire_days)
    to_encode = {"sub": subject, "exp": expire, "type": "refresh"}
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def get_store(request: Request) -> MatrixStore:
    return request.app.state.matrix_store


async def get_current_principal(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Principal:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = jwt.decode(credentials.credentials, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    subject = payload.get("sub")
    role = payload.get("role")
    if not subject or not role or payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token")
    return Principal(subject=subject, role=role)


def check_permission(store: MatrixStore, role: str, module: str, action: PermissionAction | str) -> bool:
    """Fail-closed decision: any error while evaluating counts as denied."""
    try:
        return store.has_permission(role, module, action)
    except Exception:
        logger.exception("Permission check failed for %s on %s.%s; denying", role, module, action)
        return False


def require_permission(module: str, action: PermissionAction):
    # a misspelled module must break at import time, not deny every request
    make_capability(module, action)

    async def checker(
        principal: Annotated[Principal, Depends(get_current_principal)],
        store: Annotated[MatrixStore, Depends(get_store)],
    ) -> Principal:
        if not check_permission(store, principal.role, module, action):
            raise HTTPException(status_code=403, detail=DENIED_MESSAGE)
        return principal

    return checker


def require_module_permission(module: str):
    if module not in MODULE_KEYS:
        raise InvalidCapability(module)

    async def checker(
        request: Request,
        principal: Annotated[Principal, Depends(get_current_principal)],
        store: Annotated[MatrixStore, Depends(get_store)],
    ) -> Principal:
        method = request.method.upper()
        action = ACTION_BY_METHOD.get(method)
        if not action:
            raise HTTPException(status_code=405, detail=f"Unsupported method for permission check: {method}")
        if not check_permission(store, principal.role, module, action):
            raise HTTPException(status_code=403, detail=DENIED_MESSAGE)
        return principal

    return checker


# Type aliases for route injection
CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
Store = Annotated[MatrixStore, Depends(get_store)]
PermissionsViewer = Annotated[Principal, Depends(require_permission("permissions", PermissionAction.VIEW))]
PermissionsEditor = Annotated[Principal, Depends(require_permission("permissions", PermissionAction.EDIT))]
