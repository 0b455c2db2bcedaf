"""JWT-based stateless authentication."""
from beanie import PydanticObjectId
from beanie.exceptions import CollectionWasNotInitialized
from bson.errors import InvalidId
from fastapi import APIRouter, HTTPException
from jose import JWTError, jwt
from pydantic import BaseModel
from pymongo.errors import PyMongoError

from parks_access.api.deps import (
    CurrentPrincipal,
    create_access_token,
    create_refresh_token,
    verify_password,
)
from parks_access.config import settings
from parks_access.errors import StorageUnavailable
from parks_access.models.user import User, UserOut

router = APIRouter()


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class LoginRequest(BaseModel):
    email: str
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


async def _load_user(*, email: str | None = None, user_id: str | None = None) -> User | None:
    try:
        if email is not None:
            return await User.find_one({"email": email})
        return await User.get(PydanticObjectId(user_id))
    except InvalidId:
        return None
    except (PyMongoError, CollectionWasNotInitialized) as exc:
        raise StorageUnavailable("User directory is unavailable") from exc


def _tokens_for(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(str(user.id), user.role.value),
        refresh_token=create_refresh_token(str(user.id)),
    )


@router.post("/login", response_model=TokenResponse)
async def login(req: LoginRequest):
    user = await _load_user(email=req.email)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not verify_password(req.password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _tokens_for(user)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(req: RefreshRequest):
    try:
        payload = jwt.decode(req.refresh_token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise HTTPException(status_code=401, detail="Expired or invalid refresh token")
    if payload.get("type") != "refresh":
        raise HTTPException(status_code=401, detail="Invalid token type")
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid refresh token")

    user = await _load_user(user_id=user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return _tokens_for(user)


@router.get("/me", response_model=UserOut)
async def me(principal: CurrentPrincipal):
    user = await _load_user(user_id=principal.subject)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return UserOut(
        id=str(user.id),
        email=user.email,
        role=user.role,
        full_name=user.full_name,
        is_active=user.is_active,
    )
