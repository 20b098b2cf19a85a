"""Auth API: registration, login, token refresh.

Learn: Routes for user authentication:
- POST /auth/register → create a new user account
- POST /auth/login → email/password → JWT tokens
- POST /auth/refresh → refresh token → new access token
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from pixelmap.auth.jwt import (
    TokenError,
    create_access_token,
    create_refresh_token,
    verify_token,
)
from pixelmap.auth.password import hash_password, verify_password
from pixelmap.db.engine import get_db
from pixelmap.db.models import User
from pixelmap.schemas.pixel import UserRead
from pixelmap.services.user_service import EmailTakenError, UserService

router = APIRouter(prefix="/auth")


# ─── Schemas ─────────────────────────────────────────────


class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    name: str = Field(..., min_length=1, max_length=100)
    password: str = Field(min_length=8)


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshRequest(BaseModel):
    refresh_token: str


def _users(db: AsyncSession = Depends(get_db)) -> UserService:
    return UserService(db)


def _tokens_for(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(str(user.id)),
        refresh_token=create_refresh_token(str(user.id)),
    )


# ─── Register / Login ────────────────────────────────────


@router.post("/register", response_model=UserRead, status_code=201)
async def register(body: RegisterRequest, users: UserService = Depends(_users)):
    """Create a new user account."""
    try:
        return await users.create(
            email=body.email,
            name=body.name,
            password_hash=hash_password(body.password),
        )
    except EmailTakenError:
        raise HTTPException(status_code=409, detail="Email already registered")


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, users: UserService = Depends(_users)):
    """Login with email and password → JWT tokens."""
    user = await users.get_by_email(body.email)

    if not user or not user.password_hash:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not verify_password(body.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    return _tokens_for(user)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshRequest, users: UserService = Depends(_users)):
    """Exchange a refresh token for a fresh token pair."""
    try:
        payload = verify_token(body.refresh_token, expected_type="refresh")
    except TokenError as e:
        raise HTTPException(status_code=401, detail=str(e))

    try:
        user_id = uuid.UUID(payload["sub"])
    except (KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token subject")

    user = await users.get(user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User no longer exists")
    return _tokens_for(user)
