"""User API routes."""

import uuid

from fastapi import APIRouter, Depends, HTTPException

from pixelmap.api.auth import _users
from pixelmap.auth.dependencies import CurrentIdentity, get_current_user
from pixelmap.schemas.pixel import UserRead
from pixelmap.services.user_service import UserService

router = APIRouter(prefix="/user")


@router.get("/me", response_model=UserRead)
async def current_user(
    identity: CurrentIdentity = Depends(get_current_user),
    users: UserService = Depends(_users),
):
    """The caller's profile, including accrued points."""
    user = await users.get(uuid.UUID(identity.user_id))
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user
