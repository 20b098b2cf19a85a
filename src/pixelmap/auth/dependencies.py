"""FastAPI auth dependencies.

Learn: Used as Depends() in route handlers (or at include_router level)
to extract and validate the current user from the Authorization header.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException

from pixelmap.auth.jwt import TokenError, verify_token


class CurrentIdentity:
    """The authenticated user making the request."""

    def __init__(self, user_id: str):
        self.user_id = user_id

    def __repr__(self) -> str:
        return f"<CurrentIdentity {self.user_id}>"


async def get_current_user_optional(
    authorization: Optional[str] = Header(None),
) -> Optional[CurrentIdentity]:
    """Soft auth: None when no bearer token was sent."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    try:
        payload = verify_token(authorization[7:])
    except TokenError as e:
        raise HTTPException(
            status_code=401,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
    return CurrentIdentity(user_id=payload["sub"])


async def get_current_user(
    identity: Optional[CurrentIdentity] = Depends(get_current_user_optional),
) -> CurrentIdentity:
    """Hard auth: 401 if no valid bearer token."""
    if not identity:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity
