"""JWT token creation and verification.

Learn: JWT (JSON Web Token) provides stateless authentication.
- Access token: short-lived (60min), used for API calls and the socket
- Refresh token: long-lived (30 days), used to get new access tokens
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from pixelmap.config import settings


class TokenError(Exception):
    """Raised when token creation/verification fails."""


def _encode(user_id: str, token_type: str, lifetime: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "type": token_type,
        "exp": now + lifetime,
        "iat": now,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(user_id: str, expires_minutes: Optional[int] = None) -> str:
    return _encode(
        user_id,
        "access",
        timedelta(minutes=expires_minutes or settings.access_token_expire_minutes),
    )


def create_refresh_token(user_id: str, expires_days: Optional[int] = None) -> str:
    return _encode(
        user_id,
        "refresh",
        timedelta(days=expires_days or settings.refresh_token_expire_days),
    )


def verify_token(token: str, expected_type: str = "access") -> dict:
    """Verify and decode a JWT token.

    Returns the payload dict on success.
    Raises TokenError on failure or when the token type doesn't match.
    """
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")

    if payload.get("type") != expected_type:
        raise TokenError(f"Expected {expected_type} token")
    return payload
