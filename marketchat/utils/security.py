"""
JWT helpers shared with the auth service.

Tokens are signed with `settings.jwt_secret` and carry the user id in
`userId`, the claim the auth service issues.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from marketchat.core.config import settings


def create_access_token(user_id: str, expires_minutes: Optional[int] = None) -> str:
    """
    Issue an access token the same way the auth service does.

    Args:
        user_id: Subject of the token
        expires_minutes: Lifetime override; defaults to settings

    Returns:
        Encoded JWT
    """
    now = datetime.now(timezone.utc)
    lifetime = settings.access_token_expire_minutes if expires_minutes is None else expires_minutes
    payload = {
        "userId": str(user_id),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=lifetime)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and validate a JWT access token.

    Returns:
        Decoded payload if valid, None if the signature or expiry check fails
    """
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def looks_like_jwt(token: str) -> bool:
    parts = token.split(".")
    return len(parts) == 3 and all(parts)
