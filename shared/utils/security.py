"""
shared/utils/security.py
Access tokens. Every token carries a `jti` so logout can deny-list it
until it would have expired anyway.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from config.settings import settings

ACCESS_TOKEN_TYPE = "access"


def create_access_token(
    user_id: int,
    role: str,
    email: str,
    extra: Optional[dict] = None,
) -> tuple[str, str]:
    """Returns (token, jti)."""
    jti = str(uuid.uuid4())
    issued_at = datetime.now(timezone.utc)
    claims = {
        **(extra or {}),
        "sub": str(user_id),
        "role": role,
        "email": email,
        "jti": jti,
        "iat": issued_at,
        "exp": issued_at + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
        "type": ACCESS_TOKEN_TYPE,
    }
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM), jti


def verify_access_token(token: str) -> dict:
    """Decode and verify signature, expiry and required claims. Raises JWTError."""
    payload = jwt.decode(
        token,
        settings.JWT_SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
        options={"require_sub": True, "require_jti": True, "require_exp": True},
    )
    if payload.get("type") != ACCESS_TOKEN_TYPE:
        raise JWTError("Invalid token type")
    return payload


def get_token_remaining_ttl(payload: dict) -> int:
    """Seconds until the token expires, never negative."""
    remaining = payload.get("exp", 0) - datetime.now(timezone.utc).timestamp()
    return max(0, int(remaining))
