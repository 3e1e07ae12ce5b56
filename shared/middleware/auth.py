"""
shared/middleware/auth.py
Identity/session dependencies. The bearer JWT is issued by the identity
provider; here it is verified, checked against the Redis deny-list and
turned into the `User` that routers hand to the managers as the actor.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.models.models import User, UserRole
from shared.utils.errors import UnauthorizedError
from shared.utils.security import verify_access_token

security = HTTPBearer(auto_error=False)


def _unauthenticated(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


@dataclass(frozen=True)
class TokenData:
    user_id: int
    role: UserRole
    email: str
    jti: str

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenData":
        return cls(
            user_id=int(payload["sub"]),
            role=UserRole(payload["role"]),
            email=payload["email"],
            jti=payload["jti"],
        )


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    redis=Depends(get_redis),
) -> TokenData:
    if not credentials:
        raise _unauthenticated("Authentication required")

    try:
        token_data = TokenData.from_payload(verify_access_token(credentials.credentials))
    except (JWTError, KeyError, ValueError):
        raise _unauthenticated("Invalid or expired token")

    if await RedisCache(redis).is_token_revoked(token_data.jti):
        raise _unauthenticated("Token has been revoked")
    return token_data


async def get_current_user(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> User:
    """The acting user; 401 if the account is gone, 403 if deactivated."""
    user = await db.get(User, token_data.user_id)
    if not user:
        raise _unauthenticated("User not found")
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )
    return user


class RoleRequired:
    """Dependency factory: the current user, restricted to the given roles."""

    def __init__(self, *roles: UserRole):
        self.roles = roles

    async def __call__(self, current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in self.roles:
            allowed = " or ".join(r.value for r in self.roles)
            raise UnauthorizedError(f"This action requires the {allowed} role")
        return current_user


require_client = RoleRequired(UserRole.CLIENT)
require_organizer = RoleRequired(UserRole.ORGANIZER)
require_provider = RoleRequired(UserRole.ORGANIZER, UserRole.SUPPLIER)
require_admin = RoleRequired(UserRole.ADMIN)
