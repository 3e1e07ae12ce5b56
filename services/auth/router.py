"""
services/auth/router.py
Session endpoints on top of the JWT issued by the identity provider:
who am I, and logout (deny-list the access token in Redis).
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.security import HTTPAuthorizationCredentials
from jose import JWTError

from config.redis_client import RedisCache, get_redis
from shared.middleware.auth import get_current_user, security
from shared.models.models import User
from shared.schemas.schemas import MessageResponse, UserResponse
from shared.utils.security import get_token_remaining_ttl, verify_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.get("/me", response_model=UserResponse, summary="Get current user")
async def get_me(current_user: User = Depends(get_current_user)):
    return UserResponse(
        id=current_user.id,
        email=current_user.email,
        full_name=current_user.full_name,
        phone=current_user.phone,
        role=current_user.role.value,
        is_active=current_user.is_active,
    )


@router.post("/logout", response_model=MessageResponse, summary="Logout user")
async def logout(
    current_user: User = Depends(get_current_user),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    redis=Depends(get_redis),
):
    """Add the current access token's JTI to the Redis deny-list until it expires."""
    try:
        payload = verify_access_token(credentials.credentials)
    except JWTError:
        logger.warning(f"Logout for user {current_user.id}: token no longer verifiable")
        return MessageResponse(message="Logged out")

    ttl = get_token_remaining_ttl(payload)
    if ttl > 0:
        await RedisCache(redis).revoke_token(payload["jti"], ttl)
    logger.info(f"User {current_user.id} logged out")
    return MessageResponse(message="Logged out")
