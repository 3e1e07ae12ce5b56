"""
services/review/router.py
Review endpoints: clients review completed bookings, admins remove
reviews, anyone signed in can read a provider's reviews.
"""

from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.review import service as review_service
from shared.middleware.auth import get_current_user, require_admin, require_client
from shared.models.models import User
from shared.schemas.schemas import (
    MessageResponse,
    ReviewCreateRequest,
    ReviewResponse,
    ReviewUpdateRequest,
)
from shared.utils.providers import ProviderRef

router = APIRouter(prefix="/reviews", tags=["Reviews"])


@router.post("", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
async def create_review(
    data: ReviewCreateRequest,
    current_user: User = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    """Review a completed booking. One review per booking."""
    return await review_service.create_review(
        db, current_user, data.booking_id, data.rating, data.review_text
    )


@router.put("/{review_id}", response_model=ReviewResponse)
async def edit_review(
    review_id: int,
    data: ReviewUpdateRequest,
    current_user: User = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    return await review_service.edit_review(
        db, review_id, current_user, data.rating, data.review_text
    )


@router.delete("/{review_id}", response_model=MessageResponse)
async def delete_review(
    review_id: int,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await review_service.delete_review(db, review_id, current_user)
    return MessageResponse(message="Review deleted")


@router.get("/providers/{provider_type}/{provider_id}", response_model=List[ReviewResponse])
async def list_provider_reviews(
    provider_type: str,
    provider_id: int,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ref = ProviderRef.parse(provider_type, provider_id)
    return await review_service.list_provider_reviews(db, ref, limit, offset)


@router.get("/booking/{booking_id}", response_model=ReviewResponse)
async def get_booking_review(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await review_service.get_booking_review(db, booking_id)
