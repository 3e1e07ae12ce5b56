"""
services/rating/router.py
Read a provider's stored rating aggregate; admins can force a
recompute for one provider or a full repair pass.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.rating import service as rating_service
from shared.middleware.auth import get_current_user, require_admin
from shared.models.models import User
from shared.schemas.schemas import RatingRepairResponse, RatingResponse
from shared.utils.errors import NotFoundError
from shared.utils.providers import ProviderRef, resolve_provider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ratings", tags=["Ratings"])


def _rating_response(ref: ProviderRef, aggregate) -> RatingResponse:
    return RatingResponse(
        provider_type=ref.provider_type.value,
        provider_id=ref.provider_id,
        average_rating=aggregate.average_rating,
        total_reviews=aggregate.total_reviews,
    )


@router.get("/{provider_type}/{provider_id}", response_model=RatingResponse)
async def get_rating(
    provider_type: str,
    provider_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ref = ProviderRef.parse(provider_type, provider_id)
    aggregate = await rating_service.get_provider_rating(db, ref)
    if aggregate is None:
        raise NotFoundError("Provider not found")
    return _rating_response(ref, aggregate)


@router.post("/{provider_type}/{provider_id}/recompute", response_model=RatingResponse)
async def recompute_rating(
    provider_type: str,
    provider_id: int,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    ref = ProviderRef.parse(provider_type, provider_id)
    if await resolve_provider(db, ref) is None:
        raise NotFoundError("Provider not found")
    aggregate = await rating_service.recompute_provider_rating(db, ref)
    await db.commit()
    return _rating_response(ref, aggregate)


@router.post("/repair", response_model=RatingRepairResponse)
async def repair_ratings(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Full recompute over every organizer, supplier and service."""
    processed = await rating_service.recompute_all_ratings(db)
    await db.commit()
    logger.info(f"Rating repair by admin {current_user.id}: {processed} providers")
    return RatingRepairResponse(providers_processed=processed)
