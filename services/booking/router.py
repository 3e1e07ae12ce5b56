"""
services/booking/router.py
Booking endpoints. Thin transport over services/booking/service.py.
Status changes hold a short Redis lock per booking so two actors
cannot run the same transition side by side.
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from services.booking import service as booking_service
from shared.middleware.auth import get_current_user, require_client
from shared.models.models import User
from shared.schemas.schemas import (
    BookingCreateRequest,
    BookingResponse,
    BookingStatusRequest,
    BookingTransitionResponse,
)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    current_user: User = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    """Book a service for one of the client's events."""
    booking = await booking_service.create_booking(
        db,
        current_user,
        service_id=data.service_id,
        event_id=data.event_id,
        quote_amount=data.quote_amount,
        service_details=data.service_details,
        client_notes=data.client_notes,
    )
    return booking


@router.get("", response_model=List[BookingResponse])
async def list_bookings(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await booking_service.list_bookings(db, current_user, status_filter, limit, offset)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await booking_service.get_booking(db, booking_id, current_user)


@router.post("/{booking_id}/status", response_model=BookingTransitionResponse)
async def update_booking_status(
    booking_id: int,
    data: BookingStatusRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Move a booking to a new status. Provider confirms, rejects, completes
    or cancels; client cancels; admin may reset terminal bookings.
    """
    holder = f"{current_user.id}:{uuid.uuid4()}"
    async with RedisCache(redis).booking_lock(booking_id, holder):
        result = await booking_service.transition_booking(
            db,
            booking_id,
            data.status,
            current_user,
            notes=data.notes,
            final_amount=data.final_amount,
        )

    return BookingTransitionResponse(
        booking=BookingResponse.model_validate(result.booking),
        event_status=result.event_status.value if result.event_status else None,
        changed=result.changed,
    )
