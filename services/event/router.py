"""
services/event/router.py
Event endpoints for clients (create/edit/delete) and the assigned
organizer (status, detach). Rules live in services/event/service.py.
"""

from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.event import service as event_service
from shared.middleware.auth import get_current_user, require_client, require_organizer
from shared.models.models import User
from shared.schemas.schemas import (
    EventCreateRequest,
    EventResponse,
    EventStatusRequest,
    EventUpdateRequest,
    MessageResponse,
)

router = APIRouter(prefix="/events", tags=["Events"])


@router.post("", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event(
    data: EventCreateRequest,
    current_user: User = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    return await event_service.create_event(db, current_user, data.model_dump())


@router.get("", response_model=List[EventResponse])
async def list_events(
    upcoming: bool = Query(False),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Client: own events. Organizer: events assigned to it."""
    return await event_service.list_events(db, current_user, upcoming_only=upcoming)


@router.get("/{event_id}", response_model=EventResponse)
async def get_event(
    event_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await event_service.get_event(db, event_id, current_user)


@router.put("/{event_id}", response_model=EventResponse)
async def edit_event(
    event_id: int,
    data: EventUpdateRequest,
    current_user: User = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    fields = data.model_dump(exclude_unset=True)
    requested_status = fields.pop("status", None)
    return await event_service.edit_event(db, event_id, current_user, fields, status=requested_status)


@router.delete("/{event_id}", response_model=MessageResponse)
async def delete_event(
    event_id: int,
    current_user: User = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    await event_service.delete_event(db, event_id, current_user)
    return MessageResponse(message="Event deleted")


@router.post("/{event_id}/detach", response_model=EventResponse)
async def detach_from_event(
    event_id: int,
    current_user: User = Depends(require_organizer),
    db: AsyncSession = Depends(get_db),
):
    """Organizer removes itself from the event; open bookings are cancelled."""
    return await event_service.detach_organizer(db, event_id, current_user)


@router.post("/{event_id}/status", response_model=EventResponse)
async def update_event_status(
    event_id: int,
    data: EventStatusRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await event_service.update_event_status(db, event_id, data.status, current_user)
