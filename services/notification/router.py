"""
services/notification/router.py
In-app notification inbox plus the hook the messaging service calls
when a message is delivered.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from services.notification import service as notification_service
from shared.middleware.auth import get_current_user, require_admin
from shared.models.models import User
from shared.schemas.schemas import (
    MessageNotificationRequest,
    MessageResponse,
    NotificationListResponse,
    NotificationResponse,
    UnreadCountResponse,
)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("", response_model=NotificationListResponse)
async def get_my_notifications(
    unread_only: bool = Query(False),
    limit: Optional[int] = Query(None, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get authenticated user's in-app notifications, newest first."""
    items, total = await notification_service.list_notifications(
        db,
        current_user,
        unread_only=unread_only,
        limit=limit or settings.DEFAULT_NOTIFICATION_LIMIT,
        offset=offset,
    )
    unread = await notification_service.unread_count(db, current_user)
    return NotificationListResponse(
        items=[NotificationResponse.model_validate(n) for n in items],
        total=total,
        unread=unread,
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return UnreadCountResponse(count=await notification_service.unread_count(db, current_user))


@router.post("/read-all", response_model=MessageResponse)
async def mark_all_read(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    updated = await notification_service.mark_all_as_read(db, current_user)
    return MessageResponse(message=f"{updated} notifications marked as read")


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await notification_service.mark_as_read(db, notification_id, current_user)


@router.delete("/{notification_id}", response_model=MessageResponse)
async def delete_notification(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await notification_service.delete_notification(db, notification_id, current_user)
    return MessageResponse(message="Notification deleted")


# ── Messaging hook ────────────────────────────────────────────

@router.post(
    "/messages",
    response_model=NotificationResponse,
    status_code=status.HTTP_201_CREATED,
    include_in_schema=False,
)
async def notify_new_message(
    data: MessageNotificationRequest,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Called by the messaging service under its admin service account,
    relaying the sender name of a delivered message. Other roles get 403.
    """
    return await notification_service.notify_new_message(
        db,
        recipient_user_id=data.recipient_user_id,
        conversation_id=data.conversation_id,
        sender_name=data.sender_name,
        unread_count=data.unread_count,
    )
