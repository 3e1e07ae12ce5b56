"""
services/notification/service.py
Notification dispatch: in-app notification rows keyed by
(user, type, reference).

Message notifications are unique per (user, conversation): a new message
reactivates the existing row (unread, refreshed content and timestamp)
instead of inserting a duplicate.

Other managers call `dispatch`, which is best-effort: a failed insert is
rolled back to a savepoint and logged, never propagated to the state
change that triggered it.
"""

import logging
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Notification, NotificationType, User, UserRole, utcnow
from shared.utils.errors import NotFoundError, UnauthorizedError

logger = logging.getLogger(__name__)

CONVERSATION_REFERENCE = "Conversation"

MESSAGE_REDIRECTS = {
    UserRole.CLIENT: "/client/messages?conversation={conversation_id}",
    UserRole.ORGANIZER: "/organizer/messages?conversation={conversation_id}",
    UserRole.SUPPLIER: "/supplier/messages?conversation={conversation_id}",
}


async def _find_message_notification(
    db: AsyncSession, user_id: int, conversation_id: int
) -> Optional[Notification]:
    result = await db.execute(
        select(Notification)
        .where(
            Notification.user_id == user_id,
            Notification.notification_type == NotificationType.MESSAGE,
            Notification.reference_type == CONVERSATION_REFERENCE,
            Notification.reference_id == conversation_id,
        )
        .order_by(Notification.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def notify(
    db: AsyncSession,
    user_id: int,
    title: str,
    message: str,
    notification_type: NotificationType,
    reference_id: Optional[int] = None,
    reference_type: Optional[str] = None,
    redirect_url: Optional[str] = None,
) -> Notification:
    """Insert an unread notification, or reactivate the conversation's row for messages."""
    notification_type = NotificationType(notification_type)

    if (
        notification_type == NotificationType.MESSAGE
        and reference_type == CONVERSATION_REFERENCE
        and reference_id is not None
    ):
        existing = await _find_message_notification(db, user_id, reference_id)
        if existing:
            existing.title = title
            existing.message = message
            existing.redirect_url = redirect_url
            existing.is_read = False
            existing.read_at = None
            existing.created_at = utcnow()
            await db.flush()
            logger.info(
                f"Reactivated message notification {existing.id} "
                f"for user {user_id}, conversation {reference_id}"
            )
            return existing

    notification = Notification(
        user_id=user_id,
        title=title,
        message=message,
        notification_type=notification_type,
        reference_id=reference_id,
        reference_type=reference_type,
        redirect_url=redirect_url,
        is_read=False,
        created_at=utcnow(),
    )
    db.add(notification)
    await db.flush()
    return notification


async def dispatch(db: AsyncSession, user_id: Optional[int], **kwargs) -> Optional[Notification]:
    """
    Fire-and-forget wrapper around `notify` for use inside state changes.
    Returns None when there is no recipient or the insert failed.
    """
    if user_id is None:
        logger.warning(f"Notification '{kwargs.get('title')}' skipped: no recipient user")
        return None
    try:
        async with db.begin_nested():
            return await notify(db, user_id, **kwargs)
    except Exception:
        logger.warning(
            f"Notification '{kwargs.get('title')}' for user {user_id} failed",
            exc_info=True,
        )
        return None


async def notify_new_message(
    db: AsyncSession,
    recipient_user_id: int,
    conversation_id: int,
    sender_name: str,
    unread_count: int = 1,
) -> Notification:
    """Entry point for the messaging service when a message is delivered."""
    recipient = await db.get(User, recipient_user_id)
    if not recipient:
        raise NotFoundError("Recipient not found")

    template = MESSAGE_REDIRECTS.get(
        UserRole(recipient.role), "/messages?conversation={conversation_id}"
    )
    if unread_count > 1:
        text = f"You have {unread_count} new messages from {sender_name}"
    else:
        text = f"You have a new message from {sender_name}"

    notification = await notify(
        db,
        recipient.id,
        title="New Message",
        message=text,
        notification_type=NotificationType.MESSAGE,
        reference_id=conversation_id,
        reference_type=CONVERSATION_REFERENCE,
        redirect_url=template.format(conversation_id=conversation_id),
    )
    await db.commit()
    return notification


# ── Reads & guarded mutations ─────────────────────────────────

async def _get_own_notification(db: AsyncSession, notification_id: int, actor: User) -> Notification:
    notification = await db.get(Notification, notification_id)
    if not notification:
        raise NotFoundError("Notification not found")
    if notification.user_id != actor.id:
        raise UnauthorizedError("Not authorized to modify this notification")
    return notification


async def list_notifications(
    db: AsyncSession,
    actor: User,
    unread_only: bool = False,
    limit: int = 20,
    offset: int = 0,
) -> tuple[List[Notification], int]:
    """Return (page, total) for the actor, newest first."""
    conditions = [Notification.user_id == actor.id]
    if unread_only:
        conditions.append(Notification.is_read == False)  # noqa: E712

    total = await db.scalar(select(func.count(Notification.id)).where(*conditions))
    result = await db.execute(
        select(Notification)
        .where(*conditions)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars()), total or 0


async def unread_count(db: AsyncSession, actor: User) -> int:
    count = await db.scalar(
        select(func.count(Notification.id)).where(
            Notification.user_id == actor.id,
            Notification.is_read == False,  # noqa: E712
        )
    )
    return count or 0


async def mark_as_read(db: AsyncSession, notification_id: int, actor: User) -> Notification:
    notification = await _get_own_notification(db, notification_id, actor)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
    await db.commit()
    return notification


async def mark_all_as_read(db: AsyncSession, actor: User) -> int:
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == actor.id, Notification.is_read == False)  # noqa: E712
        .values(is_read=True, read_at=utcnow())
    )
    await db.commit()
    return result.rowcount or 0


async def delete_notification(db: AsyncSession, notification_id: int, actor: User) -> None:
    notification = await _get_own_notification(db, notification_id, actor)
    await db.delete(notification)
    await db.commit()
