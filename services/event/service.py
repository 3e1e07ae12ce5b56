"""
services/event/service.py
Event state machine.
States: Draft → Planning → Pending → Confirmed → Completed | Cancelled

Transitions are driven from outside:
- client creates (Draft) and edits the event;
- booking an organizer's service sets Pending and assigns the organizer;
- booking transitions cascade here via `apply_booking_cascade`;
- the assigned organizer sets status or detaches itself.
Completed and Cancelled events are locked against client edits.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.notification.service import dispatch
from shared.models.models import (
    LOCKED_EVENT_STATUSES,
    Booking,
    BookingStatus,
    Client,
    Event,
    EventStatus,
    NotificationType,
    Organizer,
    User,
    UserRole,
    utcnow,
)
from shared.utils.errors import (
    ConflictError,
    DomainValidationError,
    EventLockedError,
    InvalidStatusError,
    NotFoundError,
    UnauthorizedError,
)
from shared.utils.providers import ProviderRef, provider_display_name, provider_user

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "event_type", "description", "event_date", "budget", "guest_count", "location")

# Statuses a client may pick by hand while the event is not agreed yet
CLIENT_SELECTABLE_STATUSES = frozenset({EventStatus.DRAFT, EventStatus.PLANNING})

# Booking status → event status it forces
BOOKING_CASCADE = {
    BookingStatus.CONFIRMED: EventStatus.CONFIRMED,
    BookingStatus.CANCELLED: EventStatus.PLANNING,
    BookingStatus.REJECTED: EventStatus.PLANNING,
}


def parse_event_status(value: Any) -> EventStatus:
    text = str(getattr(value, "value", value) or "").strip()
    normalized = text[:1].upper() + text[1:].lower()
    try:
        return EventStatus(normalized)
    except ValueError:
        raise InvalidStatusError(f"Invalid event status: {value}")


def _validate_fields(fields: Dict[str, Any]) -> None:
    if "name" in fields and not (fields["name"] or "").strip():
        raise DomainValidationError("Event name is required")
    if "event_type" in fields and not (fields["event_type"] or "").strip():
        raise DomainValidationError("Event type is required")
    if "event_date" in fields and fields["event_date"] is None:
        raise DomainValidationError("Event date is required")
    if fields.get("budget") is not None and fields["budget"] < 0:
        raise DomainValidationError("Budget cannot be negative")
    if fields.get("guest_count") is not None and fields["guest_count"] < 0:
        raise DomainValidationError("Guest count cannot be negative")


async def client_for_user(db: AsyncSession, user: User) -> Client:
    result = await db.execute(select(Client).where(Client.user_id == user.id))
    client = result.scalar_one_or_none()
    if not client:
        raise UnauthorizedError("Only clients can manage events")
    return client


async def _get_event_or_404(db: AsyncSession, event_id: int) -> Event:
    event = await db.get(Event, event_id)
    if not event:
        raise NotFoundError("Event not found")
    return event


async def _get_owned_event(db: AsyncSession, event_id: int, actor: User) -> Event:
    event = await _get_event_or_404(db, event_id)
    client = await client_for_user(db, actor)
    if event.client_id != client.id:
        raise UnauthorizedError("Not authorized to modify this event")
    return event


async def _client_user_id(db: AsyncSession, event: Event) -> Optional[int]:
    if event.client_id is None:
        return None
    return await db.scalar(select(Client.user_id).where(Client.id == event.client_id))


# ── Client operations ─────────────────────────────────────────

async def create_event(db: AsyncSession, actor: User, fields: Dict[str, Any]) -> Event:
    client = await client_for_user(db, actor)
    for required in ("name", "event_type", "event_date"):
        if fields.get(required) in (None, ""):
            raise DomainValidationError(f"Field '{required}' is required")
    _validate_fields(fields)

    event = Event(
        client_id=client.id,
        status=EventStatus.DRAFT,
        **{k: v for k, v in fields.items() if k in EDITABLE_FIELDS},
    )
    db.add(event)
    await db.commit()
    logger.info(f"Event {event.id} created by client {client.id}")
    return event


async def edit_event(
    db: AsyncSession,
    event_id: int,
    actor: User,
    fields: Dict[str, Any],
    status: Optional[Any] = None,
) -> Event:
    """
    Apply a client's edit. Editing a Confirmed event sends it back to
    Pending and asks the assigned organizer to review the changes.
    """
    event = await _get_owned_event(db, event_id, actor)
    if event.status in LOCKED_EVENT_STATUSES:
        raise EventLockedError("Cannot edit completed or cancelled events")
    _validate_fields(fields)

    was_confirmed = event.status == EventStatus.CONFIRMED
    requested = None
    if status is not None and not was_confirmed:
        requested = parse_event_status(status)
        if requested not in CLIENT_SELECTABLE_STATUSES and requested != event.status:
            raise UnauthorizedError(f"Clients cannot set event status to {requested.value}")

    for key, value in fields.items():
        if key in EDITABLE_FIELDS:
            setattr(event, key, value)

    if was_confirmed:
        event.status = EventStatus.PENDING
        logger.info(f"Event {event.id} status changed from Confirmed to Pending after client edit")
    elif requested is not None:
        event.status = requested

    event.updated_at = utcnow()

    if was_confirmed and event.organizer_id is not None:
        organizer_ref = ProviderRef.organizer(event.organizer_id)
        organizer_user = await provider_user(db, organizer_ref)
        await dispatch(
            db,
            organizer_user.id if organizer_user else None,
            title="Event Updated - Review Required",
            message=f"{actor.full_name} has updated the event '{event.name}'. Please review the changes.",
            notification_type=NotificationType.EVENT_UPDATE,
            reference_id=event.id,
            reference_type="Event",
            redirect_url=f"/organizer/events/details/{event.id}",
        )

    await db.commit()
    return event


async def delete_event(db: AsyncSession, event_id: int, actor: User) -> None:
    event = await _get_owned_event(db, event_id, actor)
    booking_count = await db.scalar(
        select(func.count(Booking.id)).where(Booking.event_id == event.id)
    )
    if booking_count:
        raise ConflictError("Cannot delete event with existing bookings")
    await db.delete(event)
    await db.commit()
    logger.info(f"Event {event_id} deleted by user {actor.id}")


# ── Organizer operations ──────────────────────────────────────

async def _organizer_for_user(db: AsyncSession, user: User) -> Organizer:
    result = await db.execute(select(Organizer).where(Organizer.user_id == user.id))
    organizer = result.scalar_one_or_none()
    if not organizer:
        raise UnauthorizedError("Only organizers can manage assigned events")
    return organizer


async def detach_organizer(db: AsyncSession, event_id: int, actor: User) -> Event:
    """
    Organizer removes itself from an event. The event stays with the
    client: organizer cleared, active status demoted to Planning, open
    bookings cancelled, client notified.
    """
    organizer = await _organizer_for_user(db, actor)
    event = await db.get(Event, event_id)
    if not event or event.organizer_id != organizer.id:
        raise NotFoundError("Event not found")

    event.organizer_id = None
    if event.status in (EventStatus.CONFIRMED, EventStatus.PENDING):
        event.status = EventStatus.PLANNING
    event.updated_at = utcnow()

    result = await db.execute(
        select(Booking)
        .where(
            Booking.event_id == event.id,
            Booking.status.in_([BookingStatus.PENDING, BookingStatus.CONFIRMED]),
        )
        .with_for_update()
    )
    bookings = list(result.scalars())
    note = f"Organizer disconnected from event on {utcnow():%Y-%m-%d}"
    for booking in bookings:
        booking.status = BookingStatus.CANCELLED
        booking.provider_notes = "\n".join(filter(None, [booking.provider_notes, note]))
    logger.info(f"Cancelled {len(bookings)} bookings for event {event.id} after organizer detach")

    organizer_name = await provider_display_name(db, ProviderRef.organizer(organizer.id))
    await dispatch(
        db,
        await _client_user_id(db, event),
        title="Organizer Removed from Event",
        message=(
            f"{organizer_name} has removed themselves from your event '{event.name}'. "
            "You may need to find a new organizer."
        ),
        notification_type=NotificationType.EVENT_UPDATE,
        reference_id=event.id,
        reference_type="Event",
        redirect_url=f"/client/events/details/{event.id}",
    )

    await db.commit()
    logger.info(f"Organizer {organizer.id} unlinked from event {event.id}")
    return event


async def update_event_status(db: AsyncSession, event_id: int, status: Any, actor: User) -> Event:
    """Assigned organizer (or an admin) moves the event through its lifecycle."""
    new_status = parse_event_status(status)
    event = await _get_event_or_404(db, event_id)
    is_admin = actor.role == UserRole.ADMIN

    if not is_admin:
        organizer = await _organizer_for_user(db, actor)
        if event.organizer_id != organizer.id:
            raise UnauthorizedError("Not authorized to update this event")
        if event.status in LOCKED_EVENT_STATUSES:
            raise EventLockedError(f"Event is already {event.status.value}")
    if new_status == EventStatus.DRAFT:
        raise InvalidStatusError("Events cannot return to Draft")

    previous = event.status
    event.status = new_status
    event.updated_at = utcnow()

    if previous != new_status:
        await dispatch(
            db,
            await _client_user_id(db, event),
            title="Event Status Updated",
            message=f"Your event '{event.name}' is now {new_status.value}.",
            notification_type=NotificationType.EVENT_UPDATE,
            reference_id=event.id,
            reference_type="Event",
            redirect_url=f"/client/events/details/{event.id}",
        )

    await db.commit()
    logger.info(f"Event {event.id} status {previous.value} → {new_status.value} by user {actor.id}")
    return event


# ── Reactions to bookings ─────────────────────────────────────

def apply_booking_cascade(event: Event, booking_status: BookingStatus) -> bool:
    """
    Push a booking transition onto its parent event. Does not commit.
    Locked events are never reopened. Returns True if the event changed.
    """
    target = BOOKING_CASCADE.get(booking_status)
    if target is None or event.status in LOCKED_EVENT_STATUSES or event.status == target:
        return False
    logger.info(f"Event {event.id} cascade {event.status.value} → {target.value} (booking {booking_status.value})")
    event.status = target
    event.updated_at = utcnow()
    return True


def attach_organizer_booking(event: Event, organizer_id: int) -> None:
    """A client booked an organizer's service for this event."""
    event.organizer_id = organizer_id
    event.status = EventStatus.PENDING
    event.updated_at = utcnow()


# ── Reads ─────────────────────────────────────────────────────

async def get_event(db: AsyncSession, event_id: int, actor: User) -> Event:
    event = await _get_event_or_404(db, event_id)
    if actor.role == UserRole.ADMIN:
        return event
    if actor.role == UserRole.ORGANIZER:
        organizer = await _organizer_for_user(db, actor)
        if event.organizer_id == organizer.id:
            return event
    elif actor.role == UserRole.CLIENT:
        client = await client_for_user(db, actor)
        if event.client_id == client.id:
            return event
    raise UnauthorizedError("Not authorized to view this event")


async def list_events(db: AsyncSession, actor: User, upcoming_only: bool = False) -> List[Event]:
    """Client sees own events; organizer sees events assigned to it."""
    if actor.role == UserRole.ORGANIZER:
        organizer = await _organizer_for_user(db, actor)
        query = select(Event).where(Event.organizer_id == organizer.id)
    else:
        client = await client_for_user(db, actor)
        query = select(Event).where(Event.client_id == client.id)
    if upcoming_only:
        query = query.where(Event.event_date >= utcnow())
    result = await db.execute(query.order_by(Event.event_date.desc()))
    return list(result.scalars())
