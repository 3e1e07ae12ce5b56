"""
services/booking/service.py
Booking state machine.
States: Pending → Confirmed | Rejected | Cancelled
        Confirmed → Completed | Cancelled
Completed, Rejected and Cancelled are terminal for everyone but admins.

A transition is one unit of work: booking status, note, parent event
cascade and (on completion) the earnings transaction commit together.
Notifications ride along in a savepoint and never block the change.
Concurrent writers are serialized by SELECT ... FOR UPDATE plus the row
version; the transition is validated against the freshly locked row.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from services.earnings.service import record_booking_transaction
from services.event.service import apply_booking_cascade, attach_organizer_booking, client_for_user
from services.notification.service import dispatch
from shared.models.models import (
    LOCKED_EVENT_STATUSES,
    TERMINAL_BOOKING_STATUSES,
    Booking,
    BookingStatus,
    Client,
    Event,
    EventStatus,
    NotificationType,
    ProviderType,
    Service,
    User,
    UserRole,
    utcnow,
)
from shared.utils.errors import (
    ConflictError,
    DomainValidationError,
    EventLockedError,
    InvalidStatusError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
)
from shared.utils.providers import (
    ProviderRef,
    provider_display_name,
    provider_for_user,
    provider_user,
    resolve_provider,
)

logger = logging.getLogger(__name__)

# Non-admin transition table: current status → statuses each side may set
PROVIDER_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.REJECTED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
}
CLIENT_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.CANCELLED},
}

# Messages to the client when the provider side acts
CLIENT_TEMPLATES = {
    BookingStatus.CONFIRMED: ("Booking Confirmed", "{provider} has confirmed your booking!"),
    BookingStatus.COMPLETED: ("Booking Completed", "Your booking with {provider} has been completed"),
    BookingStatus.CANCELLED: ("Booking Cancelled", "Your booking with {provider} has been cancelled"),
    BookingStatus.REJECTED: ("Booking Rejected", "{provider} has declined your booking request"),
}
CLIENT_FALLBACK = ("Booking Status Updated", "Your booking status with {provider} has been updated to {status}")

# Messages to the provider when the client side acts
PROVIDER_TEMPLATES = {
    BookingStatus.CONFIRMED: ("Booking Confirmed", "Your booking with {client} has been confirmed"),
    BookingStatus.COMPLETED: ("Booking Completed", "Your booking with {client} has been marked as completed"),
    BookingStatus.CANCELLED: ("Booking Cancelled", "Your booking with {client} has been cancelled"),
}
PROVIDER_FALLBACK = ("Booking Status Updated", "Booking status with {client} has been updated to {status}")


@dataclass
class TransitionResult:
    booking: Booking
    event_status: Optional[EventStatus] = None
    changed: bool = True


def parse_booking_status(value: Any) -> BookingStatus:
    """'confirmed', 'CONFIRMED' and 'Confirmed' all map to BookingStatus.CONFIRMED."""
    text = str(getattr(value, "value", value) or "").strip()
    normalized = text[:1].upper() + text[1:].lower()
    try:
        return BookingStatus(normalized)
    except ValueError:
        raise InvalidStatusError(f"Invalid booking status: {value}")


def _append_note(existing: Optional[str], line: str) -> str:
    return "\n".join(filter(None, [existing, line]))


async def _client_user(db: AsyncSession, booking: Booking) -> Optional[User]:
    if booking.client_id is None:
        return None
    result = await db.execute(
        select(User).join(Client, Client.user_id == User.id).where(Client.id == booking.client_id)
    )
    return result.scalar_one_or_none()


async def _lock_booking(db: AsyncSession, booking_id: int) -> Booking:
    result = await db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    booking = result.scalar_one_or_none()
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


def _check_transition(
    previous: BookingStatus,
    new_status: BookingStatus,
    is_admin: bool,
    is_provider: bool,
) -> None:
    if new_status == BookingStatus.COMPLETED and previous != BookingStatus.CONFIRMED:
        raise InvalidTransitionError("Only confirmed bookings can be completed")
    if is_admin:
        return
    if previous in TERMINAL_BOOKING_STATUSES:
        raise InvalidTransitionError(f"Booking is already {previous.value}")
    table = PROVIDER_TRANSITIONS if is_provider else CLIENT_TRANSITIONS
    if new_status not in table.get(previous, set()):
        side = "provider" if is_provider else "client"
        raise InvalidTransitionError(
            f"Cannot change booking from {previous.value} to {new_status.value} as {side}"
        )


# ── Creation ──────────────────────────────────────────────────

async def create_booking(
    db: AsyncSession,
    actor: User,
    service_id: int,
    event_id: int,
    quote_amount: Optional[Decimal] = None,
    service_details: Optional[str] = None,
    client_notes: Optional[str] = None,
) -> Booking:
    """
    A client books a service for one of its events. Booking an
    organizer's service also assigns that organizer to the event.
    """
    client = await client_for_user(db, actor)

    service = await db.get(Service, service_id)
    if not service or not service.is_active or not service.is_approved:
        raise NotFoundError("Service not found or not available")

    ref = ProviderRef.of(service)
    if await resolve_provider(db, ref, active_only=True) is None:
        raise NotFoundError("Service provider is not available")

    result = await db.execute(select(Event).where(Event.id == event_id).with_for_update())
    event = result.scalar_one_or_none()
    if not event or event.client_id != client.id:
        raise NotFoundError("Event not found")
    if event.status in LOCKED_EVENT_STATUSES:
        raise EventLockedError("Cannot book services for completed or cancelled events")

    duplicate = await db.scalar(
        select(Booking.id).where(
            Booking.service_id == service.id,
            Booking.client_id == client.id,
            Booking.event_id == event.id,
        )
    )
    if duplicate:
        raise ConflictError("Service already booked for this event")

    quote = service.price if quote_amount is None else Decimal(str(quote_amount))
    if quote < 0:
        raise DomainValidationError("Quote amount cannot be negative")

    booking = Booking(
        event_id=event.id,
        service_id=service.id,
        client_id=client.id,
        provider_id=ref.provider_id,
        provider_type=ref.provider_type,
        booking_date=utcnow(),
        event_date=event.event_date,
        service_details=service_details,
        quote_amount=quote,
        status=BookingStatus.PENDING,
        client_notes=client_notes,
    )
    db.add(booking)

    if ref.provider_type == ProviderType.ORGANIZER:
        attach_organizer_booking(event, ref.provider_id)
    await db.flush()

    provider_account = await provider_user(db, ref)
    await dispatch(
        db,
        provider_account.id if provider_account else None,
        title="New Booking Request",
        message=f"{actor.full_name} has sent you a booking request",
        notification_type=NotificationType.BOOKING,
        reference_id=booking.id,
        reference_type="Booking",
        redirect_url=f"/{ref.slug}/bookings/details/{booking.id}",
    )

    await db.commit()
    logger.info(
        f"Booking {booking.id} created: client {client.id} → {ref} "
        f"(service {service.id}, event {event.id}, quote {quote})"
    )
    return booking


# ── Transitions ───────────────────────────────────────────────

async def transition_booking(
    db: AsyncSession,
    booking_id: int,
    status: Any,
    actor: User,
    notes: Optional[str] = None,
    final_amount: Optional[Decimal] = None,
) -> TransitionResult:
    new_status = parse_booking_status(status)
    booking = await _lock_booking(db, booking_id)
    ref = ProviderRef.of(booking)

    is_admin = actor.role == UserRole.ADMIN
    is_provider = (await provider_for_user(db, actor)) == ref
    client_account = await _client_user(db, booking)
    is_client = client_account is not None and client_account.id == actor.id
    if not (is_admin or is_provider or is_client):
        raise UnauthorizedError("Not authorized to update this booking")

    if final_amount is not None:
        if new_status != BookingStatus.COMPLETED:
            raise DomainValidationError("Final amount can only be set when completing a booking")
        final_amount = Decimal(str(final_amount))
        if final_amount < 0:
            raise DomainValidationError("Final amount cannot be negative")

    previous = booking.status
    now = utcnow()
    line = f"Status updated to {new_status.value} on {now:%Y-%m-%d %H:%M:%S}"
    if notes and notes.strip():
        line = f"{line}: {notes.strip()}"

    if previous == new_status:
        if final_amount is not None and final_amount != booking.final_amount:
            raise DomainValidationError("Final amount of a completed booking cannot be changed")
        # Re-applying refreshes the note and timestamp only
        booking.provider_notes = _append_note(booking.provider_notes, line)
        booking.updated_at = now
        await _commit(db, booking)
        logger.info(f"Booking {booking.id} re-applied {new_status.value} by user {actor.id}")
        event_status = None
        if booking.event_id is not None:
            event_status = await db.scalar(select(Event.status).where(Event.id == booking.event_id))
        return TransitionResult(booking, event_status, changed=False)

    _check_transition(previous, new_status, is_admin, is_provider)

    booking.status = new_status
    booking.provider_notes = _append_note(booking.provider_notes, line)
    booking.updated_at = now

    if new_status == BookingStatus.COMPLETED:
        booking.final_amount = final_amount if final_amount is not None else booking.quote_amount

    event_status = None
    if booking.event_id is not None:
        result = await db.execute(select(Event).where(Event.id == booking.event_id).with_for_update())
        event = result.scalar_one_or_none()
        if event:
            apply_booking_cascade(event, new_status)
            event_status = event.status

    try:
        await db.flush()
    except StaleDataError:
        await db.rollback()
        raise ConflictError("Booking was modified concurrently, please retry")

    if new_status == BookingStatus.COMPLETED:
        await record_booking_transaction(db, booking)

    provider_name = await provider_display_name(db, ref)
    client_name = client_account.full_name if client_account else "the client"

    if is_admin or is_provider:
        title, template = CLIENT_TEMPLATES.get(new_status, CLIENT_FALLBACK)
        await dispatch(
            db,
            client_account.id if client_account else None,
            title=title,
            message=template.format(provider=provider_name, status=new_status.value),
            notification_type=NotificationType.BOOKING,
            reference_id=booking.id,
            reference_type="Booking",
            redirect_url="/client/bookings",
        )
    if is_admin or (is_client and not is_provider):
        provider_account = await provider_user(db, ref)
        title, template = PROVIDER_TEMPLATES.get(new_status, PROVIDER_FALLBACK)
        await dispatch(
            db,
            provider_account.id if provider_account else None,
            title=title,
            message=template.format(client=client_name, status=new_status.value),
            notification_type=NotificationType.BOOKING,
            reference_id=booking.id,
            reference_type="Booking",
            redirect_url=f"/{ref.slug}/bookings/details/{booking.id}",
        )

    await _commit(db, booking)
    logger.info(
        f"Booking {booking.id} {previous.value} → {new_status.value} by user {actor.id}"
        + (f", event {booking.event_id} now {event_status.value}" if event_status else "")
    )
    return TransitionResult(booking, event_status)


async def _commit(db: AsyncSession, booking: Booking) -> None:
    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        logger.warning(f"Booking {booking.id}: concurrent modification detected")
        raise ConflictError("Booking was modified concurrently, please retry")


# ── Reads ─────────────────────────────────────────────────────

async def get_booking(db: AsyncSession, booking_id: int, actor: User) -> Booking:
    booking = await db.get(Booking, booking_id)
    if not booking:
        raise NotFoundError("Booking not found")
    if actor.role == UserRole.ADMIN:
        return booking
    if (await provider_for_user(db, actor)) == ProviderRef.of(booking):
        return booking
    client_account = await _client_user(db, booking)
    if client_account and client_account.id == actor.id:
        return booking
    raise UnauthorizedError("Not authorized to view this booking")


async def list_bookings(
    db: AsyncSession,
    actor: User,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Booking]:
    """Client: own bookings. Provider: bookings addressed to it. Admin: all."""
    query = select(Booking)
    if actor.role == UserRole.CLIENT:
        client = await client_for_user(db, actor)
        query = query.where(Booking.client_id == client.id)
    elif actor.role != UserRole.ADMIN:
        ref = await provider_for_user(db, actor)
        if ref is None:
            raise UnauthorizedError("No provider profile for this account")
        query = query.where(
            Booking.provider_id == ref.provider_id,
            Booking.provider_type == ref.provider_type,
        )
    if status:
        query = query.where(Booking.status == parse_booking_status(status))

    result = await db.execute(
        query.order_by(Booking.booking_date.desc(), Booking.id.desc()).offset(offset).limit(limit)
    )
    return list(result.scalars())
