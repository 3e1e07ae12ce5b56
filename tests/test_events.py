"""
tests/test_events.py
Event state machine: client edits, locking, deletion guard,
organizer detachment and organizer-driven status updates.
"""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import (
    BookingStatus,
    Client,
    Event,
    EventStatus,
    NotificationType,
    Organizer,
    Service,
    User,
)
from tests.conftest import auth_headers, make_booking, notifications_for


async def _assign(db: AsyncSession, event: Event, organizer: Organizer, status: EventStatus) -> Event:
    event.organizer_id = organizer.id
    event.status = status
    await db.commit()
    return event


# ── Create / edit ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_event_starts_as_draft(client: AsyncClient, client_user: User, client_profile: Client):
    payload = {
        "name": "Company Retreat",
        "event_type": "Corporate",
        "event_date": (datetime.now(timezone.utc) + timedelta(days=30)).isoformat(),
        "budget": "8000.00",
        "guest_count": 40,
    }
    response = await client.post("/events", headers=auth_headers(client_user), json=payload)
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "Draft"
    assert data["client_id"] == client_profile.id
    assert data["organizer_id"] is None


@pytest.mark.asyncio
async def test_create_event_rejects_negative_budget(client: AsyncClient, client_user: User, client_profile: Client):
    payload = {
        "name": "Birthday",
        "event_type": "Party",
        "event_date": (datetime.now(timezone.utc) + timedelta(days=5)).isoformat(),
        "budget": "-1",
    }
    response = await client.post("/events", headers=auth_headers(client_user), json=payload)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_editing_confirmed_event_reverts_to_pending_and_notifies_organizer(
    client: AsyncClient,
    db: AsyncSession,
    client_user: User,
    organizer_user: User,
    organizer: Organizer,
    event: Event,
):
    await _assign(db, event, organizer, EventStatus.CONFIRMED)

    response = await client.put(
        f"/events/{event.id}",
        headers=auth_headers(client_user),
        json={"guest_count": 150, "location": "Riverside Barn"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "Pending"
    assert data["guest_count"] == 150

    notes = await notifications_for(db, organizer_user)
    assert len(notes) == 1
    assert notes[0].notification_type == NotificationType.EVENT_UPDATE
    assert notes[0].title == "Event Updated - Review Required"
    assert notes[0].message == (
        "Casey Client has updated the event 'Summer Wedding'. Please review the changes."
    )
    assert notes[0].redirect_url == f"/organizer/events/details/{event.id}"


@pytest.mark.asyncio
async def test_editing_confirmed_event_without_organizer_sends_nothing(
    client: AsyncClient,
    db: AsyncSession,
    client_user: User,
    event: Event,
):
    event.status = EventStatus.CONFIRMED
    await db.commit()

    response = await client.put(f"/events/{event.id}", headers=auth_headers(client_user), json={"budget": "25000"})
    assert response.status_code == 200
    assert response.json()["status"] == "Pending"
    assert await notifications_for(db, client_user) == []


@pytest.mark.asyncio
async def test_editing_planning_event_keeps_status(
    client: AsyncClient,
    db: AsyncSession,
    client_user: User,
    organizer_user: User,
    organizer: Organizer,
    event: Event,
):
    await _assign(db, event, organizer, EventStatus.PLANNING)

    response = await client.put(f"/events/{event.id}", headers=auth_headers(client_user), json={"name": "Autumn Wedding"})
    assert response.status_code == 200
    assert response.json()["status"] == "Planning"
    assert response.json()["name"] == "Autumn Wedding"
    assert await notifications_for(db, organizer_user) == []


@pytest.mark.asyncio
async def test_client_can_move_between_draft_and_planning_only(
    client: AsyncClient,
    db: AsyncSession,
    client_user: User,
    event: Event,
):
    headers = auth_headers(client_user)
    back_to_draft = await client.put(f"/events/{event.id}", headers=headers, json={"status": "draft"})
    assert back_to_draft.status_code == 200
    assert back_to_draft.json()["status"] == "Draft"

    confirm = await client.put(f"/events/{event.id}", headers=headers, json={"status": "Confirmed"})
    assert confirm.status_code == 403

    await db.refresh(event)
    assert event.status == EventStatus.DRAFT


@pytest.mark.asyncio
@pytest.mark.parametrize("locked", [EventStatus.COMPLETED, EventStatus.CANCELLED])
async def test_locked_event_cannot_be_edited(
    client: AsyncClient,
    db: AsyncSession,
    client_user: User,
    event: Event,
    locked: EventStatus,
):
    event.status = locked
    await db.commit()

    response = await client.put(f"/events/{event.id}", headers=auth_headers(client_user), json={"name": "Too late"})
    assert response.status_code == 423
    assert response.json() == {"detail": "Cannot edit completed or cancelled events", "code": "EventLocked"}

    await db.refresh(event)
    assert event.name == "Summer Wedding"


@pytest.mark.asyncio
async def test_other_client_cannot_edit(
    client: AsyncClient,
    other_client_user: User,
    other_client_profile: Client,
    event: Event,
):
    response = await client.put(f"/events/{event.id}", headers=auth_headers(other_client_user), json={"name": "Mine now"})
    assert response.status_code == 403


# ── Delete ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_delete_event_without_bookings(
    client: AsyncClient,
    db: AsyncSession,
    client_user: User,
    event: Event,
):
    event_id = event.id
    response = await client.delete(f"/events/{event_id}", headers=auth_headers(client_user))
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert await db.get(Event, event_id) is None


@pytest.mark.asyncio
async def test_delete_event_with_bookings_is_conflict(
    client: AsyncClient,
    db: AsyncSession,
    client_user: User,
    client_profile: Client,
    supplier_service: Service,
    event: Event,
):
    await make_booking(db, client_profile, supplier_service, event, status=BookingStatus.CANCELLED)

    response = await client.delete(f"/events/{event.id}", headers=auth_headers(client_user))
    assert response.status_code == 409
    assert response.json()["detail"] == "Cannot delete event with existing bookings"


# ── Organizer detach ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_organizer_detach_cancels_open_bookings(
    client: AsyncClient,
    db: AsyncSession,
    client_user: User,
    client_profile: Client,
    organizer_user: User,
    organizer: Organizer,
    organizer_service: Service,
    supplier_service: Service,
    event: Event,
):
    await _assign(db, event, organizer, EventStatus.CONFIRMED)
    confirmed = await make_booking(db, client_profile, organizer_service, event, status=BookingStatus.CONFIRMED)
    pending = await make_booking(db, client_profile, supplier_service, event)

    response = await client.post(f"/events/{event.id}/detach", headers=auth_headers(organizer_user))
    assert response.status_code == 200
    data = response.json()
    assert data["organizer_id"] is None
    assert data["status"] == "Planning"

    for booking in (confirmed, pending):
        await db.refresh(booking)
        assert booking.status == BookingStatus.CANCELLED
        assert "Organizer disconnected from event on " in booking.provider_notes

    notes = await notifications_for(db, client_user)
    assert len(notes) == 1
    assert notes[0].title == "Organizer Removed from Event"
    assert notes[0].message == (
        "Aurora Events has removed themselves from your event 'Summer Wedding'. "
        "You may need to find a new organizer."
    )
    assert notes[0].redirect_url == f"/client/events/details/{event.id}"


@pytest.mark.asyncio
async def test_detach_leaves_completed_event_and_bookings(
    client: AsyncClient,
    db: AsyncSession,
    client_profile: Client,
    organizer_user: User,
    organizer: Organizer,
    organizer_service: Service,
    event: Event,
):
    await _assign(db, event, organizer, EventStatus.COMPLETED)
    done = await make_booking(db, client_profile, organizer_service, event, status=BookingStatus.COMPLETED)

    response = await client.post(f"/events/{event.id}/detach", headers=auth_headers(organizer_user))
    assert response.status_code == 200
    assert response.json()["status"] == "Completed"

    await db.refresh(done)
    assert done.status == BookingStatus.COMPLETED


@pytest.mark.asyncio
async def test_unassigned_organizer_cannot_detach(
    client: AsyncClient,
    organizer_user: User,
    organizer: Organizer,
    event: Event,
):
    response = await client.post(f"/events/{event.id}/detach", headers=auth_headers(organizer_user))
    assert response.status_code == 404


# ── Organizer status updates ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_organizer_completes_event_then_it_is_locked(
    client: AsyncClient,
    db: AsyncSession,
    client_user: User,
    organizer_user: User,
    organizer: Organizer,
    event: Event,
):
    await _assign(db, event, organizer, EventStatus.CONFIRMED)
    headers = auth_headers(organizer_user)

    response = await client.post(f"/events/{event.id}/status", headers=headers, json={"status": "completed"})
    assert response.status_code == 200
    assert response.json()["status"] == "Completed"

    notes = await notifications_for(db, client_user, notification_type=NotificationType.EVENT_UPDATE)
    assert len(notes) == 1

    again = await client.post(f"/events/{event.id}/status", headers=headers, json={"status": "Planning"})
    assert again.status_code == 423


@pytest.mark.asyncio
async def test_client_cannot_use_organizer_status_endpoint(
    client: AsyncClient,
    client_user: User,
    event: Event,
):
    response = await client.post(f"/events/{event.id}/status", headers=auth_headers(client_user), json={"status": "Confirmed"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_event_visibility(
    client: AsyncClient,
    db: AsyncSession,
    client_user: User,
    other_client_user: User,
    other_client_profile: Client,
    organizer_user: User,
    organizer: Organizer,
    event: Event,
):
    await _assign(db, event, organizer, EventStatus.PENDING)

    assert (await client.get(f"/events/{event.id}", headers=auth_headers(client_user))).status_code == 200
    assert (await client.get(f"/events/{event.id}", headers=auth_headers(organizer_user))).status_code == 200
    assert (await client.get(f"/events/{event.id}", headers=auth_headers(other_client_user))).status_code == 403

    organizer_list = await client.get("/events", headers=auth_headers(organizer_user))
    assert [e["id"] for e in organizer_list.json()] == [event.id]


@pytest.mark.asyncio
async def test_upcoming_filter_uses_utc_clock(
    client: AsyncClient,
    db: AsyncSession,
    client_user: User,
    client_profile: Client,
    event: Event,
):
    now = datetime.now(timezone.utc)
    soon = Event(
        client_id=client_profile.id,
        name="Rehearsal Dinner",
        event_type="Dinner",
        event_date=now + timedelta(hours=2),
        status=EventStatus.PLANNING,
    )
    past = Event(
        client_id=client_profile.id,
        name="Engagement Party",
        event_type="Party",
        event_date=now - timedelta(hours=2),
        status=EventStatus.COMPLETED,
    )
    db.add_all([soon, past])
    await db.commit()

    upcoming = await client.get("/events", params={"upcoming": "true"}, headers=auth_headers(client_user))
    assert upcoming.status_code == 200
    assert [e["id"] for e in upcoming.json()] == [event.id, soon.id]

    everything = await client.get("/events", headers=auth_headers(client_user))
    assert {e["id"] for e in everything.json()} == {event.id, soon.id, past.id}
