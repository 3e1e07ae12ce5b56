"""
tests/test_ratings.py
Rating aggregator: full recompute over approved reviews, rounding,
provider vs service aggregates, idempotence, admin endpoints.
"""

from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from services.rating.service import (
    RatingAggregate,
    get_provider_rating,
    recompute_all_ratings,
    recompute_provider_rating,
)
from shared.models.models import (
    BookingStatus,
    Client,
    Organizer,
    ProviderType,
    Review,
    Service,
    Supplier,
    User,
)
from shared.utils.providers import ProviderRef
from tests.conftest import auth_headers, make_booking


async def _review(db: AsyncSession, client_profile: Client, reviewer: User, service: Service, rating: int, approved: bool = True) -> Review:
    booking = await make_booking(db, client_profile, service, status=BookingStatus.COMPLETED)
    review = Review(
        booking_id=booking.id,
        reviewer_id=reviewer.id,
        reviewee_id=service.provider_id,
        reviewee_type=service.provider_type,
        rating=rating,
        review_text="Written directly for aggregate tests",
        is_approved=approved,
    )
    db.add(review)
    await db.commit()
    return review


def test_empty_aggregate_is_zero():
    assert RatingAggregate.from_row(None, 0) == RatingAggregate(Decimal("0.00"), 0)


def test_average_rounds_half_up_to_two_places():
    assert RatingAggregate.from_row(13 / 3, 3).average_rating == Decimal("4.33")
    assert RatingAggregate.from_row(Decimal("4.125"), 8).average_rating == Decimal("4.13")


@pytest.mark.asyncio
async def test_recompute_matches_mean_of_approved_reviews(
    db: AsyncSession,
    client_user: User,
    client_profile: Client,
    organizer: Organizer,
    organizer_service: Service,
):
    for rating in (5, 4, 4):
        await _review(db, client_profile, client_user, organizer_service, rating)
    # Unapproved reviews never count
    await _review(db, client_profile, client_user, organizer_service, 1, approved=False)

    aggregate = await recompute_provider_rating(db, ProviderRef.organizer(organizer.id))
    await db.commit()

    assert aggregate == RatingAggregate(Decimal("4.33"), 3)
    await db.refresh(organizer)
    assert organizer.average_rating == Decimal("4.33")
    assert organizer.total_reviews == 3


@pytest.mark.asyncio
async def test_recompute_is_idempotent(
    db: AsyncSession,
    client_user: User,
    client_profile: Client,
    supplier: Supplier,
    supplier_service: Service,
):
    await _review(db, client_profile, client_user, supplier_service, 3)
    await _review(db, client_profile, client_user, supplier_service, 4)
    ref = ProviderRef.of(supplier_service)

    first = await recompute_provider_rating(db, ref)
    second = await recompute_provider_rating(db, ref)
    await db.commit()

    assert first == second == RatingAggregate(Decimal("3.50"), 2)
    assert await get_provider_rating(db, ref) == first


@pytest.mark.asyncio
async def test_service_aggregates_diverge_from_provider(
    db: AsyncSession,
    client_user: User,
    client_profile: Client,
    organizer: Organizer,
    organizer_service: Service,
):
    second_service = Service(
        provider_id=organizer.id,
        provider_type=ProviderType.ORGANIZER,
        name="Day-of Coordination",
        category="Planning",
        price=Decimal("1200.00"),
        is_active=True,
        is_approved=True,
    )
    idle_service = Service(
        provider_id=organizer.id,
        provider_type=ProviderType.ORGANIZER,
        name="Venue Scouting",
        category="Planning",
        price=Decimal("300.00"),
        is_active=True,
        is_approved=True,
        average_rating=Decimal("4.90"),
        total_reviews=7,
    )
    db.add_all([second_service, idle_service])
    await db.commit()

    await _review(db, client_profile, client_user, organizer_service, 5)
    await _review(db, client_profile, client_user, second_service, 2)

    aggregate = await recompute_provider_rating(db, ProviderRef.organizer(organizer.id))
    await db.commit()

    assert aggregate == RatingAggregate(Decimal("3.50"), 2)
    for service in (organizer_service, second_service, idle_service):
        await db.refresh(service)
    assert (organizer_service.average_rating, organizer_service.total_reviews) == (Decimal("5.00"), 1)
    assert (second_service.average_rating, second_service.total_reviews) == (Decimal("2.00"), 1)
    # Stale aggregate with no backing reviews is reset
    assert (idle_service.average_rating, idle_service.total_reviews) == (Decimal("0.00"), 0)


@pytest.mark.asyncio
async def test_recompute_all_repairs_drift(
    db: AsyncSession,
    client_user: User,
    client_profile: Client,
    organizer: Organizer,
    organizer_service: Service,
    supplier: Supplier,
    supplier_service: Service,
):
    await _review(db, client_profile, client_user, supplier_service, 4)
    organizer.average_rating = Decimal("2.00")
    organizer.total_reviews = 9
    await db.commit()

    processed = await recompute_all_ratings(db)
    await db.commit()

    assert processed == 2
    await db.refresh(organizer)
    await db.refresh(supplier)
    assert (organizer.average_rating, organizer.total_reviews) == (Decimal("0.00"), 0)
    assert (supplier.average_rating, supplier.total_reviews) == (Decimal("4.00"), 1)


# ── Endpoints ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_get_rating_endpoint(
    client: AsyncClient,
    client_user: User,
    supplier: Supplier,
):
    response = await client.get(f"/ratings/supplier/{supplier.id}", headers=auth_headers(client_user))
    assert response.status_code == 200
    data = response.json()
    assert data["provider_type"] == "Supplier"
    assert data["total_reviews"] == 0

    missing = await client.get("/ratings/supplier/999", headers=auth_headers(client_user))
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_admin_recompute_endpoint(
    client: AsyncClient,
    db: AsyncSession,
    admin_user: User,
    client_user: User,
    client_profile: Client,
    organizer: Organizer,
    organizer_service: Service,
):
    await _review(db, client_profile, client_user, organizer_service, 5)

    response = await client.post(f"/ratings/organizer/{organizer.id}/recompute", headers=auth_headers(admin_user))
    assert response.status_code == 200
    assert response.json()["total_reviews"] == 1
    assert Decimal(str(response.json()["average_rating"])) == Decimal("5.00")

    forbidden = await client.post(f"/ratings/organizer/{organizer.id}/recompute", headers=auth_headers(client_user))
    assert forbidden.status_code == 403


@pytest.mark.asyncio
async def test_admin_repair_endpoint(
    client: AsyncClient,
    admin_user: User,
    organizer: Organizer,
    supplier: Supplier,
):
    response = await client.post("/ratings/repair", headers=auth_headers(admin_user))
    assert response.status_code == 200
    assert response.json() == {"providers_processed": 2}
