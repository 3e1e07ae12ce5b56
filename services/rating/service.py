"""
services/rating/service.py
Rating aggregator. Recomputes the (average_rating, total_reviews) pair
of a provider and of each of its services from the approved reviews
currently in the database.

Always a full recompute, never an increment: calling it twice, or
concurrently for the same provider, converges on the same values.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Booking, Organizer, ProviderType, Review, Service, Supplier
from shared.utils.providers import ProviderRef

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class RatingAggregate:
    average_rating: Decimal
    total_reviews: int

    @classmethod
    def from_row(cls, avg, count) -> "RatingAggregate":
        if not count:
            return cls(Decimal("0.00"), 0)
        average = Decimal(str(avg)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
        return cls(average, int(count))


async def _provider_aggregate(db: AsyncSession, ref: ProviderRef) -> RatingAggregate:
    result = await db.execute(
        select(func.avg(Review.rating), func.count(Review.id)).where(
            Review.reviewee_id == ref.provider_id,
            Review.reviewee_type == ref.provider_type,
            Review.is_approved == True,  # noqa: E712
        )
    )
    return RatingAggregate.from_row(*result.one())


async def _service_aggregate(db: AsyncSession, service_id: int) -> RatingAggregate:
    result = await db.execute(
        select(func.avg(Review.rating), func.count(Review.id))
        .join(Booking, Booking.id == Review.booking_id)
        .where(Booking.service_id == service_id, Review.is_approved == True)  # noqa: E712
    )
    return RatingAggregate.from_row(*result.one())


async def recompute_service_ratings(db: AsyncSession, ref: ProviderRef) -> Dict[int, RatingAggregate]:
    """Recompute every service owned by the provider. Services with no reviews reset to 0."""
    service_ids = (
        await db.scalars(
            select(Service.id).where(
                Service.provider_id == ref.provider_id,
                Service.provider_type == ref.provider_type,
            )
        )
    ).all()

    aggregates = {}
    for service_id in service_ids:
        aggregate = await _service_aggregate(db, service_id)
        await db.execute(
            update(Service)
            .where(Service.id == service_id)
            .values(
                average_rating=aggregate.average_rating,
                total_reviews=aggregate.total_reviews,
            )
        )
        aggregates[service_id] = aggregate
        logger.debug(
            f"Service {service_id}: rating={aggregate.average_rating}, "
            f"reviews={aggregate.total_reviews}"
        )
    return aggregates


async def recompute_provider_rating(db: AsyncSession, ref: ProviderRef) -> RatingAggregate:
    """
    Write the provider's aggregate and its services' aggregates.
    Flushes but does not commit; the caller owns the unit of work.
    """
    aggregate = await _provider_aggregate(db, ref)
    result = await db.execute(
        update(ref.model)
        .where(ref.model.id == ref.provider_id)
        .values(
            average_rating=aggregate.average_rating,
            total_reviews=aggregate.total_reviews,
        )
    )
    if not result.rowcount:
        logger.warning(f"Rating recompute: provider {ref} not found, aggregate not stored")

    services = await recompute_service_ratings(db, ref)
    await db.flush()

    logger.info(
        f"Recomputed rating for {ref}: avg={aggregate.average_rating}, "
        f"total={aggregate.total_reviews}, services={len(services)}"
    )
    return aggregate


async def get_provider_rating(db: AsyncSession, ref: ProviderRef) -> Optional[RatingAggregate]:
    """Stored aggregate for a provider, or None if the provider does not exist."""
    result = await db.execute(
        select(ref.model.average_rating, ref.model.total_reviews).where(
            ref.model.id == ref.provider_id
        )
    )
    row = result.one_or_none()
    if row is None:
        return None
    return RatingAggregate(Decimal(row[0]), row[1])


async def recompute_all_ratings(db: AsyncSession) -> int:
    """Repair pass over every organizer and supplier. Returns providers processed."""
    processed = 0
    for provider_type, model in (
        (ProviderType.ORGANIZER, Organizer),
        (ProviderType.SUPPLIER, Supplier),
    ):
        provider_ids = (await db.scalars(select(model.id).order_by(model.id))).all()
        for provider_id in provider_ids:
            await recompute_provider_rating(db, ProviderRef(provider_type, provider_id))
            processed += 1
    return processed
