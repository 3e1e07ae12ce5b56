"""
services/review/service.py
Review lifecycle: one review per Completed booking, written by the
booking's client, edited by the same client, removed by an admin.

Every mutation commits the review first and only then recomputes the
provider's rating aggregate. A failed recompute never undoes the review;
it is logged and handed to the Celery repair task instead.
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from services.notification.service import dispatch
from services.rating.service import recompute_provider_rating
from shared.models.models import (
    Booking,
    BookingStatus,
    Client,
    NotificationType,
    Review,
    User,
    UserRole,
    utcnow,
)
from shared.utils.errors import (
    ConflictError,
    DomainValidationError,
    NotFoundError,
    UnauthorizedError,
)
from shared.utils.providers import ProviderRef, provider_user

logger = logging.getLogger(__name__)


def _validate(rating: int, review_text: Optional[str]) -> str:
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise DomainValidationError("Rating must be a whole number")
    if not 1 <= rating <= 5:
        raise DomainValidationError("Rating must be between 1 and 5")
    text = (review_text or "").strip()
    if not text:
        raise DomainValidationError("Review text is required")
    return text


def _review_ref(review: Review) -> ProviderRef:
    return ProviderRef(review.reviewee_type, review.reviewee_id)


async def _refresh_ratings(db: AsyncSession, ref: ProviderRef, *reload) -> bool:
    """
    Recompute after the review write is committed. Failures are repaired
    later. Rows in `reload` are re-read after a rollback so callers can
    keep using them.
    """
    try:
        await recompute_provider_rating(db, ref)
        await db.commit()
        return True
    except Exception:
        await db.rollback()
        logger.error(f"Rating recompute failed for {ref}, scheduling repair", exc_info=True)
        _enqueue_repair(ref)
    for row in reload:
        await db.refresh(row)
    return False


def _enqueue_repair(ref: ProviderRef) -> None:
    from tasks.rating_tasks import recompute_provider_rating_task

    try:
        recompute_provider_rating_task.delay(ref.provider_id, ref.provider_type.value)
    except Exception:
        logger.error(f"Could not enqueue rating repair for {ref}", exc_info=True)


# ── Mutations ─────────────────────────────────────────────────

async def create_review(
    db: AsyncSession,
    actor: User,
    booking_id: int,
    rating: int,
    review_text: Optional[str],
) -> Review:
    text = _validate(rating, review_text)

    booking = await db.get(Booking, booking_id)
    if not booking:
        raise NotFoundError("Booking not found")

    client_user_id = await db.scalar(select(Client.user_id).where(Client.id == booking.client_id))
    if client_user_id is None or client_user_id != actor.id:
        raise UnauthorizedError("You can only review your own bookings")
    if booking.status != BookingStatus.COMPLETED:
        raise NotFoundError("No completed booking found to review")

    existing = await db.scalar(select(Review.id).where(Review.booking_id == booking.id))
    if existing:
        raise ConflictError("You have already reviewed this booking")

    ref = ProviderRef.of(booking)
    review = Review(
        booking_id=booking.id,
        reviewer_id=actor.id,
        reviewee_id=ref.provider_id,
        reviewee_type=ref.provider_type,
        rating=int(rating),
        review_text=text,
        is_approved=True,
        is_edited=False,
    )
    db.add(review)
    try:
        await db.commit()
    except IntegrityError:
        # Lost a race with a concurrent review for the same booking
        await db.rollback()
        raise ConflictError("You have already reviewed this booking")
    logger.info(f"Review {review.id} created for booking {booking.id} ({ref}) rating={review.rating}")

    await _refresh_ratings(db, ref, review, actor)

    reviewee = await provider_user(db, ref)
    await dispatch(
        db,
        reviewee.id if reviewee else None,
        title="New Review",
        message=f"{actor.full_name} left you a {review.rating}-star review",
        notification_type=NotificationType.REVIEW,
        reference_id=review.id,
        reference_type="Review",
        redirect_url=f"/{ref.slug}/reviews",
    )
    await db.commit()
    return review


async def edit_review(
    db: AsyncSession,
    review_id: int,
    actor: User,
    rating: int,
    review_text: Optional[str],
) -> Review:
    text = _validate(rating, review_text)

    review = await db.get(Review, review_id)
    if not review:
        raise NotFoundError("Review not found")
    if review.reviewer_id != actor.id:
        raise UnauthorizedError("You can only edit your own reviews")

    review.rating = int(rating)
    review.review_text = text
    review.is_edited = True
    review.updated_at = utcnow()
    await db.commit()
    logger.info(f"Review {review.id} edited by user {actor.id} rating={review.rating}")

    await _refresh_ratings(db, _review_ref(review), review)
    return review


async def delete_review(db: AsyncSession, review_id: int, actor: User) -> Review:
    """Admin removal. The aggregate may legitimately drop back to 0/0."""
    if actor.role != UserRole.ADMIN:
        raise UnauthorizedError("Only admins can delete reviews")

    review = await db.get(Review, review_id)
    if not review:
        raise NotFoundError("Review not found")

    ref = _review_ref(review)
    await db.delete(review)
    await db.commit()
    logger.info(f"Review {review_id} deleted by admin {actor.id}")

    await _refresh_ratings(db, ref)
    return review


# ── Reads ─────────────────────────────────────────────────────

async def list_provider_reviews(
    db: AsyncSession, ref: ProviderRef, limit: int = 50, offset: int = 0
) -> List[Review]:
    result = await db.execute(
        select(Review)
        .where(
            Review.reviewee_id == ref.provider_id,
            Review.reviewee_type == ref.provider_type,
            Review.is_approved == True,  # noqa: E712
        )
        .order_by(Review.created_at.desc(), Review.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars())


async def get_booking_review(db: AsyncSession, booking_id: int) -> Review:
    result = await db.execute(select(Review).where(Review.booking_id == booking_id))
    review = result.scalar_one_or_none()
    if not review:
        raise NotFoundError("No review for this booking")
    return review
