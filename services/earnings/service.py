"""
services/earnings/service.py
Provider earnings and payout requests. Money movements are recorded,
never settled: there is no payment gateway behind these rows.
"""

import calendar
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.notification.service import dispatch
from shared.models.models import (
    Booking,
    BookingStatus,
    Client,
    NotificationType,
    Payout,
    PayoutStatus,
    Transaction,
    TransactionStatus,
    User,
    UserRole,
    utcnow,
)
from shared.utils.errors import (
    DomainValidationError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
)
from shared.utils.providers import ProviderRef, provider_for_user, provider_user

logger = logging.getLogger(__name__)

BOOKING_TRANSACTION = "Booking"
DEFAULT_PAYOUT_METHOD = "Bank Transfer"
ZERO = Decimal("0.00")


@dataclass
class EarningsSummary:
    total_earnings: Decimal
    monthly_earnings: Decimal
    available_balance: Decimal
    pending_payouts: Decimal
    completed_payouts: Decimal
    next_payout_date: date
    payout_progress: Decimal
    minimum_payout: Decimal


def booking_amount(booking: Booking) -> Decimal:
    return booking.final_amount if booking.final_amount is not None else (booking.quote_amount or ZERO)


async def _provider_ref(db: AsyncSession, actor: User) -> ProviderRef:
    ref = await provider_for_user(db, actor)
    if ref is None:
        raise UnauthorizedError("Only organizers and suppliers have earnings")
    return ref


async def record_booking_transaction(db: AsyncSession, booking: Booking) -> Optional[Transaction]:
    """
    Record the client → provider transaction for a Completed booking.
    Part of the caller's unit of work; one row per booking.
    """
    existing = await db.scalar(
        select(Transaction).where(
            Transaction.booking_id == booking.id,
            Transaction.transaction_type == BOOKING_TRANSACTION,
        )
    )
    if existing:
        existing.amount = booking_amount(booking)
        return existing

    payer_id = await db.scalar(select(Client.user_id).where(Client.id == booking.client_id))
    payee = await provider_user(db, ProviderRef.of(booking))
    if payer_id is None or payee is None:
        logger.warning(f"Booking {booking.id}: transaction not recorded, missing payer or payee account")
        return None

    transaction = Transaction(
        booking_id=booking.id,
        payer_id=payer_id,
        payee_id=payee.id,
        amount=booking_amount(booking),
        transaction_type=BOOKING_TRANSACTION,
        status=TransactionStatus.COMPLETED,
        transaction_date=utcnow(),
    )
    db.add(transaction)
    await db.flush()
    logger.info(f"Recorded transaction {transaction.id} for booking {booking.id}: {transaction.amount}")
    return transaction


async def _payout_total(db: AsyncSession, payee_id: int, status: PayoutStatus) -> Decimal:
    total = await db.scalar(
        select(func.coalesce(func.sum(Payout.amount), 0)).where(
            Payout.payee_id == payee_id, Payout.status == status
        )
    )
    return Decimal(str(total or 0)).quantize(Decimal("0.01"))


def _last_day_of_month(today: date) -> date:
    return today.replace(day=calendar.monthrange(today.year, today.month)[1])


async def earnings_summary(db: AsyncSession, actor: User) -> EarningsSummary:
    ref = await _provider_ref(db, actor)
    result = await db.execute(
        select(Booking).where(
            Booking.provider_id == ref.provider_id,
            Booking.provider_type == ref.provider_type,
            Booking.status == BookingStatus.COMPLETED,
        )
    )
    completed = list(result.scalars())

    today = utcnow().date()
    total = sum((booking_amount(b) for b in completed), ZERO)
    monthly = sum(
        (
            booking_amount(b)
            for b in completed
            if b.event_date.year == today.year and b.event_date.month == today.month
        ),
        ZERO,
    )

    pending = await _payout_total(db, actor.id, PayoutStatus.PENDING)
    paid = await _payout_total(db, actor.id, PayoutStatus.COMPLETED)
    # Pending requests are reserved so the same balance cannot be requested twice
    available = max(total - paid - pending, ZERO)

    target = settings.PAYOUT_PROGRESS_TARGET
    progress = min(Decimal("100"), available / target * 100) if target > 0 else Decimal("100")

    return EarningsSummary(
        total_earnings=total,
        monthly_earnings=monthly,
        available_balance=available,
        pending_payouts=pending,
        completed_payouts=paid,
        next_payout_date=_last_day_of_month(today),
        payout_progress=progress.quantize(Decimal("0.01")),
        minimum_payout=settings.MINIMUM_PAYOUT_AMOUNT,
    )


async def request_payout(
    db: AsyncSession,
    actor: User,
    amount: Decimal,
    payout_method: Optional[str] = None,
) -> Payout:
    amount = Decimal(str(amount))
    if amount <= 0:
        raise DomainValidationError("Payout amount must be greater than zero")
    if amount < settings.MINIMUM_PAYOUT_AMOUNT:
        raise DomainValidationError(
            f"Minimum payout amount is {settings.MINIMUM_PAYOUT_AMOUNT}"
        )

    summary = await earnings_summary(db, actor)
    if amount > summary.available_balance:
        raise DomainValidationError("Insufficient available balance")

    payout = Payout(
        payee_id=actor.id,
        amount=amount,
        status=PayoutStatus.PENDING,
        payout_method=(payout_method or "").strip() or DEFAULT_PAYOUT_METHOD,
        created_at=utcnow(),
    )
    db.add(payout)
    await db.commit()
    logger.info(f"Payout {payout.id} requested by user {actor.id}: {amount}")
    return payout


async def process_payout(db: AsyncSession, payout_id: int, actor: User, status) -> Payout:
    if actor.role != UserRole.ADMIN:
        raise UnauthorizedError("Only admins can process payouts")
    try:
        new_status = PayoutStatus(str(getattr(status, "value", status)).capitalize())
    except ValueError:
        raise DomainValidationError(f"Invalid payout status: {status}")
    if new_status == PayoutStatus.PENDING:
        raise DomainValidationError("Payout can only be marked Completed or Failed")

    result = await db.execute(select(Payout).where(Payout.id == payout_id).with_for_update())
    payout = result.scalar_one_or_none()
    if not payout:
        raise NotFoundError("Payout not found")
    if payout.status != PayoutStatus.PENDING:
        raise InvalidTransitionError(f"Payout is already {payout.status.value}")

    payout.status = new_status
    payout.processed_at = utcnow()

    if new_status == PayoutStatus.COMPLETED:
        title, message = "Payout Completed", f"Your payout of {payout.amount} has been processed"
    else:
        title, message = "Payout Failed", f"Your payout of {payout.amount} could not be processed"
    await dispatch(
        db,
        payout.payee_id,
        title=title,
        message=message,
        notification_type=NotificationType.PAYOUT,
        reference_id=payout.id,
        reference_type="Payout",
        redirect_url="/earnings",
    )

    await db.commit()
    logger.info(f"Payout {payout.id} marked {new_status.value} by admin {actor.id}")
    return payout


async def list_transactions(db: AsyncSession, actor: User, limit: int = 50) -> List[Transaction]:
    await _provider_ref(db, actor)
    result = await db.execute(
        select(Transaction)
        .where(Transaction.payee_id == actor.id)
        .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
        .limit(limit)
    )
    return list(result.scalars())


async def list_payouts(db: AsyncSession, actor: User, status: Optional[str] = None) -> List[Payout]:
    """Provider sees own payouts; admin sees all (optionally by status)."""
    query = select(Payout)
    if actor.role != UserRole.ADMIN:
        await _provider_ref(db, actor)
        query = query.where(Payout.payee_id == actor.id)
    if status:
        try:
            query = query.where(Payout.status == PayoutStatus(status.capitalize()))
        except ValueError:
            raise DomainValidationError(f"Invalid payout status: {status}")
    result = await db.execute(query.order_by(Payout.created_at.desc(), Payout.id.desc()))
    return list(result.scalars())
