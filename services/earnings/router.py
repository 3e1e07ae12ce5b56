"""
services/earnings/router.py
Provider earnings dashboard and payout requests; admins process payouts.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.earnings import service as earnings_service
from shared.middleware.auth import get_current_user, require_admin, require_provider
from shared.models.models import User
from shared.schemas.schemas import (
    EarningsSummaryResponse,
    PayoutProcessRequest,
    PayoutRequest,
    PayoutResponse,
    TransactionResponse,
)

router = APIRouter(prefix="/earnings", tags=["Earnings"])


@router.get("/summary", response_model=EarningsSummaryResponse)
async def get_summary(
    current_user: User = Depends(require_provider),
    db: AsyncSession = Depends(get_db),
):
    summary = await earnings_service.earnings_summary(db, current_user)
    return EarningsSummaryResponse.model_validate(summary)


@router.get("/transactions", response_model=List[TransactionResponse])
async def list_transactions(
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(require_provider),
    db: AsyncSession = Depends(get_db),
):
    return await earnings_service.list_transactions(db, current_user, limit)


@router.get("/payouts", response_model=List[PayoutResponse])
async def list_payouts(
    status_filter: Optional[str] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Providers see their own payouts; admins see every payout."""
    return await earnings_service.list_payouts(db, current_user, status_filter)


@router.post("/payouts", response_model=PayoutResponse, status_code=status.HTTP_201_CREATED)
async def request_payout(
    data: PayoutRequest,
    current_user: User = Depends(require_provider),
    db: AsyncSession = Depends(get_db),
):
    return await earnings_service.request_payout(db, current_user, data.amount, data.payout_method)


@router.post("/payouts/{payout_id}/process", response_model=PayoutResponse)
async def process_payout(
    payout_id: int,
    data: PayoutProcessRequest,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await earnings_service.process_payout(db, payout_id, current_user, data.status)
