"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the marketplace API.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class MessageResponse(BaseSchema):
    message: str
    success: bool = True


class ErrorResponse(BaseSchema):
    detail: str
    code: Optional[str] = None


# ── User ──────────────────────────────────────────────────────

class UserResponse(BaseSchema):
    id: int
    email: str
    full_name: str
    phone: Optional[str]
    role: str
    is_active: bool


# ── Events ────────────────────────────────────────────────────

class EventCreateRequest(BaseSchema):
    name: str = Field(..., min_length=1, max_length=255)
    event_type: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    event_date: datetime
    budget: Optional[Decimal] = Field(None, ge=0)
    guest_count: Optional[int] = Field(None, ge=0)
    location: Optional[str] = Field(None, max_length=500)


class EventUpdateRequest(BaseSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    event_type: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    event_date: Optional[datetime] = None
    budget: Optional[Decimal] = Field(None, ge=0)
    guest_count: Optional[int] = Field(None, ge=0)
    location: Optional[str] = Field(None, max_length=500)
    status: Optional[str] = None


class EventStatusRequest(BaseSchema):
    status: str


class EventResponse(BaseSchema):
    id: int
    client_id: Optional[int]
    organizer_id: Optional[int]
    name: str
    event_type: str
    description: Optional[str]
    event_date: datetime
    budget: Optional[Decimal]
    guest_count: Optional[int]
    location: Optional[str]
    status: str
    created_at: datetime
    updated_at: datetime


# ── Bookings ──────────────────────────────────────────────────

class BookingCreateRequest(BaseSchema):
    service_id: int
    event_id: int
    quote_amount: Optional[Decimal] = Field(None, ge=0)
    service_details: Optional[str] = None
    client_notes: Optional[str] = Field(None, max_length=2000)


class BookingStatusRequest(BaseSchema):
    status: str
    notes: Optional[str] = Field(None, max_length=2000)
    final_amount: Optional[Decimal] = None


class BookingResponse(BaseSchema):
    id: int
    event_id: Optional[int]
    service_id: Optional[int]
    client_id: Optional[int]
    provider_id: int
    provider_type: str
    booking_date: datetime
    event_date: datetime
    service_details: Optional[str]
    quote_amount: Optional[Decimal]
    final_amount: Optional[Decimal]
    status: str
    client_notes: Optional[str]
    provider_notes: Optional[str]
    updated_at: datetime


class BookingTransitionResponse(BaseSchema):
    booking: BookingResponse
    event_status: Optional[str] = None
    changed: bool = True


# ── Reviews & Ratings ─────────────────────────────────────────

class ReviewCreateRequest(BaseSchema):
    booking_id: int
    rating: int = Field(..., ge=1, le=5)
    review_text: str = Field(..., max_length=2000)

    @field_validator("review_text")
    @classmethod
    def text_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Review text is required")
        return v.strip()


class ReviewUpdateRequest(ReviewCreateRequest):
    booking_id: Optional[int] = None


class ReviewResponse(BaseSchema):
    id: int
    booking_id: Optional[int]
    reviewer_id: Optional[int]
    reviewee_id: int
    reviewee_type: str
    rating: int
    review_text: Optional[str]
    is_approved: bool
    is_edited: bool
    created_at: datetime
    updated_at: datetime


class RatingResponse(BaseSchema):
    provider_type: str
    provider_id: int
    average_rating: Decimal
    total_reviews: int


class RatingRepairResponse(BaseSchema):
    providers_processed: int


# ── Notifications ─────────────────────────────────────────────

class NotificationResponse(BaseSchema):
    id: int
    title: str
    message: str
    notification_type: str
    reference_id: Optional[int]
    reference_type: Optional[str]
    redirect_url: Optional[str]
    is_read: bool
    created_at: datetime
    read_at: Optional[datetime]


class NotificationListResponse(BaseSchema):
    items: List[NotificationResponse]
    total: int
    unread: int


class UnreadCountResponse(BaseSchema):
    count: int


class MessageNotificationRequest(BaseSchema):
    recipient_user_id: int
    conversation_id: int
    sender_name: str = Field(..., min_length=1, max_length=255)
    unread_count: int = Field(1, ge=1)


# ── Earnings ──────────────────────────────────────────────────

class EarningsSummaryResponse(BaseSchema):
    total_earnings: Decimal
    monthly_earnings: Decimal
    available_balance: Decimal
    pending_payouts: Decimal
    completed_payouts: Decimal
    next_payout_date: date
    payout_progress: Decimal
    minimum_payout: Decimal


class TransactionResponse(BaseSchema):
    id: int
    booking_id: Optional[int]
    payer_id: int
    payee_id: int
    amount: Decimal
    transaction_type: str
    status: str
    payment_method: Optional[str]
    transaction_date: datetime


class PayoutRequest(BaseSchema):
    amount: Decimal = Field(..., gt=0)
    payout_method: Optional[str] = Field(None, max_length=100)


class PayoutProcessRequest(BaseSchema):
    status: str


class PayoutResponse(BaseSchema):
    id: int
    payee_id: int
    amount: Decimal
    status: str
    payout_method: Optional[str]
    processed_at: Optional[datetime]
    created_at: datetime
