"""
Booking schemas
"""

from pydantic import EmailStr, Field, model_validator
from typing import List, Optional
from uuid import UUID
from datetime import datetime
from decimal import Decimal

from app.schemas.base import BaseSchema, IDSchema, Money, TimestampSchema, UTCDateTime
from app.models.booking import BookingStatus, TravelerGender
from app.models.payment import PaymentMethod, PaymentStatus
from app.config import settings
from app.services.pricing import as_utc


class TravelerCreate(BaseSchema):
    """Traveler details submitted with a booking"""
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: str = Field(..., min_length=1, max_length=30)
    age: int = Field(..., ge=1, le=120)
    gender: TravelerGender
    passport_number: Optional[str] = Field(None, max_length=50)
    nationality: Optional[str] = Field(None, max_length=100)
    dietary_requirements: Optional[str] = Field(None, max_length=500)


class TravelDates(BaseSchema):
    """Requested travel window"""
    start_date: datetime
    end_date: datetime

    @model_validator(mode="after")
    def validate_order(self):
        if as_utc(self.start_date) >= as_utc(self.end_date):
            raise ValueError("start_date must be before end_date")
        return self


class BookingCreate(BaseSchema):
    """Booking creation schema"""
    tour_package_id: UUID
    travelers: List[TravelerCreate] = Field(
        ..., min_length=1, max_length=settings.MAX_TRAVELERS_PER_BOOKING
    )
    travel_dates: TravelDates
    payment_method: PaymentMethod
    special_requests: Optional[str] = Field(None, max_length=2000)


class BookingCancelRequest(BaseSchema):
    """Booking cancellation schema"""
    cancellation_reason: Optional[str] = Field(None, max_length=500)


class BookingStatusUpdate(BaseSchema):
    """Admin status change"""
    status: BookingStatus
    notes: Optional[str] = Field(None, max_length=2000)


class TravelerResponse(BaseSchema):
    name: str
    email: str
    phone: str
    age: int
    gender: TravelerGender
    passport_number: Optional[str] = None
    nationality: Optional[str] = None
    dietary_requirements: Optional[str] = None


class BookingResponse(IDSchema, TimestampSchema):
    """Booking response schema"""
    booking_reference: str
    user_id: UUID
    tour_package_id: UUID
    status: BookingStatus
    start_date: UTCDateTime
    end_date: UTCDateTime
    travelers: List[TravelerResponse]

    base_price: Money
    discount_percent: Decimal
    discount_amount: Money
    tax_amount: Money
    fee_amount: Money
    total_amount: Money
    currency: str

    payment_method: PaymentMethod
    payment_status: PaymentStatus
    transaction_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    paid_at: Optional[UTCDateTime] = None

    special_requests: Optional[str] = None
    notes: Optional[str] = None
    cancellation_policy: str

    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[UTCDateTime] = None
    refund_amount: Money = Decimal("0")
    refund_percentage: Optional[int] = None
    refund_eligibility: bool = True
    payment_refund_amount: Optional[Money] = None
    refunded_at: Optional[UTCDateTime] = None


class PaymentReceiptResponse(BaseSchema):
    receipt_number: str
    booking_reference: str
    amount: Money
    currency: str
    payment_method: PaymentMethod
    transaction_id: Optional[str] = None
    paid_at: UTCDateTime
    fees: Money


class BookingCreateResponse(BaseSchema):
    """Result of a successful booking"""
    booking: BookingResponse
    payment_receipt: PaymentReceiptResponse
    reward_points: int
    email_sent: bool


class BookingCancelResponse(BaseSchema):
    """Booking cancellation response schema"""
    booking: BookingResponse
    refund_amount: Money
    refund_percentage: int
    email_sent: bool
