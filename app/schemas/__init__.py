"""
Pydantic schemas for request and response validation
"""

from app.schemas.booking import (
    TravelerCreate,
    TravelDates,
    BookingCreate,
    BookingCancelRequest,
    BookingStatusUpdate,
    BookingResponse,
    BookingCreateResponse,
    BookingCancelResponse,
    PaymentReceiptResponse
)
from app.schemas.response import (
    SuccessResponse,
    ErrorResponse,
    PaginatedResponse,
    PaginationMeta
)

__all__ = [
    "TravelerCreate",
    "TravelDates",
    "BookingCreate",
    "BookingCancelRequest",
    "BookingStatusUpdate",
    "BookingResponse",
    "BookingCreateResponse",
    "BookingCancelResponse",
    "PaymentReceiptResponse",
    "SuccessResponse",
    "ErrorResponse",
    "PaginatedResponse",
    "PaginationMeta"
]
