"""
Booking management endpoints
"""

from typing import Any, Optional
from uuid import UUID
import logging

from fastapi import APIRouter, Depends, Query, status

from app.core.redis import booking_rate_limiter
from app.core.security import get_current_user, require_admin
from app.models.booking import BookingStatus
from app.models.user import User
from app.schemas.booking import (
    BookingCreate,
    BookingCancelRequest,
    BookingStatusUpdate,
    BookingResponse,
    BookingCreateResponse,
    BookingCancelResponse,
    PaymentReceiptResponse
)
from app.schemas.response import SuccessResponse, PaginatedResponse, PaginationMeta
from app.services.booking_service import BookingService, BookingCancelResult

logger = logging.getLogger(__name__)
router = APIRouter()

_booking_service: Optional[BookingService] = None


def get_booking_service() -> BookingService:
    """
    Shared booking service wired from settings
    """
    global _booking_service
    if _booking_service is None:
        _booking_service = BookingService()
    return _booking_service


def _cancel_response(result: BookingCancelResult) -> SuccessResponse[BookingCancelResponse]:
    return SuccessResponse(
        data=BookingCancelResponse(
            booking=BookingResponse.model_validate(result.booking),
            refund_amount=result.refund_amount,
            refund_percentage=result.refund_percentage,
            email_sent=result.email_sent
        ),
        message="Booking cancelled successfully"
    )


@router.post(
    "",
    response_model=SuccessResponse[BookingCreateResponse],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(booking_rate_limiter)]
)
async def create_booking(
    booking_data: BookingCreate,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service)
) -> Any:
    """
    Book a tour package, charge the payment and confirm the booking
    """
    result = await service.create_booking(booking_data, current_user)

    return SuccessResponse(
        data=BookingCreateResponse(
            booking=BookingResponse.model_validate(result.booking),
            payment_receipt=PaymentReceiptResponse(**result.payment_receipt),
            reward_points=result.reward_points,
            email_sent=result.email_sent
        ),
        message="Booking created successfully"
    )


@router.get("", response_model=PaginatedResponse[BookingResponse])
async def list_bookings(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    user_id: Optional[UUID] = Query(None),
    admin_user: User = Depends(require_admin),
    service: BookingService = Depends(get_booking_service)
) -> Any:
    """
    List all bookings (admin only)
    """
    bookings, total = await service.list_bookings(
        page=page,
        per_page=per_page,
        status=status_filter,
        user_id=user_id
    )

    return PaginatedResponse(
        data=[BookingResponse.model_validate(booking) for booking in bookings],
        pagination=PaginationMeta.build(page, per_page, total)
    )


@router.get("/mine", response_model=PaginatedResponse[BookingResponse])
async def list_my_bookings(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service)
) -> Any:
    """
    List the current user's bookings, newest first
    """
    bookings, total = await service.list_bookings(
        page=page,
        per_page=per_page,
        status=status_filter,
        user_id=current_user.id
    )

    return PaginatedResponse(
        data=[BookingResponse.model_validate(booking) for booking in bookings],
        pagination=PaginationMeta.build(page, per_page, total)
    )


@router.get("/{booking_id}", response_model=SuccessResponse[BookingResponse])
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service)
) -> Any:
    """
    Get a single booking (owner or admin)
    """
    booking = await service.get_booking(booking_id, current_user)
    return SuccessResponse(data=BookingResponse.model_validate(booking))


@router.delete("/{booking_id}", response_model=SuccessResponse[BookingCancelResponse])
async def cancel_booking(
    booking_id: UUID,
    cancel_data: Optional[BookingCancelRequest] = None,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service)
) -> Any:
    """
    Cancel a booking and quote its refund
    """
    reason = cancel_data.cancellation_reason if cancel_data else None
    result = await service.cancel_booking(booking_id, reason, current_user)
    return _cancel_response(result)


@router.post("/{booking_id}/cancel", response_model=SuccessResponse[BookingCancelResponse])
async def cancel_booking_action(
    booking_id: UUID,
    cancel_data: Optional[BookingCancelRequest] = None,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service)
) -> Any:
    """
    Cancel a booking (POST alias for clients that cannot send a DELETE body)
    """
    reason = cancel_data.cancellation_reason if cancel_data else None
    result = await service.cancel_booking(booking_id, reason, current_user)
    return _cancel_response(result)


@router.put("/{booking_id}/status", response_model=SuccessResponse[BookingResponse])
async def update_booking_status(
    booking_id: UUID,
    status_data: BookingStatusUpdate,
    admin_user: User = Depends(require_admin),
    service: BookingService = Depends(get_booking_service)
) -> Any:
    """
    Move a booking to completed or no-show (admin only)
    """
    booking = await service.update_booking_status(booking_id, status_data.status, status_data.notes)
    logger.info(f"Admin {admin_user.id} set booking {booking.booking_reference} to {booking.status}")
    return SuccessResponse(
        data=BookingResponse.model_validate(booking),
        message="Booking status updated"
    )
