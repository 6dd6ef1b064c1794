"""
Booking lifecycle service

Creation runs as a saga: reserve a slot, persist the pending booking, charge
the payment, then confirm and credit reward points. A failing step
compensates the completed ones in reverse order. Cancellation applies the
tiered refund policy and hands the slot back in one transaction.
"""

import logging
import secrets
import string
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import UUID

from app.core.database import DatabaseManager, db_manager
from app.core.exceptions import (
    ExternalServiceError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    PaymentFailedError,
    CapacityExceededError,
    ValidationError,
)
from app.core.metrics import metrics_collector
from app.core.saga import SagaOrchestrator, SagaStatus, saga_orchestrator
from app.models.booking import Booking, BookingStatus, TravelerGender
from app.models.payment import PaymentMethod, PaymentStatus
from app.models.user import User
from app.schemas.booking import BookingCreate
from app.services.email_service import EmailService
from app.services.inventory import InventoryLedger
from app.services.payment_service import (
    ChargeRequest,
    ChargeResult,
    PaymentGateway,
    RefundExecutor,
    build_payment_gateway,
    build_refund_executor,
    generate_payment_receipt,
)
from app.services.pricing import as_utc, compute_booking_price, compute_refund
from app.services.rewards import RewardAccrual
from app.services.stores import BookingStore, TourStore

logger = logging.getLogger(__name__)

BASE36_ALPHABET = string.digits + string.ascii_uppercase
REFERENCE_PREFIX = "TT"
REFERENCE_SUFFIX_LENGTH = 6

# Admin status changes; cancellation has its own flow
ALLOWED_STATUS_TRANSITIONS = {
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED, BookingStatus.NO_SHOW},
    BookingStatus.NO_SHOW: {BookingStatus.COMPLETED},
}


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_booking_reference(timestamp_ms: Optional[int] = None) -> str:
    """TT + base36 millisecond timestamp + 6 random base36 characters"""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(REFERENCE_SUFFIX_LENGTH))
    return f"{REFERENCE_PREFIX}{_to_base36(timestamp_ms)}{suffix}"


def is_owner_or_admin(booking: Booking, user: User) -> bool:
    return user.is_admin or booking.user_id == user.id


@dataclass
class BookingCreateResult:
    booking: Booking
    payment_receipt: Dict[str, Any]
    reward_points: int
    email_sent: bool


@dataclass
class BookingCancelResult:
    booking: Booking
    refund_amount: Decimal
    refund_percentage: int
    email_sent: bool


class BookingService:
    """
    Booking lifecycle controller.

    Every database step opens its own short transaction; no transaction is
    held open across the payment call.
    """

    def __init__(
        self,
        db: Optional[DatabaseManager] = None,
        payment_gateway: Optional[PaymentGateway] = None,
        email_service: Optional[EmailService] = None,
        orchestrator: Optional[SagaOrchestrator] = None,
        refund_executor: Optional[RefundExecutor] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.db = db or db_manager
        self.payment_gateway = payment_gateway or build_payment_gateway()
        self.email_service = email_service or EmailService()
        self.orchestrator = orchestrator or saga_orchestrator
        self.refund_executor = refund_executor if refund_executor is not None else build_refund_executor()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = logging.getLogger(__name__)

    def _now(self) -> datetime:
        return as_utc(self.clock())

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _validate_request(self, data: BookingCreate) -> PaymentMethod:
        if not data.travelers:
            raise ValidationError("At least one traveler is required", field="travelers")

        if as_utc(data.travel_dates.start_date) >= as_utc(data.travel_dates.end_date):
            raise ValidationError("Travel start date must be before the end date", field="travel_dates")

        try:
            method = PaymentMethod(data.payment_method)
        except ValueError:
            raise ValidationError(f"Unknown payment method: {data.payment_method}", field="payment_method")

        # Raises ValidationError for methods without an adapter
        self.payment_gateway.adapter_for(method)
        return method

    async def create_booking(self, data: BookingCreate, user: User) -> BookingCreateResult:
        """
        Create, pay for and confirm a booking.

        Raises ValidationError, NotFoundError, CapacityExceededError or
        PaymentFailedError. On any failure the slot is back in the tour's
        inventory and no booking row remains.
        """
        async with metrics_collector.track_booking_operation("create"):
            method = self._validate_request(data)

            async with self.db.read_session() as session:
                tour = await TourStore(session).find_by_id(data.tour_package_id)

            if tour is None or not tour.is_active:
                raise NotFoundError("Tour package", data.tour_package_id)
            if tour.available_slots <= 0:
                raise CapacityExceededError(tour.id)

            pricing = compute_booking_price(tour.price, tour.discount, tour.currency)
            booking_id = uuid.uuid4()
            booking_reference = generate_booking_reference()

            draft = {
                "id": booking_id,
                "booking_reference": booking_reference,
                "user_id": user.id,
                "tour_package_id": tour.id,
                "status": BookingStatus.PENDING,
                "start_date": as_utc(data.travel_dates.start_date),
                "end_date": as_utc(data.travel_dates.end_date),
                "payment_method": method,
                "payment_status": PaymentStatus.PENDING,
                "special_requests": data.special_requests,
                "cancellation_policy": tour.cancellation_policy,
                **pricing.as_booking_columns(),
            }
            travelers = [
                {
                    "name": traveler.name,
                    "email": traveler.email,
                    "phone": traveler.phone,
                    "age": traveler.age,
                    "gender": TravelerGender(traveler.gender),
                    "passport_number": traveler.passport_number,
                    "nationality": traveler.nationality,
                    "dietary_requirements": traveler.dietary_requirements,
                }
                for traveler in data.travelers
            ]

            saga = self.orchestrator.create_saga(
                "create_booking",
                {
                    "booking_id": str(booking_id),
                    "booking_reference": booking_reference,
                    "user_id": str(user.id),
                    "tour_id": str(tour.id),
                    "amount": str(pricing.total_amount),
                    "currency": pricing.currency,
                    "payment_method": method.value,
                },
            )

            async def reserve_inventory(context):
                async with self.db.atomic_transaction() as tx:
                    await InventoryLedger(tx).reserve_slot(tour.id)

            async def release_inventory(context):
                async with self.db.atomic_transaction() as tx:
                    await InventoryLedger(tx).release_slot(tour.id)

            async def persist_pending_booking(context):
                async with self.db.atomic_transaction() as tx:
                    await BookingStore(tx).create(draft, travelers)

            async def delete_pending_booking(context):
                async with self.db.atomic_transaction() as tx:
                    await BookingStore(tx).delete(booking_id)

            async def charge_payment(context) -> ChargeResult:
                charge = await self.payment_gateway.charge(
                    ChargeRequest(
                        method=method,
                        amount=pricing.total_amount,
                        currency=pricing.currency,
                        metadata={
                            "booking_id": str(booking_id),
                            "booking_reference": booking_reference,
                            "user_id": str(user.id),
                            "tour_id": str(tour.id),
                        },
                    )
                )
                if not charge.success:
                    raise PaymentFailedError("Payment failed", charge.error_detail)

                context["transaction_id"] = charge.reference
                return charge

            async def reverse_charge(context):
                await self._reverse_charge(booking_id, pricing.total_amount, charge_step.result)

            async def confirm_booking(context) -> int:
                charge: ChargeResult = charge_step.result
                async with self.db.atomic_transaction() as tx:
                    confirmed = await BookingStore(tx).transition_status(
                        booking_id,
                        BookingStatus.PENDING,
                        BookingStatus.CONFIRMED,
                        transaction_id=charge.reference,
                        payment_intent_id=charge.payment_intent_id,
                        payment_status=PaymentStatus.COMPLETED,
                        paid_at=self._now(),
                    )
                    if not confirmed:
                        raise InvalidStateError("Booking is no longer pending")

                    points = await RewardAccrual(tx).credit_points(user.id, pricing.total_amount)

                context["reward_points"] = points
                return points

            self.orchestrator.add_step(saga, "reserve_inventory", reserve_inventory, release_inventory)
            self.orchestrator.add_step(saga, "persist_pending_booking", persist_pending_booking, delete_pending_booking)
            charge_step = self.orchestrator.add_step(saga, "charge_payment", charge_payment, reverse_charge)
            confirm_step = self.orchestrator.add_step(saga, "confirm_booking", confirm_booking)

            if not await self.orchestrator.execute_saga(saga):
                transaction_id = saga.context.get("transaction_id")
                if saga.status == SagaStatus.COMPENSATION_FAILED and transaction_id:
                    raise ExternalServiceError(
                        "payment",
                        f"Booking {booking_reference} failed after payment {transaction_id} was captured; "
                        f"the charge needs manual reconciliation",
                        details={"transaction_id": transaction_id, "booking_reference": booking_reference},
                    ) from saga.error

                error = saga.error
                if isinstance(error, Exception):
                    raise error
                raise ExternalServiceError("booking", "Booking could not be completed")

            booking = await self._load_booking(booking_id)
            metrics_collector.record_booking_created()
            self.logger.info(
                f"Booking {booking_reference} confirmed for user {user.id} on tour {tour.id}: "
                f"{pricing.total_amount} {pricing.currency}"
            )

        email_sent = await self._notify(self.email_service.send_booking_confirmation, booking)

        return BookingCreateResult(
            booking=booking,
            payment_receipt=generate_payment_receipt(booking, charge_step.result),
            reward_points=confirm_step.result,
            email_sent=email_sent,
        )

    async def _reverse_charge(self, booking_id: UUID, amount: Decimal, charge: ChargeResult):
        """Compensation for a captured charge whose booking could not be confirmed"""
        if self.refund_executor is None:
            raise ExternalServiceError(
                "payment",
                f"Charge {charge.reference} for booking {booking_id} needs a manual refund"
            )

        # The pending row never received the charge ids; the executor needs them
        booking = await self._load_booking(booking_id)
        booking.transaction_id = charge.reference
        booking.payment_intent_id = charge.payment_intent_id
        await self.refund_executor.execute_refund(booking, amount, "Booking confirmation failed")

    async def _execute_refund(self, booking: Booking, amount: Decimal, reason: Optional[str]) -> Booking:
        """Hand the refund to the executor and record it on the payment; failures are logged only"""
        try:
            await self.refund_executor.execute_refund(booking, amount, reason)
        except Exception as e:
            self.logger.error(f"Refund execution failed for booking {booking.booking_reference}: {e}")
            return booking

        if amount >= booking.total_amount:
            payment_status = PaymentStatus.REFUNDED
        else:
            payment_status = PaymentStatus.PARTIALLY_REFUNDED

        async with self.db.atomic_transaction() as tx:
            await BookingStore(tx).record_refund(booking.id, amount, reason, self._now(), payment_status)
        return await self._load_booking(booking.id)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel_booking(self, booking_id: UUID, reason: Optional[str], user: User) -> BookingCancelResult:
        """
        Cancel a confirmed (or no-show) booking and quote its refund.
        The slot goes back to the tour; reward points are kept.
        """
        async with metrics_collector.track_booking_operation("cancel"):
            booking = await self.get_booking(booking_id, user)

            prior_status = BookingStatus(booking.status)
            if booking.is_terminal:
                raise InvalidStateError(
                    f"Booking is already {prior_status.value}",
                    current_status=prior_status.value
                )
            if prior_status == BookingStatus.PENDING:
                raise InvalidStateError(
                    "Booking payment has not been confirmed yet",
                    current_status=prior_status.value
                )

            now = self._now()
            quote = compute_refund(booking.total_amount, booking.start_date, now)

            async with self.db.atomic_transaction() as tx:
                cancelled = await BookingStore(tx).transition_status(
                    booking.id,
                    prior_status,
                    BookingStatus.CANCELLED,
                    cancellation_reason=reason,
                    cancelled_at=now,
                    refund_amount=quote.refund_amount,
                    refund_percentage=quote.refund_percentage,
                    refund_eligibility=quote.eligible,
                )
                if not cancelled:
                    raise InvalidStateError(
                        "Booking status changed while cancelling",
                        current_status=prior_status.value
                    )
                await InventoryLedger(tx).release_slot(booking.tour_package_id)

            booking = await self._load_booking(booking.id)
            metrics_collector.record_booking_cancelled()
            self.logger.info(
                f"Booking {booking.booking_reference} cancelled by user {user.id}: "
                f"refund {quote.refund_amount} ({quote.refund_percentage}%), "
                f"{quote.days_until_travel} days before travel"
            )

        if self.refund_executor is not None and quote.refund_amount > 0:
            booking = await self._execute_refund(booking, quote.refund_amount, reason)

        email_sent = await self._notify(self.email_service.send_booking_cancellation, booking)

        return BookingCancelResult(
            booking=booking,
            refund_amount=quote.refund_amount,
            refund_percentage=quote.refund_percentage,
            email_sent=email_sent,
        )

    # ------------------------------------------------------------------
    # Queries and admin operations
    # ------------------------------------------------------------------

    async def get_booking(self, booking_id: UUID, user: User) -> Booking:
        booking = await self._load_booking(booking_id)
        if not is_owner_or_admin(booking, user):
            raise ForbiddenError("Not authorized to access this booking")
        return booking

    async def list_bookings(
        self,
        page: int = 1,
        per_page: int = 10,
        status: Optional[BookingStatus] = None,
        user_id: Optional[UUID] = None
    ) -> Tuple[List[Booking], int]:
        async with self.db.read_session() as session:
            return await BookingStore(session).list(page=page, per_page=per_page, status=status, user_id=user_id)

    async def update_booking_status(
        self,
        booking_id: UUID,
        status: BookingStatus,
        notes: Optional[str] = None
    ) -> Booking:
        """Admin status change: confirmed -> completed | no_show, no_show -> completed"""
        booking = await self._load_booking(booking_id)
        current = BookingStatus(booking.status)
        target = BookingStatus(status)

        if target == BookingStatus.CANCELLED:
            raise InvalidStateError("Use the cancellation endpoint to cancel a booking", current_status=current.value)
        if target not in ALLOWED_STATUS_TRANSITIONS.get(current, set()):
            raise InvalidStateError(
                f"Cannot change booking status from {current.value} to {target.value}",
                current_status=current.value
            )

        values = {"notes": notes} if notes is not None else {}
        async with self.db.atomic_transaction() as tx:
            if not await BookingStore(tx).transition_status(booking.id, current, target, **values):
                raise InvalidStateError("Booking status changed concurrently", current_status=current.value)

        self.logger.info(f"Booking {booking.booking_reference} moved from {current.value} to {target.value}")
        return await self._load_booking(booking.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_booking(self, booking_id: UUID) -> Booking:
        async with self.db.read_session() as session:
            booking = await BookingStore(session).find_by_id(booking_id)
        if booking is None:
            raise NotFoundError("Booking", booking_id)
        return booking

    async def _notify(self, send, booking: Booking) -> bool:
        """Notifications never fail the operation that triggered them"""
        try:
            return bool(await send(booking))
        except Exception as e:
            self.logger.warning(f"Notification for booking {booking.booking_reference} failed: {e}")
            return False
