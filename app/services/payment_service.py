"""
Payment adapters
Charges bookings through Stripe or Razorpay behind a single result contract
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Optional, Protocol

import httpx
import stripe

from app.config import Settings, settings
from app.core.exceptions import ExternalServiceError, ValidationError
from app.models.booking import Booking
from app.models.payment import PaymentMethod
from app.services.pricing import to_money

logger = logging.getLogger(__name__)

CARD_METHODS = (PaymentMethod.CREDIT_CARD, PaymentMethod.DEBIT_CARD, PaymentMethod.STRIPE)

# Gateway fee schedules: (percentage, fixed fee)
STRIPE_FEES = (Decimal("0.029"), Decimal("0.30"))
RAZORPAY_FEES = (Decimal("0.02"), Decimal("0"))


@dataclass
class ChargeRequest:
    method: PaymentMethod
    amount: Decimal
    currency: str
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class ChargeResult:
    success: bool
    transaction_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    error_detail: Optional[str] = None
    status: Optional[str] = None
    simulated: bool = False

    @property
    def reference(self) -> Optional[str]:
        return self.transaction_id or self.payment_intent_id


class RefundExecutor(Protocol):
    """Hook for executing computed refunds; none is wired by default"""

    async def execute_refund(self, booking: Booking, amount: Decimal, reason: Optional[str]) -> None:
        ...


def to_minor_units(amount: Decimal) -> int:
    """Convert to cents/paise"""
    return int(to_money(amount) * 100)


def _millis() -> int:
    return int(time.time() * 1000)


def _error_description(response: httpx.Response) -> Optional[str]:
    try:
        return response.json().get("error", {}).get("description")
    except ValueError:
        return None


class PaymentAdapter(ABC):
    """Charges one payment method family"""

    name = "base"

    @abstractmethod
    async def charge(self, request: ChargeRequest) -> ChargeResult:
        ...


class StripePaymentAdapter(PaymentAdapter):
    """Card payments through Stripe payment intents"""

    name = "stripe"

    def __init__(self, api_key: str):
        self.api_key = api_key

    async def charge(self, request: ChargeRequest) -> ChargeResult:
        try:
            # The Stripe SDK is synchronous
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.create,
                api_key=self.api_key,
                amount=to_minor_units(request.amount),
                currency=request.currency.lower(),
                metadata={key: str(value) for key, value in request.metadata.items()},
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe error: {str(e)}")
            return ChargeResult(success=False, error_detail=e.user_message or str(e))

        if intent.status == "canceled":
            return ChargeResult(
                success=False,
                payment_intent_id=intent.id,
                status=intent.status,
                error_detail="Payment intent was canceled"
            )

        return ChargeResult(success=True, payment_intent_id=intent.id, status=intent.status)


class RazorpayPaymentAdapter(PaymentAdapter):
    """Razorpay orders over its REST API"""

    name = "razorpay"

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url
        self.transport = transport

    async def charge(self, request: ChargeRequest) -> ChargeResult:
        payload = {
            "amount": to_minor_units(request.amount),
            "currency": request.currency.upper(),
            "receipt": str(request.metadata.get("booking_reference", ""))[:40],
            "payment_capture": 1,
            "notes": {key: str(value) for key, value in request.metadata.items()},
        }

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                auth=(self.key_id, self.key_secret),
                timeout=30.0,
                transport=self.transport
            ) as client:
                response = await client.post("/orders", json=payload)
                response.raise_for_status()
                order = response.json()
        except httpx.HTTPStatusError as e:
            detail = _error_description(e.response)
            logger.error(f"Razorpay order creation error: {e.response.status_code} {detail}")
            return ChargeResult(success=False, error_detail=detail or str(e))
        except httpx.HTTPError as e:
            logger.error(f"Razorpay request failed: {e}")
            return ChargeResult(success=False, error_detail=str(e))

        return ChargeResult(success=True, transaction_id=order["id"], status=order.get("status"))


class StripeRefundExecutor:
    """Refunds card bookings against their Stripe payment intent"""

    def __init__(self, api_key: str):
        self.api_key = api_key

    async def execute_refund(self, booking: Booking, amount: Decimal, reason: Optional[str]) -> None:
        if PaymentMethod(booking.payment_method) not in CARD_METHODS or not booking.payment_intent_id:
            raise ExternalServiceError(
                "stripe",
                f"Booking {booking.booking_reference} has no Stripe payment to refund"
            )

        try:
            refund = await asyncio.to_thread(
                stripe.Refund.create,
                api_key=self.api_key,
                payment_intent=booking.payment_intent_id,
                amount=to_minor_units(amount),
                reason="requested_by_customer",
                metadata={
                    "booking_reference": booking.booking_reference,
                    "cancellation_reason": reason or "",
                },
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe refund failed for booking {booking.booking_reference}: {str(e)}")
            raise ExternalServiceError("stripe", f"Refund failed: {e.user_message or str(e)}")

        logger.info(f"Stripe refund {refund.id} of {amount} issued for booking {booking.booking_reference}")


class SimulatedPaymentAdapter(PaymentAdapter):
    """Development gateway used when no real gateway is configured"""

    name = "simulated"

    async def charge(self, request: ChargeRequest) -> ChargeResult:
        stamp = _millis()
        logger.warning(
            f"Payment gateway not configured. Simulated charge of {request.amount} {request.currency}"
        )
        return ChargeResult(
            success=True,
            transaction_id=f"mock_{request.method.value}_{stamp}",
            payment_intent_id=f"pi_mock_{stamp}",
            status="succeeded",
            simulated=True
        )


class PaymentGateway:
    """
    Dispatches a charge to the adapter registered for its payment method.
    Methods without an adapter are rejected, never silently simulated.
    """

    def __init__(self, adapters: Dict[PaymentMethod, PaymentAdapter]):
        self.adapters = dict(adapters)

    def supports(self, method: PaymentMethod) -> bool:
        return method in self.adapters

    def adapter_for(self, method: PaymentMethod) -> PaymentAdapter:
        adapter = self.adapters.get(method)
        if adapter is None:
            raise ValidationError(
                f"Payment method {PaymentMethod(method).value} is not supported",
                field="payment_method"
            )
        return adapter

    async def charge(self, request: ChargeRequest) -> ChargeResult:
        adapter = self.adapter_for(request.method)
        try:
            return await adapter.charge(request)
        except Exception as e:
            logger.error(f"{adapter.name} adapter raised during charge: {type(e).__name__}: {e}")
            return ChargeResult(success=False, error_detail=str(e))


def build_payment_gateway(config: Settings = settings) -> PaymentGateway:
    """Wire adapters from configuration"""
    if config.payment_mock_mode:
        simulated = SimulatedPaymentAdapter()
        return PaymentGateway({method: simulated for method in PaymentMethod})

    adapters: Dict[PaymentMethod, PaymentAdapter] = {}
    if config.stripe_configured:
        stripe_adapter = StripePaymentAdapter(config.STRIPE_SECRET_KEY)
        adapters.update({method: stripe_adapter for method in CARD_METHODS})
    if config.razorpay_configured:
        adapters[PaymentMethod.RAZORPAY] = RazorpayPaymentAdapter(
            config.RAZORPAY_KEY_ID,
            config.RAZORPAY_KEY_SECRET,
            base_url=config.RAZORPAY_API_URL
        )
    return PaymentGateway(adapters)


def build_refund_executor(config: Settings = settings) -> Optional[RefundExecutor]:
    """Stripe refunds only when explicitly enabled for a live Stripe account"""
    if not config.STRIPE_REFUNDS_ENABLED or config.payment_mock_mode or not config.stripe_configured:
        return None
    return StripeRefundExecutor(config.STRIPE_SECRET_KEY)


def calculate_payment_fees(amount: Decimal, method: PaymentMethod) -> Decimal:
    """Estimate the gateway's processing fee"""
    if method in CARD_METHODS:
        rate, fixed = STRIPE_FEES
    elif method == PaymentMethod.RAZORPAY:
        rate, fixed = RAZORPAY_FEES
    else:
        return Decimal("0.00")
    return to_money(to_money(amount) * rate + fixed)


def generate_payment_receipt(booking: Booking, charge: ChargeResult, paid_at: Optional[datetime] = None) -> Dict:
    """Build the receipt returned to the customer after a successful charge"""
    method = PaymentMethod(booking.payment_method)
    return {
        "receipt_number": f"RCP-{_millis()}",
        "booking_reference": booking.booking_reference,
        "amount": to_money(booking.total_amount),
        "currency": booking.currency,
        "payment_method": method.value,
        "transaction_id": charge.reference,
        "paid_at": paid_at or booking.paid_at or datetime.now(timezone.utc),
        "fees": calculate_payment_fees(booking.total_amount, method),
    }
