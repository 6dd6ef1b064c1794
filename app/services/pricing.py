"""
Pricing engine: booking price snapshot and cancellation refund quote
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

TAX_RATE = Decimal("0.10")
FEE_RATE = Decimal("0.05")

CENTS = Decimal("0.01")
SECONDS_PER_DAY = 24 * 60 * 60

# (exclusive lower bound on days until travel, refund percent), checked in order
REFUND_TIERS = (
    (30, 100),
    (14, 75),
    (7, 50),
)

Number = Union[Decimal, int, float, str]


def to_money(value: Number) -> Decimal:
    """Round a monetary value to cents"""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class PricingSnapshot:
    """Frozen cost breakdown stored on a booking"""
    base_price: Decimal
    discount_percent: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    fee_amount: Decimal
    total_amount: Decimal
    currency: str

    def as_booking_columns(self) -> dict:
        return {
            "base_price": self.base_price,
            "discount_percent": self.discount_percent,
            "discount_amount": self.discount_amount,
            "tax_amount": self.tax_amount,
            "fee_amount": self.fee_amount,
            "total_amount": self.total_amount,
            "currency": self.currency,
        }


@dataclass(frozen=True)
class RefundQuote:
    """Outcome of applying the cancellation policy"""
    refund_amount: Decimal
    refund_percentage: int
    eligible: bool
    days_until_travel: int


def compute_booking_price(base_price: Number, discount_percent: Number = 0, currency: str = "USD") -> PricingSnapshot:
    """
    Compute the price snapshot for a booking.

    Callers validate that base_price >= 0 and 0 <= discount_percent <= 100.
    Every component is rounded to cents and the total is the sum of the
    rounded components.
    """
    base = to_money(base_price)
    discount = Decimal(str(discount_percent or 0))

    discount_amount = to_money(base * discount / 100)
    discounted = base - discount_amount
    tax_amount = to_money(discounted * TAX_RATE)
    fee_amount = to_money(discounted * FEE_RATE)
    total_amount = base - discount_amount + tax_amount + fee_amount

    return PricingSnapshot(
        base_price=base,
        discount_percent=discount,
        discount_amount=discount_amount,
        tax_amount=tax_amount,
        fee_amount=fee_amount,
        total_amount=total_amount,
        currency=currency or "USD",
    )


def days_until_travel(travel_start: datetime, now: datetime) -> int:
    """Whole days until departure, rounded up; negative once departure has passed"""
    delta = as_utc(travel_start) - as_utc(now)
    return math.ceil(delta.total_seconds() / SECONDS_PER_DAY)


def refund_percentage_for(days: int) -> int:
    for threshold, percent in REFUND_TIERS:
        if days > threshold:
            return percent
    return 0


def compute_refund(total_amount: Number, travel_start: datetime, now: datetime) -> RefundQuote:
    """
    Apply the tiered cancellation policy.

    Past travel dates produce a negative day count and land in the 0% tier.
    """
    days = days_until_travel(travel_start, now)
    percent = refund_percentage_for(days)
    refund_amount = to_money(to_money(total_amount) * percent / 100)

    return RefundQuote(
        refund_amount=refund_amount,
        refund_percentage=percent,
        eligible=percent > 0,
        days_until_travel=days,
    )
