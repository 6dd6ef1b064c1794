"""
Persistence collaborators used by the booking lifecycle.

Every mutation of shared counters or booking status is a single conditional
UPDATE so concurrent requests never interleave a read-modify-write.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID
import logging

from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.booking import Booking, BookingTraveler, BookingStatus
from app.models.payment import PaymentStatus
from app.models.tour import TourPackage
from app.models.user import User

logger = logging.getLogger(__name__)


class TourStore:
    """Tour package lookups and atomic capacity updates"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_id(self, tour_id: UUID) -> Optional[TourPackage]:
        return await self.session.get(TourPackage, tour_id)

    async def exists(self, tour_id: UUID) -> bool:
        result = await self.session.execute(
            select(TourPackage.id).where(TourPackage.id == tour_id)
        )
        return result.scalar_one_or_none() is not None

    async def apply_capacity_delta(self, tour_id: UUID, booked_delta: int, available_delta: int) -> bool:
        """
        Shift both capacity counters in one statement.
        Returns False when the row is missing or a counter would go negative.
        """
        stmt = (
            update(TourPackage)
            .where(TourPackage.id == tour_id)
            .values(
                total_booked=TourPackage.total_booked + booked_delta,
                available_slots=TourPackage.available_slots + available_delta,
            )
            .execution_options(synchronize_session=False)
        )
        if available_delta < 0:
            stmt = stmt.where(TourPackage.available_slots + available_delta >= 0)
        if booked_delta < 0:
            stmt = stmt.where(TourPackage.total_booked + booked_delta >= 0)

        result = await self.session.execute(stmt)
        return result.rowcount == 1


class BookingStore:
    """Booking persistence"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _with_relations(self, stmt):
        return stmt.options(
            selectinload(Booking.travelers),
            selectinload(Booking.user),
            selectinload(Booking.tour_package),
        )

    async def create(self, draft: Dict[str, Any], travelers: Sequence[Dict[str, Any]]) -> Booking:
        booking = Booking(**draft)
        booking.travelers = [
            BookingTraveler(position=index, **traveler)
            for index, traveler in enumerate(travelers)
        ]
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def find_by_id(self, booking_id: UUID, with_relations: bool = True) -> Optional[Booking]:
        stmt = select(Booking).where(Booking.id == booking_id)
        if with_relations:
            stmt = self._with_relations(stmt)
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def save(self, booking: Booking) -> Booking:
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def delete(self, booking_id: UUID) -> bool:
        await self.session.execute(
            delete(BookingTraveler)
            .where(BookingTraveler.booking_id == booking_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(
            delete(Booking)
            .where(Booking.id == booking_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def transition_status(
        self,
        booking_id: UUID,
        expected: BookingStatus,
        target: BookingStatus,
        **values: Any
    ) -> bool:
        """
        Move a booking from ``expected`` to ``target`` only if nobody else
        changed it first. Returns False when the prior status did not match.
        """
        result = await self.session.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == expected)
            .values(status=target, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def record_refund(
        self,
        booking_id: UUID,
        amount: Decimal,
        reason: Optional[str],
        refunded_at: datetime,
        payment_status: PaymentStatus
    ) -> bool:
        result = await self.session.execute(
            update(Booking)
            .where(Booking.id == booking_id)
            .values(
                payment_status=payment_status,
                payment_refund_amount=amount,
                refund_reason=reason,
                refunded_at=refunded_at,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list(
        self,
        page: int = 1,
        per_page: int = 10,
        status: Optional[BookingStatus] = None,
        user_id: Optional[UUID] = None
    ) -> Tuple[List[Booking], int]:
        filters = []
        if status:
            filters.append(Booking.status == status)
        if user_id:
            filters.append(Booking.user_id == user_id)

        query = (
            self._with_relations(select(Booking))
            .where(*filters)
            .order_by(Booking.created_at.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        result = await self.session.execute(query)
        bookings = list(result.scalars().all())

        total = await self.session.scalar(
            select(func.count(Booking.id)).where(*filters)
        )
        return bookings, total or 0


class UserStore:
    """User lookups and reward balance updates"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_id(self, user_id: UUID) -> Optional[User]:
        return await self.session.get(User, user_id)

    async def increment_reward_points(self, user_id: UUID, delta: int) -> bool:
        result = await self.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(reward_points=User.reward_points + delta)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
