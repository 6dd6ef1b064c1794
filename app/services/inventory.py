"""
Inventory ledger: per-tour slot reservation.

Both operations are one conditional UPDATE each, so capacity can never go
below zero even when many requests race for the last slot.
"""

from uuid import UUID
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import CapacityExceededError, NotFoundError
from app.services.stores import TourStore

logger = logging.getLogger(__name__)


class InventoryLedger:
    """Thin wrapper enforcing atomic capacity changes on a tour"""

    def __init__(self, session: AsyncSession):
        self.tours = TourStore(session)

    async def reserve_slot(self, tour_id: UUID) -> None:
        """Take one slot; raises CapacityExceededError when none are left"""
        if await self.tours.apply_capacity_delta(tour_id, booked_delta=1, available_delta=-1):
            logger.info(f"Reserved slot on tour {tour_id}")
            return

        if not await self.tours.exists(tour_id):
            raise NotFoundError("Tour package", tour_id)
        logger.warning(f"No slots left on tour {tour_id}")
        raise CapacityExceededError(tour_id)

    async def release_slot(self, tour_id: UUID) -> None:
        """Give one slot back"""
        if await self.tours.apply_capacity_delta(tour_id, booked_delta=-1, available_delta=1):
            logger.info(f"Released slot on tour {tour_id}")
            return

        if not await self.tours.exists(tour_id):
            raise NotFoundError("Tour package", tour_id)

        # total_booked is already zero; still hand the slot back
        await self.tours.apply_capacity_delta(tour_id, booked_delta=0, available_delta=1)
        logger.warning(f"Released slot on tour {tour_id} with no booked count to decrement")
