"""
Reward accrual for confirmed bookings
"""

import math
from decimal import Decimal
from uuid import UUID
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import NotFoundError
from app.services.pricing import Number
from app.services.stores import UserStore

logger = logging.getLogger(__name__)


def points_for(total_amount: Number, rate: Number = None) -> int:
    """floor(total * rate); at the default 0.01 rate that is one point per 100 currency units"""
    rate = Decimal(str(settings.REWARD_POINTS_RATE if rate is None else rate))
    return math.floor(Decimal(str(total_amount)) * rate)


class RewardAccrual:
    """Credits loyalty points; there is no decrement path"""

    def __init__(self, session: AsyncSession):
        self.users = UserStore(session)

    async def credit_points(self, user_id: UUID, total_amount: Number) -> int:
        points = points_for(total_amount)
        if points <= 0:
            return 0

        if not await self.users.increment_reward_points(user_id, points):
            raise NotFoundError("User", user_id)

        logger.info(f"Credited {points} reward points to user {user_id}")
        return points
