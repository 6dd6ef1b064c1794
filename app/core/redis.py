"""
Redis connection management and per-user rate limiting
"""

import redis.asyncio as redis
from typing import Optional
import logging
import asyncio
import time

from fastapi import Depends

from app.config import settings
from app.core.exceptions import RateLimitError
from app.core.security import get_current_user
from app.models.user import User

logger = logging.getLogger(__name__)

# Global Redis client
redis_client: Optional[redis.Redis] = None


async def init_redis():
    """
    Initialize Redis connection
    """
    global redis_client
    try:
        redis_client = redis.from_url(
            settings.REDIS_URL,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            decode_responses=True
        )
        # Test connection
        await redis_client.ping()
        logger.info("Redis connection established")
    except Exception as e:
        logger.error(f"Failed to connect to Redis: {e}")
        raise


async def close_redis():
    """
    Close Redis connection
    """
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
        logger.info("Redis connection closed")


async def get_redis() -> redis.Redis:
    """
    Get Redis client
    """
    if not redis_client:
        await init_redis()
    return redis_client


class CircuitBreaker:
    """
    Stops calling Redis for ``recovery_timeout`` seconds after repeated failures
    """
    def __init__(self, failure_threshold=5, recovery_timeout=60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout

        self.failure_count = 0
        self.last_failure_time = None
        self.state = "CLOSED"  # CLOSED, OPEN, HALF_OPEN

        self._lock = asyncio.Lock()

    async def is_open(self) -> bool:
        async with self._lock:
            if self.state == "OPEN":
                if time.time() - self.last_failure_time >= self.recovery_timeout:
                    self.state = "HALF_OPEN"
                    return False
                return True
            return False

    async def record_success(self):
        async with self._lock:
            self.failure_count = 0
            self.state = "CLOSED"

    async def record_failure(self):
        async with self._lock:
            self.failure_count += 1
            self.last_failure_time = time.time()

            if self.state == "HALF_OPEN" or self.failure_count >= self.failure_threshold:
                self.state = "OPEN"

    async def call(self, func, *args, **kwargs):
        if await self.is_open():
            raise ConnectionError("Circuit breaker is open")

        try:
            result = await func(*args, **kwargs)
            await self.record_success()
            return result
        except Exception:
            await self.record_failure()
            raise


class RedisManager:
    """
    Redis access for rate limiting, guarded by a circuit breaker
    """

    def __init__(self, client: Optional[redis.Redis] = None):
        self.client = client
        self.circuit_breaker = CircuitBreaker()
        self.logger = logging.getLogger(__name__)

    async def get_client(self) -> redis.Redis:
        if not self.client:
            self.client = await get_redis()
        return self.client

    async def is_rate_limited(self, key: str, limit: int, window: int = 60) -> tuple[bool, int]:
        """
        Fixed-window counter: INCR the window key and set its expiry on first use.

        Returns:
            Tuple of (is_limited, current_count)
        """
        rate_key = f"rate:{key}:{int(time.time()) // window}"

        try:
            current_count = await self.circuit_breaker.call(self._increment, rate_key, window)
        except Exception as e:
            self.logger.error(f"Error checking rate limit for {key}: {e}")
            return False, 0  # Fail open for rate limiting

        return current_count > limit, current_count

    async def _increment(self, rate_key: str, window: int) -> int:
        client = await self.get_client()
        async with client.pipeline(transaction=True) as pipe:
            pipe.incr(rate_key)
            pipe.expire(rate_key, window + 1)
            count, _ = await pipe.execute()
        return int(count)


# Create global Redis manager
redis_manager = RedisManager()


class RateLimiter:
    """
    Per-user rate limit dependency for API endpoints
    """

    def __init__(self, scope: str, max_requests: int, window: int = 60, manager: Optional[RedisManager] = None):
        self.scope = scope
        self.max_requests = max_requests
        self.window = window
        self.manager = manager or redis_manager

    async def __call__(self, current_user: User = Depends(get_current_user)):
        if not settings.RATE_LIMIT_ENABLED:
            return

        is_limited, count = await self.manager.is_rate_limited(
            f"user:{current_user.id}:{self.scope}", self.max_requests, self.window
        )
        if is_limited:
            logger.warning(f"Rate limit hit for user {current_user.id} on {self.scope} ({count} requests)")
            raise RateLimitError(self.max_requests, self.window)


booking_rate_limiter = RateLimiter("bookings", settings.RATE_LIMIT_BOOKING_PER_MINUTE)
