"""
Health check endpoints
"""

import logging

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text

from app.core.database import get_session
from app.core.redis import redis_manager
from app.schemas.response import HealthResponse

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/live", response_model=HealthResponse)
async def liveness() -> HealthResponse:
    """
    Kubernetes liveness probe
    """
    return HealthResponse(status="alive", services={"api": "wanderlust-tours-api"})


@router.get("/ready", response_model=HealthResponse)
async def readiness(response: Response, db: AsyncSession = Depends(get_session)) -> HealthResponse:
    """
    Kubernetes readiness probe. Redis only backs rate limiting, which fails
    open, so it is reported but does not gate readiness.
    """
    services = {"database": "down", "redis": "down"}

    try:
        result = await db.execute(text("SELECT 1"))
        if result.scalar() == 1:
            services["database"] = "up"
    except Exception as e:
        logger.warning(f"Database readiness check failed: {e}")

    try:
        client = await redis_manager.get_client()
        await client.ping()
        services["redis"] = "up"
    except Exception as e:
        logger.warning(f"Redis readiness check failed: {e}")

    if services["database"] != "up":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not ready", services=services)
    return HealthResponse(status="ready", services=services)
