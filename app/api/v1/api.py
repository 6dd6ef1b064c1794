"""
Main API Router
Aggregates all API endpoints for v1
"""

from fastapi import APIRouter
from app.api.v1.endpoints import bookings, health

api_router = APIRouter()

api_router.include_router(bookings.router, prefix="/bookings", tags=["bookings"])
api_router.include_router(health.router, prefix="/health", tags=["health"])
