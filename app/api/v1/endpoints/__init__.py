"""
API endpoints module
"""

from . import bookings, health

__all__ = [
    "bookings",
    "health"
]
