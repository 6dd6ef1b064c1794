"""
Database models
"""

from app.models.user import User, UserRole
from app.models.tour import TourPackage
from app.models.booking import Booking, BookingTraveler, BookingStatus, TravelerGender
from app.models.payment import PaymentMethod, PaymentStatus
from app.models.saga_state import SagaState, SagaStateStatus

__all__ = [
    "User",
    "UserRole",
    "TourPackage",
    "Booking",
    "BookingTraveler",
    "BookingStatus",
    "TravelerGender",
    "PaymentMethod",
    "PaymentStatus",
    "SagaState",
    "SagaStateStatus"
]
