"""
Tour package model
"""

from sqlalchemy import Column, String, Integer, Text, Boolean, Numeric, ForeignKey, Uuid, CheckConstraint
from sqlalchemy.orm import relationship

from app.models.base import BaseModel


class TourPackage(BaseModel):
    """
    Sellable tour offering with a finite number of slots
    """
    __tablename__ = "tour_packages"
    __table_args__ = (
        CheckConstraint("available_slots >= 0", name="ck_tour_available_slots_non_negative"),
        CheckConstraint("total_booked >= 0", name="ck_tour_total_booked_non_negative"),
        CheckConstraint("discount >= 0 AND discount <= 100", name="ck_tour_discount_range"),
    )

    title = Column(String(100), nullable=False, index=True)
    description = Column(Text)
    destination = Column(String(255), nullable=False, index=True)
    country = Column(String(100))
    duration_days = Column(Integer, nullable=False, default=1)
    price = Column(Numeric(10, 2), nullable=False)
    discount = Column(Numeric(5, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")
    cancellation_policy = Column(Text, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Capacity counters, mutated only through the inventory ledger
    total_booked = Column(Integer, nullable=False, default=0)
    available_slots = Column(Integer, nullable=False)

    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"))

    # Relationships
    bookings = relationship("Booking", back_populates="tour_package")

    def __repr__(self):
        return f"<TourPackage(id={self.id}, title={self.title}, available={self.available_slots})>"
