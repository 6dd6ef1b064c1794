"""
Booking and BookingTraveler models
"""

from sqlalchemy import Column, String, Text, ForeignKey, Enum, Numeric, DateTime, Integer, Boolean, Uuid
from sqlalchemy.orm import relationship
import enum

from app.models.base import BaseModel
from app.models.payment import PaymentMethod, PaymentStatus


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class TravelerGender(str, enum.Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class Booking(BaseModel):
    """
    One traveler group's reservation for one tour package.

    The pricing columns are a snapshot taken at creation time and are never
    recomputed from the live tour price.
    """
    __tablename__ = "bookings"

    booking_reference = Column(String(32), unique=True, nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    tour_package_id = Column(Uuid(as_uuid=True), ForeignKey("tour_packages.id"), nullable=False, index=True)
    status = Column(
        Enum(BookingStatus),
        default=BookingStatus.PENDING,
        nullable=False,
        index=True
    )

    # Travel dates
    start_date = Column(DateTime(timezone=True), nullable=False, index=True)
    end_date = Column(DateTime(timezone=True), nullable=False)

    # Pricing snapshot
    base_price = Column(Numeric(10, 2), nullable=False)
    discount_percent = Column(Numeric(5, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(10, 2), nullable=False, default=0)
    fee_amount = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")

    # Payment record
    payment_method = Column(Enum(PaymentMethod), nullable=False)
    payment_status = Column(
        Enum(PaymentStatus),
        default=PaymentStatus.PENDING,
        nullable=False
    )
    transaction_id = Column(String(255))
    payment_intent_id = Column(String(255))
    paid_at = Column(DateTime(timezone=True))
    refunded_at = Column(DateTime(timezone=True))
    payment_refund_amount = Column(Numeric(10, 2))
    refund_reason = Column(String(500))

    special_requests = Column(Text)
    notes = Column(Text)
    cancellation_policy = Column(Text, nullable=False)

    # Cancellation
    cancellation_reason = Column(String(500))
    cancelled_at = Column(DateTime(timezone=True))
    refund_amount = Column(Numeric(10, 2), nullable=False, default=0)
    refund_percentage = Column(Integer)
    refund_eligibility = Column(Boolean, nullable=False, default=True)

    # Relationships
    user = relationship("User", back_populates="bookings")
    tour_package = relationship("TourPackage", back_populates="bookings")
    travelers = relationship(
        "BookingTraveler",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingTraveler.position",
        lazy="selectin"
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (BookingStatus.CANCELLED, BookingStatus.COMPLETED)

    def __repr__(self):
        return f"<Booking(id={self.id}, ref={self.booking_reference}, status={self.status}, amount={self.total_amount})>"


class BookingTraveler(BaseModel):
    """
    Traveler listed on a booking, kept in submission order
    """
    __tablename__ = "booking_travelers"

    booking_id = Column(Uuid(as_uuid=True), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(30), nullable=False)
    age = Column(Integer, nullable=False)
    gender = Column(Enum(TravelerGender), nullable=False)
    passport_number = Column(String(50))
    nationality = Column(String(100))
    dietary_requirements = Column(String(500))

    # Relationships
    booking = relationship("Booking", back_populates="travelers")

    def __repr__(self):
        return f"<BookingTraveler(booking_id={self.booking_id}, name={self.name})>"
