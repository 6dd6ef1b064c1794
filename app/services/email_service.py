"""
Email Service with SendGrid Integration
Booking confirmation and cancellation notices
"""

import asyncio
import logging
from typing import Dict, Optional

from jinja2 import Template
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import From, Mail

from app.config import settings
from app.models.booking import Booking

logger = logging.getLogger(__name__)


BOOKING_CONFIRMATION_TEMPLATE = Template("""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #2563eb;">Booking Confirmation</h2>
  <p>Hello {{ user_name }},</p>
  <p>Your booking has been confirmed! Here are the details:</p>
  <div style="background-color: #f3f4f6; padding: 20px; border-radius: 5px; margin: 20px 0;">
    <h3>Booking Details</h3>
    <p><strong>Booking Reference:</strong> {{ booking_reference }}</p>
    <p><strong>Tour:</strong> {{ tour_title }}</p>
    <p><strong>Destination:</strong> {{ destination }}</p>
    <p><strong>Travel Dates:</strong> {{ start_date }} - {{ end_date }}</p>
    <p><strong>Travelers:</strong> {{ traveler_count }}</p>
    <p><strong>Total Amount:</strong> {{ currency }} {{ total_amount }}</p>
  </div>
  <p>We'll send you more details about your tour closer to the departure date.</p>
  <p><a href="{{ booking_url }}">View your booking</a></p>
  <p>Happy travels!</p>
</div>
""")

BOOKING_CANCELLATION_TEMPLATE = Template("""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #dc2626;">Booking Cancelled</h2>
  <p>Hello {{ user_name }},</p>
  <p>Your booking has been cancelled. Here are the details:</p>
  <div style="background-color: #fef2f2; padding: 20px; border-radius: 5px; margin: 20px 0;">
    <h3>Cancellation Details</h3>
    <p><strong>Booking Reference:</strong> {{ booking_reference }}</p>
    <p><strong>Tour:</strong> {{ tour_title }}</p>
    <p><strong>Refund Amount:</strong> {{ currency }} {{ refund_amount }} ({{ refund_percentage }}%)</p>
    <p><strong>Cancellation Date:</strong> {{ cancelled_at }}</p>
  </div>
  <p>If you have any questions about the refund process, please contact our support team.</p>
</div>
""")


class EmailService:
    """Service for booking notification emails"""

    def __init__(self, api_key: Optional[str] = None, from_email: Optional[str] = None):
        self.api_key = settings.SENDGRID_API_KEY if api_key is None else api_key
        self.from_email = from_email or settings.FROM_EMAIL
        self.from_name = settings.FROM_NAME
        self.client = SendGridAPIClient(self.api_key) if self.api_key else None
        self.templates: Dict[str, Template] = {
            "booking_confirmation": BOOKING_CONFIRMATION_TEMPLATE,
            "booking_cancellation": BOOKING_CANCELLATION_TEMPLATE,
        }

    async def send_email(self, to_email: str, subject: str, template_name: str, context: Dict) -> bool:
        """Render a template and send it; raises when SendGrid rejects the message"""
        html_content = self.templates[template_name].render(**context)

        if self.client is None:
            logger.warning(f"Email service not configured. Would have sent '{subject}' to {to_email}")
            return True

        message = Mail(
            from_email=From(self.from_email, self.from_name),
            to_emails=to_email,
            subject=subject,
            html_content=html_content
        )

        # SendGrid's client is synchronous
        response = await asyncio.to_thread(self.client.send, message)
        logger.info(f"Email sent to {to_email}: {response.status_code}")
        return response.status_code in (200, 201, 202)

    def _booking_context(self, booking: Booking) -> Dict:
        return {
            "user_name": booking.user.full_name,
            "booking_reference": booking.booking_reference,
            "tour_title": booking.tour_package.title,
            "destination": booking.tour_package.destination,
            "start_date": booking.start_date.strftime("%d %b %Y"),
            "end_date": booking.end_date.strftime("%d %b %Y"),
            "traveler_count": len(booking.travelers),
            "currency": booking.currency,
            "total_amount": booking.total_amount,
            "booking_url": f"{settings.FRONTEND_URL}/bookings/{booking.id}",
        }

    async def send_booking_confirmation(self, booking: Booking) -> bool:
        """Booking must have user, tour_package and travelers loaded"""
        return await self.send_email(
            to_email=booking.user.email,
            subject=f"Booking Confirmation - {booking.booking_reference}",
            template_name="booking_confirmation",
            context=self._booking_context(booking)
        )

    async def send_booking_cancellation(self, booking: Booking) -> bool:
        context = {
            **self._booking_context(booking),
            "refund_amount": booking.refund_amount or 0,
            "refund_percentage": booking.refund_percentage or 0,
            "cancelled_at": booking.cancelled_at.strftime("%d %b %Y") if booking.cancelled_at else "",
        }
        return await self.send_email(
            to_email=booking.user.email,
            subject=f"Booking Cancelled - {booking.booking_reference}",
            template_name="booking_cancellation",
            context=context
        )
