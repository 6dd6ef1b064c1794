"""
Production monitoring and metrics for the booking system
"""

import time
import logging
from contextlib import asynccontextmanager

from prometheus_client import Counter, Histogram

from app.core.exceptions import TravelTourException

logger = logging.getLogger(__name__)

BOOKINGS_CREATED = Counter(
    "bookings_created_total",
    "Bookings confirmed after a successful payment"
)
BOOKINGS_CANCELLED = Counter(
    "bookings_cancelled_total",
    "Bookings cancelled by their owner or an admin"
)
BOOKING_FAILURES = Counter(
    "booking_failures_total",
    "Booking operations that ended in an error",
    ["operation", "reason"]
)
BOOKING_DURATION = Histogram(
    "booking_operation_duration_seconds",
    "Booking operation duration",
    ["operation"]
)

SLOW_OPERATION_SECONDS = 5.0


class MetricsCollector:
    """Prometheus-backed metrics collector for booking operations"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def track_booking_operation(self, operation_type: str = "create"):
        """Context manager to time a booking operation and count its failures"""
        start_time = time.time()

        try:
            yield
        except Exception as e:
            duration = time.time() - start_time
            reason = e.code if isinstance(e, TravelTourException) else type(e).__name__
            BOOKING_FAILURES.labels(operation=operation_type, reason=reason).inc()
            BOOKING_DURATION.labels(operation=operation_type).observe(duration)
            self.logger.error(f"Failed {operation_type} operation: {e} (duration: {duration:.2f}s)")
            raise

        duration = time.time() - start_time
        BOOKING_DURATION.labels(operation=operation_type).observe(duration)
        if duration > SLOW_OPERATION_SECONDS:
            self.logger.warning(f"Slow {operation_type} operation: {duration:.2f}s")

    def record_booking_created(self):
        BOOKINGS_CREATED.inc()

    def record_booking_cancelled(self):
        BOOKINGS_CANCELLED.inc()


# Global instances
metrics_collector = MetricsCollector()
