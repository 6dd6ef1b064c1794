"""
Custom application exceptions
"""

from typing import Optional, Dict, Any


class TravelTourException(Exception):
    """Base exception for the booking platform"""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


class AuthenticationError(TravelTourException):
    """Authentication related errors"""

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="AUTH_ERROR",
            status_code=401,
            details=details
        )


class ForbiddenError(TravelTourException):
    """Requesting user may not act on the resource"""

    def __init__(self, message: str = "Access denied", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="FORBIDDEN",
            status_code=403,
            details=details
        )


class NotFoundError(TravelTourException):
    """Resource not found errors"""

    def __init__(self, resource: str, identifier: Any = None, message: Optional[str] = None):
        if message is None:
            message = f"{resource} not found"
            if identifier:
                message = f"{resource} with id {identifier} not found"
        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=404,
            details={"resource": resource}
        )


class ValidationError(TravelTourException):
    """Validation errors"""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=400,
            details=details
        )


class CapacityExceededError(TravelTourException):
    """Tour has no slots left"""

    def __init__(self, tour_id: Any = None):
        details = {"tour_id": str(tour_id)} if tour_id else {}
        super().__init__(
            message="Tour is fully booked",
            code="CAPACITY_EXCEEDED",
            status_code=409,
            details=details
        )


class PaymentFailedError(TravelTourException):
    """Payment gateway reported a failed charge"""

    def __init__(self, message: str = "Payment processing failed", error_detail: Optional[str] = None):
        super().__init__(
            message=message,
            code="PAYMENT_FAILED",
            status_code=402,
            details={"error": error_detail} if error_detail else {}
        )


class InvalidStateError(TravelTourException):
    """Booking is not in a state that allows the requested transition"""

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(
            message=message,
            code="INVALID_STATE",
            status_code=409,
            details={"current_status": current_status} if current_status else {}
        )


class RateLimitError(TravelTourException):
    """Rate limit exceeded error"""

    def __init__(self, limit: int, window: int):
        super().__init__(
            message=f"Rate limit exceeded. Max {limit} requests per {window} seconds",
            code="RATE_LIMIT_EXCEEDED",
            status_code=429,
            details={"limit": limit, "window": window}
        )


class ExternalServiceError(TravelTourException):
    """External service error"""

    def __init__(self, service: str, message: str = None, details: Optional[Dict] = None):
        super().__init__(
            message=message or f"External service {service} is unavailable",
            code="EXTERNAL_SERVICE_ERROR",
            status_code=503,
            details={"service": service, **(details or {})}
        )
