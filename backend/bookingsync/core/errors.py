"""Error taxonomy shared by the scheduling core and the HTTP layer."""

from __future__ import annotations

from typing import Any, Optional


class BookingSyncError(Exception):
    """Base error carrying a stable code and the HTTP status it maps to."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(BookingSyncError):
    code = "VALIDATION_ERROR"
    status_code = 400


class InvalidRange(ValidationError):
    code = "INVALID_RANGE"


class InvalidDuration(ValidationError):
    code = "INVALID_DURATION"


class NotFoundError(BookingSyncError):
    code = "NOT_FOUND"
    status_code = 404


class BookingNotFoundError(NotFoundError):
    code = "BOOKING_NOT_FOUND"


class ConflictError(BookingSyncError):
    code = "CONFLICT"
    status_code = 409


class ExternalServiceError(BookingSyncError):
    code = "EXTERNAL_SERVICE_ERROR"
    status_code = 503

    def __init__(
        self,
        message: str,
        service: str = "Google Calendar",
        details: Optional[dict[str, Any]] = None,
        status: Optional[int] = None,
    ):
        super().__init__(message, {"service": service, **(details or {})})
        self.service = service
        self.status = status


class RateLimitError(ExternalServiceError):
    code = "RATE_LIMIT_ERROR"
    status_code = 429

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        service: str = "Google Calendar",
    ):
        super().__init__(message, service=service, details={"retry_after": retry_after}, status=429)
        self.retry_after = retry_after


class ConfigurationError(BookingSyncError):
    code = "CONFIGURATION_ERROR"
    status_code = 500
