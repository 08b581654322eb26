from datetime import datetime
from enum import Enum

from fastapi import HTTPException, status
from pydantic import BaseModel, Field


class AppException:
    """Class-based exception handlers for common HTTP status codes."""

    @staticmethod
    def raise_400(message: str = "Bad Request"):
        """Raise a 400 Bad Request exception."""
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)

    @staticmethod
    def raise_401(message: str = "Unauthorized"):
        """Raise a 401 Unauthorized exception."""
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=message)

    @staticmethod
    def raise_403(message: str = "Forbidden"):
        """Raise a 403 Forbidden exception."""
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=message)

    @staticmethod
    def raise_404(message: str = "Not Found"):
        """Raise a 404 Not Found exception."""
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=message)

    @staticmethod
    def raise_409(message: str = "Conflict"):
        """Raise a 409 Conflict exception."""
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=message)

    @staticmethod
    def raise_503(message: str = "Service Unavailable"):
        """Raise a 503 Service Unavailable exception."""
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=message)


# ============ Notification pipeline errors ============

class NotificationErrorType(str, Enum):
    validation_error = "VALIDATION_ERROR"
    recipient_resolution = "RECIPIENT_RESOLUTION"
    token_validation = "TOKEN_VALIDATION"
    delivery_failure = "DELIVERY_FAILURE"
    timeout = "TIMEOUT"
    api_error = "API_ERROR"


RETRYABLE_ERROR_TYPES = frozenset({
    NotificationErrorType.delivery_failure,
    NotificationErrorType.timeout,
    NotificationErrorType.api_error,
})


class NotificationError(BaseModel):
    """Structured error accumulated on pipeline results instead of being raised."""
    type: NotificationErrorType
    message: str
    stage: str | None = Field(None, description="Pipeline stage: primary, fallback, dispatch, retry, ...")
    retryable: bool = False
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def of(cls, error_type: NotificationErrorType, message: str, stage: str | None = None) -> "NotificationError":
        return cls(type=error_type, message=message, stage=stage, retryable=error_type in RETRYABLE_ERROR_TYPES)


class PushGatewayError(Exception):
    """The push provider rejected a whole batch (transport error, non-2xx, malformed body)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class MaintenanceAlreadyRunningError(Exception):
    """A token maintenance run is already in flight in this process."""
