"""Error taxonomy for the checkout API.

Every error maps to one HTTP status and renders as
``{"error": <code>, "message": ..., "timestamp": ...}`` plus any extra
fields the raiser attached.
"""

from datetime import datetime, timezone
from typing import Any

from fastapi import status


class CheckoutError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error: str = "CheckoutError"

    def __init__(
        self,
        message: str,
        *,
        headers: dict[str, str] | None = None,
        **extra: Any,
    ):
        super().__init__(message)
        self.message = message
        self.headers = headers
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        body = {
            "error": self.error,
            "message": self.message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        body.update(self.extra)
        return body


class Unauthorized(CheckoutError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Unauthorized"


class Forbidden(CheckoutError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "Forbidden"


class InvalidRequest(CheckoutError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "InvalidRequest"


class RecordNotFound(CheckoutError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "RecordNotFound"


class InvalidState(CheckoutError):
    """Requested transition is not allowed from the record's current status."""

    status_code = status.HTTP_409_CONFLICT
    error = "InvalidState"


class EscrowNotMatured(CheckoutError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "EscrowNotMatured"


class PaymentDisputed(CheckoutError):
    status_code = status.HTTP_409_CONFLICT
    error = "PaymentDisputed"


class DisputeWindowClosed(CheckoutError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "DisputeWindowClosed"


class CaptureFailed(CheckoutError):
    """Gateway answered the capture call with a status other than COMPLETED."""

    status_code = status.HTTP_400_BAD_REQUEST
    error = "CaptureFailed"


class GatewayError(CheckoutError):
    """Payment gateway unreachable, rejected the call, or answered nonsense."""

    status_code = status.HTTP_502_BAD_GATEWAY
    error = "GatewayError"


class CorsRejected(CheckoutError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "CorsRejected"
