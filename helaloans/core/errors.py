from typing import Optional


class HelaError(Exception):
    """Base class for errors the API maps onto structured HTTP responses."""

    status_code: int = 500
    code: str = "hela_error"

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(HelaError):
    """Bad input amount, phone number, reference or loan selection."""

    status_code = 400
    code = "validation_error"


class ConflictError(HelaError):
    """Duplicate transaction reference or an illegal status transition."""

    status_code = 409
    code = "conflict"


class NotFoundError(HelaError):
    status_code = 404
    code = "not_found"


class InvalidCallbackError(HelaError):
    """Webhook body that does not match any recognised gateway shape."""

    status_code = 400
    code = "invalid_callback"


class TransientStoreError(HelaError):
    """Backing store unavailable. Safe to retry."""

    status_code = 503
    code = "store_unavailable"


class ExternalGatewayError(HelaError):
    """The payment gateway rejected or failed a push-payment request."""

    status_code = 502
    code = "gateway_error"
