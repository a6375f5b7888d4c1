"""
Error taxonomy for the payment aggregator.

Every error carries a machine-readable code and the HTTP status the API
layer answers with. Webhook reconciliation errors never reach the
transport; they end up in the webhook log instead.
"""
from typing import Any, Dict, Optional


class PaymentServiceError(Exception):
    """Base exception for all service errors."""

    error_code = "payment_service_error"
    http_status = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        http_status: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        if http_status is not None:
            self.http_status = http_status
        self.metadata = kwargs

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses."""
        return {
            "success": False,
            "message": self.message,
            "error_code": self.error_code,
        }


class ValidationError(PaymentServiceError):
    """Malformed input rejected before it reaches the core."""

    error_code = "validation_error"
    http_status = 400


class PaymentCreationError(PaymentServiceError):
    """
    The gateway rejected the collect request or answered without an id.

    No order is persisted when this is raised.
    """

    error_code = "payment_creation_failed"
    http_status = 400


class OrderNotFoundError(PaymentServiceError):
    """No order matches the custom order id or gateway collect id."""

    error_code = "order_not_found"
    http_status = 404


class StatusCheckError(PaymentServiceError):
    """The live gateway status query failed or timed out."""

    error_code = "status_check_failed"
    http_status = 400


class WebhookProcessingError(PaymentServiceError):
    """Reconciliation of an inbound callback failed."""

    error_code = "webhook_processing_failed"
