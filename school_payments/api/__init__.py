"""FastAPI application and routes."""
from .main import app
from .schemas import (
    CreatePaymentRequest,
    CreatePaymentResponse,
    TransactionListResponse,
    TransactionStatusResponse,
    WebhookResponse,
)

__all__ = [
    "app",
    "CreatePaymentRequest",
    "CreatePaymentResponse",
    "TransactionListResponse",
    "TransactionStatusResponse",
    "WebhookResponse",
]
