"""
Reconciliation of inbound gateway callbacks against stored orders.

Each delivery is handled in a single pass with no retries. Whatever
happens, exactly one webhook log row is written for it, and the caller
always gets a body back instead of a transport error.
"""
import secrets
import string
import time
from datetime import datetime
from typing import Any, Dict, Optional

import structlog
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from school_payments.config import Settings
from school_payments.core.exceptions import (
    OrderNotFoundError,
    PaymentServiceError,
    WebhookProcessingError,
)
from school_payments.core.money import to_minor_units
from school_payments.database.models import Order, utcnow
from school_payments.database.stores import (
    OrderStatusStore,
    OrderStore,
    WebhookLogStore,
    as_utc,
)
from school_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

WEBHOOK_ID_ALPHABET = string.ascii_lowercase + string.digits


def map_status(status: Any) -> str:
    """
    Map the gateway status vocabulary onto ``pending | success | failed``.

    Numbers: 1 is success, 0 is failed, anything else pending. Strings are
    matched case-insensitively. Booleans and anything unrecognised are pending.
    """
    if isinstance(status, bool):
        return "pending"
    if isinstance(status, (int, float)):
        if status == 1:
            return "success"
        if status == 0:
            return "failed"
        return "pending"
    if isinstance(status, str):
        normalized = status.lower()
        if normalized in ("success", "completed"):
            return "success"
        if normalized in ("failed", "failure"):
            return "failed"
    return "pending"


class WebhookOrderInfo(BaseModel):
    """``order_info`` block of a gateway callback. Every field is optional."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    order_id: Optional[str] = None
    order_amount: Any = None
    transaction_amount: Any = None
    status: Any = None
    payment_mode: Optional[str] = None
    payment_details: Optional[str] = None
    bank_reference: Optional[str] = None
    payment_message: Optional[str] = None
    error_message: Optional[str] = None
    payment_time: Optional[datetime] = None


class WebhookReconciler:
    """
    Applies gateway callbacks to the status store.

    Features:
    - Status vocabulary mapping
    - Atomic status upsert (last write wins, optional payment_time guard)
    - Audit log row for every delivery
    """

    def __init__(
        self,
        settings: Settings,
        order_store: Optional[OrderStore] = None,
        status_store: Optional[OrderStatusStore] = None,
        log_store: Optional[WebhookLogStore] = None,
    ):
        self.settings = settings
        self.order_store = order_store or OrderStore()
        self.status_store = status_store or OrderStatusStore()
        self.log_store = log_store or WebhookLogStore()

    @staticmethod
    def generate_webhook_id() -> str:
        """Generate ``WEBHOOK_<epoch ms>_<9 alnum>``."""
        suffix = "".join(secrets.choice(WEBHOOK_ID_ALPHABET) for _ in range(9))
        return f"WEBHOOK_{int(time.time() * 1000)}_{suffix}"

    @staticmethod
    def _parse_order_info(payload: Any) -> WebhookOrderInfo:
        if not isinstance(payload, dict) or payload.get("order_info") is None:
            raise WebhookProcessingError("Invalid webhook payload: missing order_info")
        order_info = payload["order_info"]
        if not isinstance(order_info, dict):
            raise WebhookProcessingError("Invalid webhook payload: order_info must be an object")
        return WebhookOrderInfo.model_validate(order_info)

    @staticmethod
    def _build_status_values(info: WebhookOrderInfo, order: Order) -> Dict[str, Any]:
        """Apply the field fallbacks. Presence is checked with ``is None``."""
        if info.order_amount is not None:
            order_amount_cents = to_minor_units(info.order_amount)
        else:
            order_amount_cents = order.amount_cents

        if info.transaction_amount is not None:
            transaction_amount_cents = to_minor_units(info.transaction_amount)
        elif info.order_amount is not None:
            transaction_amount_cents = order_amount_cents
        else:
            transaction_amount_cents = order.amount_cents

        return {
            "order_amount_cents": order_amount_cents,
            "transaction_amount_cents": transaction_amount_cents,
            "payment_mode": info.payment_mode if info.payment_mode is not None else "unknown",
            "payment_details": info.payment_details if info.payment_details is not None else "",
            "bank_reference": info.bank_reference if info.bank_reference is not None else "",
            "payment_message": info.payment_message if info.payment_message is not None else "",
            "status": map_status(info.status),
            "error_message": info.error_message if info.error_message is not None else "",
            "payment_time": (
                as_utc(info.payment_time) if info.payment_time is not None else utcnow()
            ),
        }

    async def process_webhook(self, payload: Any, db: AsyncSession) -> Dict[str, Any]:
        """
        Reconcile one gateway callback.

        Args:
            payload: Decoded request body, stored verbatim in the log
            db: Database session

        Returns:
            Dict[str, Any]: ``{success, message, webhook_id}`` and, on
            failure, ``error``
        """
        start_time = time.monotonic()
        webhook_id = self.generate_webhook_id()
        log = logger.bind(webhook_id=webhook_id)
        log.info("webhook_processing_started")

        try:
            info = self._parse_order_info(payload)
            if info.order_id is None:
                raise WebhookProcessingError(
                    "Invalid webhook payload: missing order_info.order_id"
                )

            order = await self.order_store.get_by_collect_id(db, info.order_id)
            if order is None:
                raise OrderNotFoundError(f"Order not found for collect_id: {info.order_id}")

            values = self._build_status_values(info, order)
            applied = await self.status_store.upsert(
                db,
                order.id,
                values,
                only_if_newer=self.settings.status_update_if_newer,
            )
            await self.log_store.append(
                db, webhook_id=webhook_id, payload=payload, status="processed"
            )
            await db.commit()

        except Exception as e:
            error = e.message if isinstance(e, PaymentServiceError) else str(e)
            await db.rollback()
            await self.log_store.append(
                db, webhook_id=webhook_id, payload=payload, status="failed", error=error
            )
            await db.commit()

            metrics.record_webhook_event("failed", time.monotonic() - start_time)
            log.error("webhook_processing_failed", error=error, error_type=type(e).__name__)
            return {
                "success": False,
                "message": "Webhook processing failed",
                "error": error,
                "webhook_id": webhook_id,
            }

        metrics.record_webhook_event("processed", time.monotonic() - start_time)
        log.info(
            "webhook_processed",
            order_id=str(order.id),
            status=values["status"],
            applied=applied,
        )
        return {
            "success": True,
            "message": "Webhook processed successfully",
            "webhook_id": webhook_id,
        }
