"""
Payment orchestration against the upstream gateway.

Create flow:
1. Validate amount
2. Generate custom order id
3. Sign and send collect request to the gateway
4. Persist the order only once the gateway returned a collect request id

Status flow:
1. Resolve the order by custom order id
2. Query the gateway live (bounded by the gateway timeout)
3. Combine with the locally stored status
"""
import secrets
import string
import time
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from school_payments.config import Settings
from school_payments.core.exceptions import (
    OrderNotFoundError,
    PaymentCreationError,
    StatusCheckError,
    ValidationError,
)
from school_payments.core.money import from_minor_units, to_minor_units
from school_payments.database.stores import OrderStatusStore, OrderStore, status_to_dict
from school_payments.integrations.gateway_client import GatewayClient, GatewayError
from school_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

ORDER_ID_ALPHABET = string.ascii_lowercase + string.digits


class PaymentOrchestrator:
    """
    Creates orders through the gateway and answers status checks.

    An order row exists only for collect requests the gateway accepted.
    """

    def __init__(
        self,
        settings: Settings,
        gateway_client: Optional[GatewayClient] = None,
        order_store: Optional[OrderStore] = None,
        status_store: Optional[OrderStatusStore] = None,
    ):
        """
        Initialize payment orchestrator.

        Args:
            settings: Service configuration
            gateway_client: Optional gateway client
            order_store: Optional order store
            status_store: Optional status store
        """
        self.settings = settings
        self.gateway_client = gateway_client or GatewayClient(settings)
        self.order_store = order_store or OrderStore()
        self.status_store = status_store or OrderStatusStore()

    @staticmethod
    def generate_custom_order_id() -> str:
        """
        Generate a public order id of the form ``ORDER_<epoch ms>_<9 alnum>``.

        Returns:
            str: New custom order id
        """
        suffix = "".join(secrets.choice(ORDER_ID_ALPHABET) for _ in range(9))
        return f"ORDER_{int(time.time() * 1000)}_{suffix}"

    @staticmethod
    def _validate_amount(amount: Any) -> int:
        """
        Validate the requested amount.

        Returns:
            int: Amount in minor units

        Raises:
            ValidationError: If the amount is not a positive number
        """
        try:
            amount_cents = to_minor_units(amount)
        except ValueError as e:
            raise ValidationError(str(e))
        if amount_cents <= 0:
            raise ValidationError("Amount must be positive")
        return amount_cents

    async def create_payment(
        self,
        amount: str,
        callback_url: str,
        student_info: Dict[str, Any],
        db: AsyncSession,
    ) -> Dict[str, Any]:
        """
        Create a collect request at the gateway and record the order.

        Args:
            amount: Requested amount as sent by the client (e.g. "1000")
            callback_url: Where the gateway redirects the payer
            student_info: ``{name, id, email}``
            db: Database session

        Returns:
            Dict[str, Any]: Identifiers of the new order and collect request

        Raises:
            ValidationError: If the amount is invalid
            PaymentCreationError: If the gateway rejects the request or
                answers without a collect request id
        """
        start_time = time.monotonic()
        amount_cents = self._validate_amount(amount)
        amount = str(amount).strip()
        custom_order_id = self.generate_custom_order_id()

        signed_payload = {
            "school_id": self.settings.school_id,
            "amount": amount,
            "callback_url": callback_url,
        }
        sign = self.gateway_client.sign(signed_payload)

        logger.info(
            "payment_creation_started",
            custom_order_id=custom_order_id,
            amount_cents=amount_cents,
        )

        try:
            response = await self.gateway_client.create_collect_request(
                signed_payload,
                sign,
                extra={"custom_order_id": custom_order_id, "student_info": student_info},
            )
        except GatewayError as e:
            metrics.record_payment_request("failed")
            logger.error(
                "payment_creation_failed",
                custom_order_id=custom_order_id,
                error_type=e.error_type.value,
                error_message=e.message,
            )
            raise PaymentCreationError(
                e.message,
                upstream_status=e.status_code,
                upstream_body=e.response_body,
            )

        collect_request_id = response.get("collect_request_id")
        if not collect_request_id:
            metrics.record_payment_request("failed")
            logger.error(
                "payment_creation_invalid_response",
                custom_order_id=custom_order_id,
                response_keys=sorted(response),
            )
            raise PaymentCreationError("Invalid response from payment gateway")

        order = await self.order_store.create(
            db,
            school_id=self.settings.school_id,
            trustee_id=response.get("trustee_id") or self.settings.default_trustee_id,
            student_info=student_info,
            gateway_name=self.settings.gateway_name,
            custom_order_id=custom_order_id,
            collect_id=str(collect_request_id),
            amount_cents=amount_cents,
            callback_url=callback_url,
        )
        await db.commit()

        duration = time.monotonic() - start_time
        metrics.record_payment_request("created", amount_cents)
        metrics.record_payment_duration(duration)

        logger.info(
            "payment_created",
            order_id=str(order.id),
            custom_order_id=custom_order_id,
            collect_request_id=str(collect_request_id),
            duration_seconds=duration,
        )

        return {
            "success": True,
            "message": "Payment request created successfully",
            "collect_request_id": str(collect_request_id),
            "collect_request_url": response.get("Collect_request_url"),
            "custom_order_id": custom_order_id,
            "order_id": str(order.id),
        }

    async def get_transaction_status(
        self, custom_order_id: str, db: AsyncSession
    ) -> Dict[str, Any]:
        """
        Report the stored status of an order next to the live gateway view.

        Args:
            custom_order_id: Public order id
            db: Database session

        Returns:
            Dict[str, Any]: Local status, stored status row and gateway body

        Raises:
            OrderNotFoundError: If no order has this id
            StatusCheckError: If the gateway query fails or times out
        """
        order = await self.order_store.get_by_custom_order_id(db, custom_order_id)
        if order is None:
            logger.warning("status_check_order_not_found", custom_order_id=custom_order_id)
            raise OrderNotFoundError("Order not found")

        sign = self.gateway_client.sign(
            {"school_id": self.settings.school_id, "collect_request_id": order.collect_id}
        )
        try:
            gateway_response = await self.gateway_client.get_collect_request_status(
                order.collect_id, self.settings.school_id, sign
            )
        except GatewayError as e:
            metrics.record_status_check("error")
            logger.error(
                "status_check_failed",
                custom_order_id=custom_order_id,
                collect_id=order.collect_id,
                error_type=e.error_type.value,
                error_message=e.message,
            )
            raise StatusCheckError(
                e.message,
                upstream_status=e.status_code,
                upstream_body=e.response_body,
            )

        order_status = await self.status_store.get_for_order(db, order.id)
        status = order_status.status if order_status is not None else "pending"
        metrics.record_status_check(status)

        logger.info(
            "status_check_completed",
            custom_order_id=custom_order_id,
            status=status,
        )

        return {
            "custom_order_id": order.custom_order_id,
            "collect_id": order.collect_id,
            "amount": from_minor_units(order.amount_cents),
            "status": status,
            "payment_details": status_to_dict(order_status),
            "gateway_response": gateway_response,
        }
