"""
Data access for orders, order statuses and the webhook log.

Every read and write goes straight to the database; nothing is cached.
Stores never commit: the caller owns the transaction.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from school_payments.core.money import from_minor_units
from school_payments.database.models import Order, OrderStatus, WebhookLog, utcnow

logger = structlog.get_logger(__name__)

UPSERT_FIELDS = (
    "order_amount_cents",
    "transaction_amount_cents",
    "payment_mode",
    "payment_details",
    "bank_reference",
    "payment_message",
    "status",
    "error_message",
    "payment_time",
)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops the offset on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """Serialize a stored timestamp as ISO 8601 UTC."""
    value = as_utc(value)
    return value.isoformat() if value is not None else None


def status_to_dict(status: Optional[OrderStatus]) -> Optional[Dict[str, Any]]:
    """
    Serialize a status row for API bodies.

    Args:
        status: Stored status row, or None when the order has none

    Returns:
        Optional[Dict[str, Any]]: Wire representation with amounts as numbers
    """
    if status is None:
        return None
    return {
        "id": str(status.id),
        "collect_id": str(status.collect_id),
        "order_amount": from_minor_units(status.order_amount_cents),
        "transaction_amount": from_minor_units(status.transaction_amount_cents),
        "payment_mode": status.payment_mode,
        "payment_details": status.payment_details,
        "bank_reference": status.bank_reference,
        "payment_message": status.payment_message,
        "status": status.status,
        "error_message": status.error_message,
        "payment_time": isoformat(status.payment_time),
        "updated_at": isoformat(status.updated_at),
    }


class OrderStore:
    """Durable record of payment requests created by this service."""

    async def create(
        self,
        db: AsyncSession,
        *,
        school_id: str,
        trustee_id: str,
        student_info: Dict[str, Any],
        gateway_name: str,
        custom_order_id: str,
        collect_id: str,
        amount_cents: int,
        callback_url: str,
    ) -> Order:
        """
        Insert a new order and flush it so its id is available.

        Returns:
            Order: The persisted order
        """
        order = Order(
            school_id=school_id,
            trustee_id=trustee_id,
            student_info=student_info,
            gateway_name=gateway_name,
            custom_order_id=custom_order_id,
            collect_id=collect_id,
            amount_cents=amount_cents,
            callback_url=callback_url,
            created_at=utcnow(),
        )
        db.add(order)
        await db.flush()

        logger.info(
            "order_created",
            order_id=str(order.id),
            custom_order_id=custom_order_id,
            collect_id=collect_id,
        )
        return order

    async def get_by_custom_order_id(
        self, db: AsyncSession, custom_order_id: str
    ) -> Optional[Order]:
        """Look up an order by its public order id."""
        result = await db.execute(
            select(Order).where(Order.custom_order_id == custom_order_id)
        )
        return result.scalar_one_or_none()

    async def get_by_collect_id(self, db: AsyncSession, collect_id: str) -> Optional[Order]:
        """Look up an order by the gateway collect request id."""
        result = await db.execute(
            select(Order)
            .where(Order.collect_id == collect_id)
            .order_by(Order.created_at)
            .limit(1)
        )
        return result.scalars().first()


class OrderStatusStore:
    """Latest known settlement outcome per order, written by upsert only."""

    async def upsert(
        self,
        db: AsyncSession,
        order_id: uuid.UUID,
        values: Dict[str, Any],
        only_if_newer: bool = False,
    ) -> bool:
        """
        Insert or replace the status row for an order in one statement.

        Args:
            db: Database session
            order_id: Internal id of the owning order
            values: Column values, keys from ``UPSERT_FIELDS``
            only_if_newer: Skip the replace when the stored ``payment_time``
                is later than the incoming one

        Returns:
            bool: False when the guard skipped the write
        """
        dialect_name = db.get_bind().dialect.name
        if dialect_name == "postgresql":
            insert = postgresql.insert
        elif dialect_name == "sqlite":
            insert = sqlite.insert
        else:
            raise NotImplementedError(f"Status upsert not supported on {dialect_name}")

        row = {field: values[field] for field in UPSERT_FIELDS}
        now = utcnow()
        stmt = insert(OrderStatus).values(
            id=uuid.uuid4(), collect_id=order_id, updated_at=now, **row
        )
        table = OrderStatus.__table__
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.collect_id],
            set_={**{field: stmt.excluded[field] for field in UPSERT_FIELDS}, "updated_at": now},
            where=(
                table.c.payment_time <= stmt.excluded.payment_time if only_if_newer else None
            ),
        )
        result = await db.execute(stmt)
        applied = result.rowcount != 0

        if not applied:
            logger.info(
                "order_status_update_skipped",
                order_id=str(order_id),
                payment_time=isoformat(values["payment_time"]),
            )
        return applied

    async def get_for_order(
        self, db: AsyncSession, order_id: uuid.UUID
    ) -> Optional[OrderStatus]:
        """Fetch the status row for an order, if any."""
        result = await db.execute(
            select(OrderStatus).where(OrderStatus.collect_id == order_id)
        )
        return result.scalar_one_or_none()


class WebhookLogStore:
    """Append-only audit trail of inbound callbacks."""

    async def append(
        self,
        db: AsyncSession,
        *,
        webhook_id: str,
        payload: Any,
        status: str,
        error: Optional[str] = None,
    ) -> WebhookLog:
        """Add one log row to the session. Never updates existing rows."""
        entry = WebhookLog(
            webhook_id=webhook_id,
            payload=payload,
            received_at=utcnow(),
            status=status,
            error=error,
        )
        db.add(entry)
        await db.flush()
        return entry
