"""SQLAlchemy database models for the payment aggregator."""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Timezone-aware current time used for column defaults."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Order(Base):
    """
    Payment collection requests created against the gateway.

    Written once after the gateway confirms the collect request and
    never updated afterwards.
    """

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id: Mapped[str] = mapped_column(String(64), nullable=False)
    trustee_id: Mapped[str] = mapped_column(String(64), nullable=False)
    student_info: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False)
    gateway_name: Mapped[str] = mapped_column(String(64), nullable=False)
    custom_order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    collect_id: Mapped[str] = mapped_column(String(128), nullable=False)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    callback_url: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="positive_order_amount"),
        Index("idx_orders_custom_order_id", "custom_order_id", unique=True),
        Index("idx_orders_collect_id", "collect_id"),
        Index("idx_orders_school_id", "school_id"),
        Index("idx_orders_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation of Order."""
        return (
            f"<Order(id={self.id}, custom_order_id={self.custom_order_id}, "
            f"collect_id={self.collect_id}, amount_cents={self.amount_cents})>"
        )


class OrderStatus(Base):
    """
    Latest known settlement outcome for an order.

    At most one row per order: ``collect_id`` references ``orders.id``
    (not the gateway collect id) and is unique, so every write is an
    upsert keyed on it.
    """

    __tablename__ = "order_statuses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    collect_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    order_amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    payment_mode: Mapped[str] = mapped_column(String(64), nullable=False, default="unknown")
    payment_details: Mapped[str] = mapped_column(Text, nullable=False, default="")
    bank_reference: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    payment_message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    error_message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    payment_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'success', 'failed')",
            name="valid_order_status",
        ),
        Index("idx_order_statuses_collect_id", "collect_id", unique=True),
        Index("idx_order_statuses_status", "status"),
        Index("idx_order_statuses_payment_time", "payment_time"),
    )

    def __repr__(self) -> str:
        """String representation of OrderStatus."""
        return f"<OrderStatus(collect_id={self.collect_id}, status={self.status})>"


class WebhookLog(Base):
    """
    Append-only audit trail of inbound gateway callbacks.

    One row per delivery attempt, whether or not it reconciled.
    """

    __tablename__ = "webhook_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    webhook_id: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[Any] = mapped_column(JSONType, nullable=True)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('processed', 'failed')",
            name="valid_webhook_status",
        ),
        Index("idx_webhook_logs_webhook_id", "webhook_id", unique=True),
        Index("idx_webhook_logs_received_at", "received_at"),
        Index("idx_webhook_logs_status", "status"),
    )

    def __repr__(self) -> str:
        """String representation of WebhookLog."""
        return f"<WebhookLog(webhook_id={self.webhook_id}, status={self.status})>"
