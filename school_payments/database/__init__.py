"""Database package for the payment aggregator."""
from .connection import close_db, get_db, init_db
from .models import Base, Order, OrderStatus, WebhookLog
from .stores import OrderStatusStore, OrderStore, WebhookLogStore

__all__ = [
    "Base",
    "Order",
    "OrderStatus",
    "WebhookLog",
    "OrderStore",
    "OrderStatusStore",
    "WebhookLogStore",
    "get_db",
    "init_db",
    "close_db",
]
