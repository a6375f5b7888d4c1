"""
Reporting view over orders joined with their latest status.

Orders without a status row are reported as pending, with the order
amount as transaction amount and the creation time as payment time.
Filters and sorting apply to those derived values.
"""
import math
import time
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import ColumnElement, func, literal, select
from sqlalchemy.ext.asyncio import AsyncSession

from school_payments.core.exceptions import ValidationError
from school_payments.core.money import from_minor_units
from school_payments.database.models import Order, OrderStatus
from school_payments.database.stores import isoformat, status_to_dict
from school_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

# Public sort field -> column of the derived view
SORT_FIELDS = {
    "createdAt": "created_at",
    "created_at": "created_at",
    "payment_time": "payment_time",
    "status": "status",
    "order_amount": "order_amount_cents",
    "transaction_amount": "transaction_amount_cents",
    "custom_order_id": "custom_order_id",
    "collect_id": "collect_id",
    "school_id": "school_id",
    "gateway": "gateway_name",
}

SORT_DIRECTIONS = ("asc", "desc")


class TransactionQueryEngine:
    """Paginated, sorted and filtered listing of transactions."""

    @staticmethod
    def _transactions_view() -> Any:
        """Order left-joined to OrderStatus with the derived fields."""
        return (
            select(
                Order.id.label("order_id"),
                OrderStatus.id.label("status_id"),
                Order.school_id.label("school_id"),
                Order.gateway_name.label("gateway_name"),
                Order.custom_order_id.label("custom_order_id"),
                Order.collect_id.label("collect_id"),
                Order.created_at.label("created_at"),
                Order.amount_cents.label("order_amount_cents"),
                func.coalesce(OrderStatus.status, literal("pending")).label("status"),
                func.coalesce(
                    OrderStatus.transaction_amount_cents, Order.amount_cents
                ).label("transaction_amount_cents"),
                func.coalesce(OrderStatus.payment_time, Order.created_at).label("payment_time"),
            )
            .select_from(Order)
            .outerjoin(OrderStatus, Order.id == OrderStatus.collect_id)
            .subquery("transactions")
        )

    async def list_transactions(
        self,
        db: AsyncSession,
        *,
        status: Optional[str] = None,
        school_id: Optional[str] = None,
        sort: str = "createdAt",
        order: str = "desc",
        page: int = 1,
        limit: int = 10,
    ) -> Dict[str, Any]:
        """
        List transactions.

        Args:
            db: Database session
            status: Keep rows whose derived status equals this
            school_id: Keep rows for this school
            sort: Public field name to sort by
            order: ``asc`` or ``desc``
            page: 1-based page number
            limit: Page size

        Returns:
            Dict[str, Any]: ``{data, pagination: {page, limit, total, pages}}``

        Raises:
            ValidationError: On unknown sort field, direction or bad paging
        """
        if sort not in SORT_FIELDS:
            raise ValidationError(
                f"Invalid sort field '{sort}'. Must be one of: {sorted(SORT_FIELDS)}"
            )
        if order not in SORT_DIRECTIONS:
            raise ValidationError("Sort order must be 'asc' or 'desc'")
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")

        start_time = time.monotonic()
        view = self._transactions_view()

        conditions: list[ColumnElement[bool]] = []
        # Empty filter values are ignored.
        if status:
            conditions.append(view.c.status == status)
        if school_id:
            conditions.append(view.c.school_id == school_id)

        total = (
            await db.execute(select(func.count()).select_from(view).where(*conditions))
        ).scalar_one()

        sort_column = view.c[SORT_FIELDS[sort]]
        tie_breaker = view.c.order_id
        if order == "desc":
            order_by = (sort_column.desc(), tie_breaker.desc())
        else:
            order_by = (sort_column.asc(), tie_breaker.asc())

        rows = await db.execute(
            select(
                Order,
                OrderStatus,
                view.c.status,
                view.c.transaction_amount_cents,
                view.c.payment_time,
            )
            .select_from(view)
            .join(Order, Order.id == view.c.order_id)
            .outerjoin(OrderStatus, OrderStatus.id == view.c.status_id)
            .where(*conditions)
            .order_by(*order_by)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        data = [
            self._to_row(order_row, status_row, derived_status, txn_cents, payment_time)
            for order_row, status_row, derived_status, txn_cents, payment_time in rows.all()
        ]

        duration = time.monotonic() - start_time
        metrics.record_transaction_query(duration)
        logger.info(
            "transactions_listed",
            status=status,
            school_id=school_id,
            sort=sort,
            order=order,
            page=page,
            limit=limit,
            total=total,
            duration_seconds=duration,
        )

        return {
            "data": data,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit),
            },
        }

    async def list_by_school(
        self, db: AsyncSession, school_id: str, **query: Any
    ) -> Dict[str, Any]:
        """List transactions of one school; other arguments as ``list_transactions``."""
        query["school_id"] = school_id
        return await self.list_transactions(db, **query)

    @staticmethod
    def _to_row(
        order: Order,
        status: Optional[OrderStatus],
        derived_status: str,
        transaction_amount_cents: int,
        payment_time: Any,
    ) -> Dict[str, Any]:
        return {
            "id": str(order.id),
            "collect_id": order.collect_id,
            "school_id": order.school_id,
            "gateway": order.gateway_name,
            "order_amount": from_minor_units(order.amount_cents),
            "transaction_amount": from_minor_units(transaction_amount_cents),
            "status": derived_status,
            "custom_order_id": order.custom_order_id,
            "student_info": order.student_info,
            "payment_time": isoformat(payment_time),
            "createdAt": isoformat(order.created_at),
            "status_details": status_to_dict(status),
        }
