"""
API routes for payment creation, reporting and gateway callbacks.
"""
import json
from functools import lru_cache
from typing import Any, Dict, Literal, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession

from school_payments.config import Settings, get_settings
from school_payments.core.payment_orchestrator import PaymentOrchestrator
from school_payments.core.transaction_query import TransactionQueryEngine
from school_payments.core.webhook_reconciler import WebhookReconciler
from school_payments.database.connection import get_db
from school_payments.integrations.gateway_client import GatewayClient
from school_payments.monitoring.health import HealthCheck

from .schemas import (
    CreatePaymentRequest,
    CreatePaymentResponse,
    HealthCheckResponse,
    TransactionListResponse,
    TransactionQuery,
    TransactionStatusResponse,
    WebhookResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
payment_router = APIRouter(tags=["payments"])
transaction_router = APIRouter(prefix="/transactions", tags=["transactions"])
webhook_router = APIRouter(tags=["webhooks"])
monitoring_router = APIRouter(tags=["monitoring"])

health_check = HealthCheck()


@lru_cache()
def get_gateway_client() -> GatewayClient:
    """Process-wide gateway client (shared connection pool and circuit breaker)."""
    return GatewayClient(get_settings())


def get_orchestrator(
    settings: Settings = Depends(get_settings),
    gateway_client: GatewayClient = Depends(get_gateway_client),
) -> PaymentOrchestrator:
    return PaymentOrchestrator(settings, gateway_client=gateway_client)


def get_reconciler(settings: Settings = Depends(get_settings)) -> WebhookReconciler:
    return WebhookReconciler(settings)


def get_query_engine() -> TransactionQueryEngine:
    return TransactionQueryEngine()


def listing_query(
    page: int = Query(1, ge=1, description="1-based page number"),
    limit: int = Query(10, ge=1, le=1000, description="Page size"),
    sort: str = Query("createdAt", description="Field to sort by"),
    order: Literal["asc", "desc"] = Query("desc", description="Sort direction"),
    status: Optional[str] = Query(None, description="Filter on derived status"),
) -> TransactionQuery:
    """Collect paging, sorting and status parameters shared by both listings."""
    return TransactionQuery(page=page, limit=limit, sort=sort, order=order, status=status)


def transaction_query(
    query: TransactionQuery = Depends(listing_query),
    school_id: Optional[str] = Query(None, description="Filter on school"),
) -> TransactionQuery:
    """Listing parameters plus the optional school filter."""
    return query.model_copy(update={"school_id": school_id})


@payment_router.post(
    "/create-payment",
    response_model=CreatePaymentResponse,
    summary="Create a payment",
    description="Create a collect request at the gateway and record the order",
)
async def create_payment(
    request: CreatePaymentRequest,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """
    Create a payment.

    Nothing is stored when the gateway rejects the request.
    """
    logger.info("api_create_payment_request", amount=request.amount)

    return await orchestrator.create_payment(
        amount=request.amount,
        callback_url=str(request.callback_url),
        student_info=request.student_info.model_dump(),
        db=db,
    )


@payment_router.get(
    "/transaction-status/{custom_order_id}",
    response_model=TransactionStatusResponse,
    summary="Check transaction status",
    description="Stored status of an order together with the live gateway status",
)
async def get_transaction_status(
    custom_order_id: str,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """Get transaction status by custom order id."""
    order_info = await orchestrator.get_transaction_status(custom_order_id, db)
    return {"success": True, "order_info": order_info}


@transaction_router.get(
    "",
    response_model=TransactionListResponse,
    summary="List transactions",
    description="Paginated, sorted and filtered transactions across all schools",
)
async def list_transactions(
    query: TransactionQuery = Depends(transaction_query),
    engine: TransactionQueryEngine = Depends(get_query_engine),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """List all transactions."""
    result = await engine.list_transactions(db, **query.model_dump())
    return {"success": True, **result}


@transaction_router.get(
    "/school/{school_id}",
    response_model=TransactionListResponse,
    summary="List transactions of a school",
    description="Same as the full listing, scoped to one school",
)
async def list_transactions_by_school(
    school_id: str,
    query: TransactionQuery = Depends(listing_query),
    engine: TransactionQueryEngine = Depends(get_query_engine),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """List transactions of one school."""
    result = await engine.list_by_school(
        db, school_id, **query.model_dump(exclude={"school_id"})
    )
    return {"success": True, **result}


@webhook_router.post(
    "/webhook",
    response_model=WebhookResponse,
    response_model_exclude_none=True,
    summary="Gateway webhook endpoint",
    description="Reconcile a gateway callback. Always answers 200.",
)
async def gateway_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_reconciler),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """
    Handle gateway callbacks.

    Bodies that are not JSON are still logged, as a string payload.
    """
    body = await request.body()
    try:
        payload = json.loads(body) if body else None
    except ValueError:
        payload = body.decode("utf-8", errors="replace")

    return await reconciler.process_webhook(payload, db)


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health() -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
    description="Kubernetes liveness probe endpoint",
)
async def liveness() -> Dict[str, Any]:
    """Liveness probe endpoint."""
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
    description="Kubernetes readiness probe endpoint",
)
async def readiness() -> Dict[str, Any]:
    """Readiness probe endpoint."""
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
