"""
Prometheus metrics for payment aggregator monitoring.

Tracks:
- Payment creation outcomes
- Gateway API calls, errors and latency
- Gateway circuit breaker state
- Webhook reconciliation outcomes
- Transaction query latency
"""
from prometheus_client import Counter, Gauge, Histogram

# Payment metrics
payment_requests_total = Counter(
    "payment_requests_total",
    "Total number of payment creation requests",
    ["status"],  # created, failed
)

payment_processing_duration_seconds = Histogram(
    "payment_processing_duration_seconds",
    "Payment creation duration in seconds",
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

payment_amount_cents = Histogram(
    "payment_amount_cents",
    "Requested payment amounts in minor units",
    buckets=(10000, 50000, 100000, 500000, 1000000, 5000000, 10000000),
)

status_checks_total = Counter(
    "status_checks_total",
    "Total on-demand transaction status checks",
    ["status"],  # pending, success, failed, error
)

# Gateway API metrics
gateway_api_requests_total = Counter(
    "gateway_api_requests_total",
    "Total payment gateway API requests",
    ["operation", "status"],  # operation: create_collect_request, get_collect_request_status
)

gateway_api_errors_total = Counter(
    "gateway_api_errors_total",
    "Total payment gateway API errors",
    ["error_type"],  # transient, permanent, rate_limit
)

gateway_api_duration_seconds = Histogram(
    "gateway_api_duration_seconds",
    "Payment gateway API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

# Circuit breaker metrics
gateway_circuit_breaker_state = Gauge(
    "gateway_circuit_breaker_state",
    "Gateway circuit breaker state (0=closed, 1=open, 2=half_open)",
)

# Webhook metrics
webhook_events_total = Counter(
    "webhook_events_total",
    "Total webhook deliveries by reconciliation outcome",
    ["status"],  # processed, failed
)

webhook_processing_duration_seconds = Histogram(
    "webhook_processing_duration_seconds",
    "Webhook processing duration in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# Reporting metrics
transaction_query_duration_seconds = Histogram(
    "transaction_query_duration_seconds",
    "Transaction listing query duration in seconds",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_payment_request(status: str, amount_cents: int | None = None) -> None:
        """Record a payment creation attempt."""
        payment_requests_total.labels(status=status).inc()
        if amount_cents is not None:
            payment_amount_cents.observe(amount_cents)

    @staticmethod
    def record_payment_duration(duration_seconds: float) -> None:
        """Record payment creation duration."""
        payment_processing_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_status_check(status: str) -> None:
        """Record an on-demand status check outcome."""
        status_checks_total.labels(status=status).inc()

    @staticmethod
    def record_gateway_api_call(
        operation: str, status: str, duration_seconds: float
    ) -> None:
        """Record a gateway API call."""
        gateway_api_requests_total.labels(operation=operation, status=status).inc()
        gateway_api_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_gateway_api_error(error_type: str) -> None:
        """Record a gateway API error."""
        gateway_api_errors_total.labels(error_type=error_type).inc()

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        gateway_circuit_breaker_state.set(state_map.get(state, 0))

    @staticmethod
    def record_webhook_event(status: str, duration_seconds: float) -> None:
        """Record webhook reconciliation outcome."""
        webhook_events_total.labels(status=status).inc()
        webhook_processing_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_transaction_query(duration_seconds: float) -> None:
        """Record transaction listing duration."""
        transaction_query_duration_seconds.observe(duration_seconds)


# Export singleton instance
metrics = MetricsCollector()
