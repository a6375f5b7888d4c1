"""External integrations for the payment aggregator."""
from .gateway_client import CircuitBreaker, GatewayClient, GatewayError, GatewayErrorType

__all__ = ["CircuitBreaker", "GatewayClient", "GatewayError", "GatewayErrorType"]
