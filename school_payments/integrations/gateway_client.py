"""
Payment gateway API client with error classification and a circuit breaker.

Implements:
- JWT request signing with the shared gateway key
- Collect request creation
- Collect request status lookup
- Bounded timeouts on every call
- Circuit breaker pattern

Calls are never retried here; the caller decides what a failure means.
"""
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import httpx
import jwt
import structlog

from school_payments.config import Settings
from school_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class GatewayErrorType(Enum):
    """Classification of gateway errors."""

    TRANSIENT = "transient"  # network, timeout, 5xx
    PERMANENT = "permanent"  # 4xx, malformed responses
    RATE_LIMIT = "rate_limit"  # 429


class GatewayError(Exception):
    """Base exception for payment gateway errors."""

    def __init__(
        self,
        message: str,
        error_type: GatewayErrorType,
        status_code: Optional[int] = None,
        response_body: Any = None,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize gateway error.

        Args:
            message: Error message, upstream message when the gateway sent one
            error_type: Classification of error
            status_code: HTTP status returned by the gateway, if any
            response_body: Decoded upstream body, if any
            original_error: Underlying exception
        """
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.status_code = status_code
        self.response_body = response_body
        self.original_error = original_error


class CircuitBreaker:
    """
    Circuit breaker for gateway API calls.

    Stops calling the gateway for ``timeout`` seconds once
    ``failure_threshold`` consecutive calls have failed.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds before attempting to close circuit
            success_threshold: Successful calls needed to close circuit
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Await ``func`` with circuit breaker protection.

        Raises:
            GatewayError: If circuit is open
        """
        if self.state == "open":
            if (
                self.last_failure_time
                and time.monotonic() - self.last_failure_time > self.timeout
            ):
                self._set_state("half_open")
                self.success_count = 0
                logger.info("circuit_breaker_half_open")
            else:
                raise GatewayError(
                    "Payment gateway temporarily unavailable (circuit open)",
                    GatewayErrorType.TRANSIENT,
                )

        try:
            result = await func(*args, **kwargs)
        except GatewayError as e:
            # Client-side rejections say nothing about gateway health
            if e.error_type != GatewayErrorType.PERMANENT:
                self.on_failure()
            raise
        except Exception:
            self.on_failure()
            raise
        self.on_success()
        return result

    def on_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state("closed")
                logger.info("circuit_breaker_closed")

    def on_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = time.monotonic()
        if self.state == "half_open" or self.failure_count >= self.failure_threshold:
            self._set_state("open")
            logger.warning(
                "circuit_breaker_opened",
                failure_count=self.failure_count,
            )

    def _set_state(self, state: str) -> None:
        self.state = state
        metrics.set_circuit_breaker_state(state)


class GatewayClient:
    """
    Client for the upstream payment gateway.

    Features:
    - HS256 signing of request payloads with the shared PG key
    - Bearer authentication with the gateway API key
    - Error classification (transient / permanent / rate limit)
    - Circuit breaker pattern
    """

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        """
        Initialize gateway client.

        Args:
            settings: Gateway configuration (base URL, keys, timeout)
            http_client: Optional pre-built httpx client
            circuit_breaker: Optional circuit breaker
        """
        self.settings = settings
        self.base_url = settings.gateway_base_url
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=settings.circuit_breaker_failure_threshold,
            timeout=settings.circuit_breaker_timeout_seconds,
        )

        logger.info(
            "gateway_client_initialized",
            base_url=self.base_url,
            timeout_seconds=settings.gateway_timeout_seconds,
        )

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Lazily created shared HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.settings.gateway_timeout_seconds,
            )
        return self._http_client

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"Bearer {self.settings.gateway_api_key}",
        }

    def sign(self, payload: Dict[str, Any]) -> str:
        """
        Sign a request payload for the gateway.

        Args:
            payload: Claims to sign, e.g. ``{school_id, amount, callback_url}``

        Returns:
            str: HS256 JWT over the payload
        """
        return jwt.encode(payload, self.settings.gateway_pg_key, algorithm="HS256")

    @staticmethod
    def _classify_status(status_code: int) -> GatewayErrorType:
        """
        Classify an HTTP error status.

        Args:
            status_code: HTTP status returned by the gateway

        Returns:
            GatewayErrorType: Error classification
        """
        if status_code == 429:
            return GatewayErrorType.RATE_LIMIT
        elif status_code >= 500:
            return GatewayErrorType.TRANSIENT
        return GatewayErrorType.PERMANENT

    @staticmethod
    def _upstream_message(body: Any, default: str) -> str:
        """Pick the most useful message out of an upstream error body."""
        if isinstance(body, dict):
            message = body.get("message") or body.get("error")
            if isinstance(message, list):
                message = ", ".join(str(m) for m in message)
            if message:
                return str(message)
        return default

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> Any:
        """
        Issue a request through the circuit breaker and decode the JSON body.

        Raises:
            GatewayError: On transport failure, timeout, non-2xx or non-JSON body
        """
        start_time = time.monotonic()
        url = f"{self.base_url}{path}"

        async def _send() -> Any:
            try:
                response = await self.http_client.request(
                    method, url, headers=self._headers(), **kwargs
                )
            except httpx.TimeoutException as e:
                raise GatewayError(
                    f"Payment gateway timed out after {self.settings.gateway_timeout_seconds}s",
                    GatewayErrorType.TRANSIENT,
                    original_error=e,
                )
            except httpx.HTTPError as e:
                raise GatewayError(
                    f"Payment gateway request failed: {e}",
                    GatewayErrorType.TRANSIENT,
                    original_error=e,
                )

            try:
                body = response.json()
            except ValueError:
                body = {"raw": response.text}

            if response.is_error:
                raise GatewayError(
                    self._upstream_message(
                        body, f"Payment gateway returned HTTP {response.status_code}"
                    ),
                    self._classify_status(response.status_code),
                    status_code=response.status_code,
                    response_body=body,
                )
            if isinstance(body, dict) and set(body) == {"raw"}:
                raise GatewayError(
                    "Payment gateway returned a non-JSON response",
                    GatewayErrorType.PERMANENT,
                    status_code=response.status_code,
                    response_body=body,
                )
            return body

        try:
            body = await self.circuit_breaker.call(_send)
        except GatewayError as e:
            duration = time.monotonic() - start_time
            metrics.record_gateway_api_call(operation, "error", duration)
            metrics.record_gateway_api_error(e.error_type.value)
            logger.error(
                "gateway_api_error",
                operation=operation,
                error_type=e.error_type.value,
                status_code=e.status_code,
                error_message=e.message,
                duration_seconds=duration,
            )
            raise

        duration = time.monotonic() - start_time
        metrics.record_gateway_api_call(operation, "success", duration)
        return body

    async def create_collect_request(
        self,
        payload: Dict[str, Any],
        sign: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Create a collect request at the gateway.

        Args:
            payload: Signed fields ``{school_id, amount, callback_url}``
            sign: JWT produced by :meth:`sign` over ``payload``
            extra: Unsigned fields forwarded with the request

        Returns:
            Dict[str, Any]: ``{collect_request_id, trustee_id?, Collect_request_url}``

        Raises:
            GatewayError: If the gateway rejects the request
        """
        logger.info(
            "creating_collect_request",
            school_id=payload.get("school_id"),
            amount=payload.get("amount"),
        )

        body = await self._request(
            "create_collect_request",
            "POST",
            "/create-collect-request",
            json={**payload, "sign": sign, **(extra or {})},
        )
        if not isinstance(body, dict):
            raise GatewayError(
                "Payment gateway returned an unexpected response",
                GatewayErrorType.PERMANENT,
                response_body=body,
            )

        logger.info(
            "collect_request_created",
            collect_request_id=body.get("collect_request_id"),
        )
        return body

    async def get_collect_request_status(
        self, collect_id: str, school_id: str, sign: str
    ) -> Any:
        """
        Fetch the live status of a collect request.

        Args:
            collect_id: Gateway collect request id
            school_id: School the request belongs to
            sign: JWT over ``{school_id, collect_request_id}``

        Returns:
            Any: Gateway JSON, passed through untouched

        Raises:
            GatewayError: If the lookup fails or times out
        """
        logger.info("retrieving_collect_request_status", collect_id=collect_id)

        return await self._request(
            "get_collect_request_status",
            "GET",
            f"/collect-request/{collect_id}",
            params={"school_id": school_id, "sign": sign},
        )

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._http_client is not None and self._owns_http_client:
            await self._http_client.aclose()
            self._http_client = None
