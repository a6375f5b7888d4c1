"""
Unit tests for the payment gateway client.
"""
from typing import Any

import httpx
import jwt
import pytest

from school_payments.integrations.gateway_client import (
    CircuitBreaker,
    GatewayClient,
    GatewayError,
    GatewayErrorType,
)


class TestGatewaySigning:
    """Test suite for request signing."""

    @pytest.mark.unit
    def test_sign_is_hs256_over_payload(self, test_settings: Any) -> None:
        """Test that the signature decodes with the PG key."""
        client = GatewayClient(test_settings)
        payload = {"school_id": "school_test_001", "amount": "1000", "callback_url": "https://x.test/cb"}

        token = client.sign(payload)

        assert jwt.get_unverified_header(token)["alg"] == "HS256"
        assert jwt.decode(token, "test_pg_key", algorithms=["HS256"]) == payload


class TestGatewayClient:
    """Test suite for GatewayClient requests and error classification."""

    @pytest.mark.unit
    async def test_create_collect_request_sends_signed_body(
        self, gateway_client: GatewayClient, fake_gateway: Any
    ) -> None:
        """Test request shape of the create call."""
        payload = {"school_id": "school_test_001", "amount": "1000", "callback_url": "https://x.test/cb"}

        body = await gateway_client.create_collect_request(
            payload, "signed", extra={"custom_order_id": "ORDER_1", "student_info": {"name": "A"}}
        )

        assert body["collect_request_id"] == "COLLECT_123"
        request = fake_gateway.last_request
        assert request.method == "POST"
        assert str(request.url) == "https://gateway.test/erp/create-collect-request"
        assert request.headers["Authorization"] == "Bearer test_api_key"
        assert fake_gateway.last_json() == {
            **payload,
            "sign": "signed",
            "custom_order_id": "ORDER_1",
            "student_info": {"name": "A"},
        }

    @pytest.mark.unit
    async def test_get_collect_request_status_query(
        self, gateway_client: GatewayClient, fake_gateway: Any
    ) -> None:
        """Test request shape of the status call and body passthrough."""
        body = await gateway_client.get_collect_request_status(
            "COLLECT_123", "school_test_001", "signed"
        )

        assert body == {"status": "SUCCESS", "amount": 1000}
        request = fake_gateway.last_request
        assert request.method == "GET"
        assert request.url.path == "/erp/collect-request/COLLECT_123"
        assert request.url.params["school_id"] == "school_test_001"
        assert request.url.params["sign"] == "signed"
        assert request.headers["Authorization"] == "Bearer test_api_key"

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "status_code,error_type",
        [
            (400, GatewayErrorType.PERMANENT),
            (401, GatewayErrorType.PERMANENT),
            (429, GatewayErrorType.RATE_LIMIT),
            (500, GatewayErrorType.TRANSIENT),
            (503, GatewayErrorType.TRANSIENT),
        ],
    )
    async def test_http_errors_are_classified(
        self,
        gateway_client: GatewayClient,
        fake_gateway: Any,
        status_code: int,
        error_type: GatewayErrorType,
    ) -> None:
        """Test status code classification and upstream message."""
        fake_gateway.create_response = (status_code, {"message": "upstream says no"})

        with pytest.raises(GatewayError) as exc_info:
            await gateway_client.create_collect_request({"school_id": "s"}, "signed")

        assert exc_info.value.error_type == error_type
        assert exc_info.value.status_code == status_code
        assert exc_info.value.message == "upstream says no"
        assert exc_info.value.response_body == {"message": "upstream says no"}

    @pytest.mark.unit
    async def test_timeout_is_transient(
        self, gateway_client: GatewayClient, fake_gateway: Any
    ) -> None:
        """Test that a timeout surfaces as a transient error."""
        fake_gateway.status_error = httpx.ReadTimeout("timed out")

        with pytest.raises(GatewayError, match="timed out") as exc_info:
            await gateway_client.get_collect_request_status("COLLECT_123", "s", "signed")

        assert exc_info.value.error_type == GatewayErrorType.TRANSIENT

    @pytest.mark.unit
    async def test_connection_error_is_transient(
        self, gateway_client: GatewayClient, fake_gateway: Any
    ) -> None:
        """Test that a network failure surfaces as a transient error."""
        fake_gateway.create_error = httpx.ConnectError("connection refused")

        with pytest.raises(GatewayError) as exc_info:
            await gateway_client.create_collect_request({"school_id": "s"}, "signed")

        assert exc_info.value.error_type == GatewayErrorType.TRANSIENT

    @pytest.mark.unit
    async def test_non_json_response_is_permanent(
        self, gateway_client: GatewayClient, fake_gateway: Any
    ) -> None:
        """Test that a 200 with a non-JSON body is rejected."""
        fake_gateway.create_response = (200, "<html>oops</html>")

        with pytest.raises(GatewayError) as exc_info:
            await gateway_client.create_collect_request({"school_id": "s"}, "signed")

        assert exc_info.value.error_type == GatewayErrorType.PERMANENT

    @pytest.mark.unit
    async def test_circuit_opens_after_repeated_transient_failures(
        self, gateway_client: GatewayClient, fake_gateway: Any
    ) -> None:
        """Test that the breaker stops calling the gateway once open."""
        fake_gateway.status_response = (503, {"message": "down"})

        for _ in range(3):
            with pytest.raises(GatewayError):
                await gateway_client.get_collect_request_status("C", "s", "signed")
        calls_before = len(fake_gateway.requests)

        with pytest.raises(GatewayError, match="circuit open"):
            await gateway_client.get_collect_request_status("C", "s", "signed")

        assert gateway_client.circuit_breaker.state == "open"
        assert len(fake_gateway.requests) == calls_before

    @pytest.mark.unit
    async def test_permanent_errors_do_not_open_circuit(
        self, gateway_client: GatewayClient, fake_gateway: Any
    ) -> None:
        """Test that client-side rejections leave the breaker closed."""
        fake_gateway.create_response = (400, {"message": "bad amount"})

        for _ in range(5):
            with pytest.raises(GatewayError):
                await gateway_client.create_collect_request({"school_id": "s"}, "signed")

        assert gateway_client.circuit_breaker.state == "closed"


class TestCircuitBreaker:
    """Test suite for CircuitBreaker state transitions."""

    @pytest.mark.unit
    async def test_half_open_closes_after_successes(self) -> None:
        """Test recovery after the cool-down period."""
        breaker = CircuitBreaker(failure_threshold=1, timeout=30, success_threshold=2)

        async def fail() -> None:
            raise GatewayError("down", GatewayErrorType.TRANSIENT)

        async def ok() -> str:
            return "ok"

        with pytest.raises(GatewayError):
            await breaker.call(fail)
        assert breaker.state == "open"

        breaker.last_failure_time -= 31
        assert await breaker.call(ok) == "ok"
        assert breaker.state == "half_open"
        assert await breaker.call(ok) == "ok"
        assert breaker.state == "closed"

    @pytest.mark.unit
    async def test_failure_in_half_open_reopens(self) -> None:
        """Test that a failed probe reopens the circuit."""
        breaker = CircuitBreaker(failure_threshold=1, timeout=30)

        async def fail() -> None:
            raise GatewayError("down", GatewayErrorType.TRANSIENT)

        with pytest.raises(GatewayError):
            await breaker.call(fail)
        breaker.last_failure_time -= 31
        with pytest.raises(GatewayError, match="down"):
            await breaker.call(fail)

        assert breaker.state == "open"
