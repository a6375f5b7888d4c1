"""
Unit tests for the payment orchestrator.
"""
import re
from typing import Any

import httpx
import jwt
import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from school_payments.core.exceptions import (
    OrderNotFoundError,
    PaymentCreationError,
    StatusCheckError,
    ValidationError,
)
from school_payments.core.payment_orchestrator import PaymentOrchestrator
from school_payments.database.models import Order, utcnow
from school_payments.database.stores import OrderStatusStore

STUDENT = {"name": "Asha Verma", "id": "STU-0042", "email": "asha@example.com"}


@pytest.fixture
def orchestrator(test_settings: Any, gateway_client: Any) -> PaymentOrchestrator:
    """Orchestrator wired to the fake gateway."""
    return PaymentOrchestrator(test_settings, gateway_client=gateway_client)


async def count_orders(db: Any) -> int:
    return (await db.execute(select(func.count()).select_from(Order))).scalar_one()


class TestCreatePayment:
    """Test suite for PaymentOrchestrator.create_payment."""

    @pytest.mark.unit
    def test_custom_order_id_format(self) -> None:
        """Test ORDER_<millis>_<9 lowercase alnum>."""
        custom_order_id = PaymentOrchestrator.generate_custom_order_id()
        assert re.fullmatch(r"ORDER_\d{13}_[a-z0-9]{9}", custom_order_id)

    @pytest.mark.unit
    async def test_create_payment_success(
        self, orchestrator: PaymentOrchestrator, fake_gateway: Any, test_db: Any
    ) -> None:
        """Test that a gateway success persists exactly one order."""
        result = await orchestrator.create_payment(
            amount="1000", callback_url="https://x.test/cb", student_info=STUDENT, db=test_db
        )

        assert result["success"] is True
        assert result["message"] == "Payment request created successfully"
        assert result["collect_request_id"] == "COLLECT_123"
        assert result["collect_request_url"] == "https://pay.gateway.test/collect/COLLECT_123"
        assert re.fullmatch(r"ORDER_\d+_[a-z0-9]{9}", result["custom_order_id"])

        orders = (await test_db.execute(select(Order))).scalars().all()
        assert len(orders) == 1
        order = orders[0]
        assert str(order.id) == result["order_id"]
        assert order.custom_order_id == result["custom_order_id"]
        assert order.collect_id == "COLLECT_123"
        assert order.amount_cents == 100000
        assert order.trustee_id == "trustee_abc"
        assert order.gateway_name == "Edviron"
        assert order.school_id == "school_test_001"
        assert order.student_info == STUDENT

    @pytest.mark.unit
    async def test_create_payment_signs_request(
        self, orchestrator: PaymentOrchestrator, fake_gateway: Any, test_db: Any
    ) -> None:
        """Test the signed fields forwarded to the gateway."""
        result = await orchestrator.create_payment(
            amount="1000", callback_url="https://x.test/cb", student_info=STUDENT, db=test_db
        )

        body = fake_gateway.last_json()
        claims = jwt.decode(body["sign"], "test_pg_key", algorithms=["HS256"])
        assert claims == {
            "school_id": "school_test_001",
            "amount": "1000",
            "callback_url": "https://x.test/cb",
        }
        assert body["custom_order_id"] == result["custom_order_id"]
        assert body["student_info"] == STUDENT

    @pytest.mark.unit
    async def test_default_trustee_when_gateway_omits_it(
        self, orchestrator: PaymentOrchestrator, fake_gateway: Any, test_db: Any
    ) -> None:
        """Test trustee fallback to configuration."""
        fake_gateway.create_response = (200, {"collect_request_id": "COLLECT_9"})

        await orchestrator.create_payment(
            amount="250.50", callback_url="https://x.test/cb", student_info=STUDENT, db=test_db
        )

        order = (await test_db.execute(select(Order))).scalar_one()
        assert order.trustee_id == "default_trustee"
        assert order.amount_cents == 25050

    @pytest.mark.unit
    async def test_gateway_rejection_persists_nothing(
        self, orchestrator: PaymentOrchestrator, fake_gateway: Any, test_db: Any
    ) -> None:
        """Test that a gateway error leaves no order behind."""
        fake_gateway.create_response = (400, {"message": "Invalid school_id"})

        with pytest.raises(PaymentCreationError, match="Invalid school_id") as exc_info:
            await orchestrator.create_payment(
                amount="1000", callback_url="https://x.test/cb", student_info=STUDENT, db=test_db
            )

        assert exc_info.value.http_status == 400
        assert await count_orders(test_db) == 0

    @pytest.mark.unit
    async def test_missing_collect_request_id_persists_nothing(
        self, orchestrator: PaymentOrchestrator, fake_gateway: Any, test_db: Any
    ) -> None:
        """Test that a malformed gateway answer leaves no order behind."""
        fake_gateway.create_response = (200, {"unexpected": True})

        with pytest.raises(PaymentCreationError, match="Invalid response from payment gateway"):
            await orchestrator.create_payment(
                amount="1000", callback_url="https://x.test/cb", student_info=STUDENT, db=test_db
            )

        assert await count_orders(test_db) == 0

    @pytest.mark.unit
    async def test_network_failure_persists_nothing(
        self, orchestrator: PaymentOrchestrator, fake_gateway: Any, test_db: Any
    ) -> None:
        """Test that a transport failure leaves no order behind."""
        fake_gateway.create_error = httpx.ConnectError("connection refused")

        with pytest.raises(PaymentCreationError):
            await orchestrator.create_payment(
                amount="1000", callback_url="https://x.test/cb", student_info=STUDENT, db=test_db
            )

        assert await count_orders(test_db) == 0

    @pytest.mark.unit
    @pytest.mark.parametrize("amount", ["0", "-5", "abc", "", "1e30", "99999999999999999999"])
    async def test_invalid_amount_rejected_before_gateway(
        self, orchestrator: PaymentOrchestrator, fake_gateway: Any, test_db: Any, amount: str
    ) -> None:
        """Test that bad amounts never reach the gateway."""
        with pytest.raises(ValidationError):
            await orchestrator.create_payment(
                amount=amount, callback_url="https://x.test/cb", student_info=STUDENT, db=test_db
            )

        assert fake_gateway.requests == []

    @pytest.mark.unit
    async def test_custom_order_ids_are_unique(
        self, orchestrator: PaymentOrchestrator, test_db: Any
    ) -> None:
        """Test that repeated creations yield distinct custom order ids."""
        ids = set()
        for _ in range(5):
            result = await orchestrator.create_payment(
                amount="100", callback_url="https://x.test/cb", student_info=STUDENT, db=test_db
            )
            ids.add(result["custom_order_id"])

        assert len(ids) == 5
        assert await count_orders(test_db) == 5


class TestTransactionStatus:
    """Test suite for PaymentOrchestrator.get_transaction_status."""

    @pytest.mark.unit
    async def test_unknown_order_raises_not_found(
        self, orchestrator: PaymentOrchestrator, fake_gateway: Any, test_db: Any
    ) -> None:
        """Test 404 path and that the gateway is not called."""
        with pytest.raises(OrderNotFoundError) as exc_info:
            await orchestrator.get_transaction_status("ORDER_0_missing00", test_db)

        assert exc_info.value.http_status == 404
        assert fake_gateway.requests == []

    @pytest.mark.unit
    async def test_pending_without_status_row(
        self, orchestrator: PaymentOrchestrator, fake_gateway: Any, make_order: Any, test_db: Any
    ) -> None:
        """Test that an order without status reports pending."""
        order = await make_order(collect_id="COLLECT_77", amount_cents=100050)

        result = await orchestrator.get_transaction_status(order["custom_order_id"], test_db)

        assert result == {
            "custom_order_id": order["custom_order_id"],
            "collect_id": "COLLECT_77",
            "amount": 1000.5,
            "status": "pending",
            "payment_details": None,
            "gateway_response": {"status": "SUCCESS", "amount": 1000},
        }
        request = fake_gateway.last_request
        assert request.url.path.endswith("/collect-request/COLLECT_77")
        claims = jwt.decode(request.url.params["sign"], "test_pg_key", algorithms=["HS256"])
        assert claims == {"school_id": "school_test_001", "collect_request_id": "COLLECT_77"}

    @pytest.mark.unit
    async def test_local_status_is_reported(
        self, orchestrator: PaymentOrchestrator, fake_gateway: Any, make_order: Any, test_db: Any
    ) -> None:
        """Test that the stored status wins over the live gateway status."""
        order = await make_order()
        fake_gateway.status_response = (200, {"status": "PENDING"})
        await OrderStatusStore().upsert(
            test_db,
            order["id"],
            {
                "order_amount_cents": 100000,
                "transaction_amount_cents": 100000,
                "payment_mode": "upi",
                "payment_details": "success@ybl",
                "bank_reference": "YESBNK222",
                "payment_message": "payment success",
                "status": "success",
                "error_message": "",
                "payment_time": utcnow(),
            },
        )
        await test_db.commit()

        result = await orchestrator.get_transaction_status(order["custom_order_id"], test_db)

        assert result["status"] == "success"
        assert result["gateway_response"] == {"status": "PENDING"}
        assert result["payment_details"]["payment_mode"] == "upi"
        assert result["payment_details"]["transaction_amount"] == 1000
        assert result["payment_details"]["collect_id"] == str(order["id"])

    @pytest.mark.unit
    async def test_gateway_failure_raises_status_check_error(
        self, orchestrator: PaymentOrchestrator, fake_gateway: Any, make_order: Any, test_db: Any
    ) -> None:
        """Test that upstream errors surface as StatusCheckError."""
        order = await make_order()
        fake_gateway.status_response = (404, {"message": "Collect request not found"})

        with pytest.raises(StatusCheckError, match="Collect request not found") as exc_info:
            await orchestrator.get_transaction_status(order["custom_order_id"], test_db)

        assert exc_info.value.http_status == 400

    @pytest.mark.unit
    async def test_gateway_timeout_raises_status_check_error(
        self, orchestrator: PaymentOrchestrator, fake_gateway: Any, make_order: Any, test_db: Any
    ) -> None:
        """Test that a timeout surfaces as StatusCheckError."""
        order = await make_order()
        fake_gateway.status_error = httpx.ReadTimeout("timed out")

        with pytest.raises(StatusCheckError, match="timed out"):
            await orchestrator.get_transaction_status(order["custom_order_id"], test_db)


class TestOrderStore:
    """Test suite for order persistence constraints."""

    @pytest.mark.unit
    async def test_custom_order_id_is_unique_in_storage(
        self, make_order: Any
    ) -> None:
        """Test that the database refuses a duplicate custom order id."""
        await make_order(custom_order_id="ORDER_1_duplicate")

        with pytest.raises(IntegrityError):
            await make_order(custom_order_id="ORDER_1_duplicate")
