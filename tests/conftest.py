"""
Pytest configuration and fixtures.
"""
import os

# Required settings must exist before the application module is imported
os.environ.setdefault("GATEWAY_BASE_URL", "https://gateway.test/erp")
os.environ.setdefault("GATEWAY_API_KEY", "test_api_key")
os.environ.setdefault("GATEWAY_PG_KEY", "test_pg_key")
os.environ.setdefault("SCHOOL_ID", "school_test_001")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import json
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from school_payments.api.main import app
from school_payments.api.routes import get_gateway_client
from school_payments.config import Settings, get_settings
from school_payments.database.connection import get_db
from school_payments.database.models import Base
from school_payments.integrations.gateway_client import GatewayClient


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        gateway_base_url="https://gateway.test/erp/",
        gateway_api_key="test_api_key",
        gateway_pg_key="test_pg_key",
        school_id="school_test_001",
        database_url="sqlite+aiosqlite:///:memory:",
        app_name="school-payments-test",
        app_env="test",
        log_level="DEBUG",
        circuit_breaker_failure_threshold=3,
    )


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, Any]:
    """In-memory SQLite engine with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def test_db(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, Any]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


class FakeGateway:
    """
    Scripted stand-in for the payment gateway, served through httpx.MockTransport.

    Each route answers with the configured ``(status_code, body)`` tuple, or
    raises the configured exception.
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.create_response: Tuple[int, Any] = (
            200,
            {
                "collect_request_id": "COLLECT_123",
                "trustee_id": "trustee_abc",
                "Collect_request_url": "https://pay.gateway.test/collect/COLLECT_123",
            },
        )
        self.status_response: Tuple[int, Any] = (200, {"status": "SUCCESS", "amount": 1000})
        self.create_error: Optional[Exception] = None
        self.status_error: Optional[Exception] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/create-collect-request"):
            if self.create_error is not None:
                raise self.create_error
            status_code, body = self.create_response
        elif "/collect-request/" in request.url.path:
            if self.status_error is not None:
                raise self.status_error
            status_code, body = self.status_response
        else:
            status_code, body = 404, {"message": "Not found"}

        if isinstance(body, (dict, list)):
            return httpx.Response(status_code, json=body)
        return httpx.Response(status_code, text=body)

    @property
    def last_request(self) -> httpx.Request:
        return self.requests[-1]

    def last_json(self) -> Dict[str, Any]:
        return json.loads(self.last_request.content)


@pytest.fixture
def fake_gateway() -> FakeGateway:
    """Scripted gateway backend."""
    return FakeGateway()


@pytest_asyncio.fixture
async def gateway_client(
    test_settings: Settings, fake_gateway: FakeGateway
) -> AsyncGenerator[GatewayClient, Any]:
    """Gateway client talking to the fake gateway."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_gateway.handler))
    client = GatewayClient(test_settings, http_client=http_client)
    yield client
    await http_client.aclose()


@pytest_asyncio.fixture
async def client(
    test_settings: Settings,
    gateway_client: GatewayClient,
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[httpx.AsyncClient, Any]:
    """Create test HTTP client with database and gateway overridden."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, Any]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_gateway_client] = lambda: gateway_client

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def sample_payment_data() -> Dict[str, Any]:
    """Sample create-payment request body."""
    return {
        "amount": "1000",
        "callback_url": "https://x.test/cb",
        "student_info": {
            "name": "Asha Verma",
            "id": "STU-0042",
            "email": "asha@example.com",
        },
    }


@pytest.fixture
def make_order(session_factory: async_sessionmaker[AsyncSession]) -> Callable[..., Any]:
    """Factory inserting committed orders directly through the store."""
    from school_payments.database.stores import OrderStore

    counter = {"n": 0}

    async def _make_order(**overrides: Any) -> Dict[str, Any]:
        counter["n"] += 1
        n = counter["n"]
        fields = {
            "school_id": "school_test_001",
            "trustee_id": "trustee_abc",
            "student_info": {"name": f"Student {n}", "id": f"STU-{n}", "email": f"s{n}@x.test"},
            "gateway_name": "Edviron",
            "custom_order_id": f"ORDER_1700000000000_order{n:04d}",
            "collect_id": f"COLLECT_{n}",
            "amount_cents": 100000,
            "callback_url": "https://x.test/cb",
        }
        fields.update(overrides)
        async with session_factory() as session:
            order = await OrderStore().create(session, **fields)
            await session.commit()
            return {"id": order.id, **fields}

    return _make_order
