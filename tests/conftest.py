"""
Pytest configuration and shared test fixtures.

Integration fixtures run the real SQLAlchemy code against an on-disk SQLite
database created per test, and a real RazorpayClient wired to an
``httpx.MockTransport`` that imitates the Razorpay orders endpoint.
"""

import os

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("APP_RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("APP_RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("APP_RAZORPAY_KEY_SECRET", "rzp_test_secret")

import json
from decimal import Decimal
from types import SimpleNamespace
from typing import Any, AsyncGenerator, Callable
from uuid import UUID, uuid4

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from agristore.core.security import create_access_token
from agristore.database.connection import make_session_factory
from agristore.database.models import Address, Base, Product, User, UserRole
from agristore.services.payments.razorpay_client import RazorpayClient, compute_signature

RAZORPAY_SECRET = "rzp_test_secret"
RAZORPAY_BASE_URL = "https://api.razorpay.test/v1"


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh SQLite database with every table."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'agristore.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seeded(session_factory: async_sessionmaker[AsyncSession]) -> SimpleNamespace:
    """
    Seed two customers, an admin, their addresses and three products.

    Returns:
        Namespace of the seeded identifiers
    """
    customer = User(
        id=uuid4(),
        email="farmer@example.com",
        name="Ravi Kumar",
        mobile_number="9000000001",
        role=UserRole.CUSTOMER,
    )
    other_customer = User(
        id=uuid4(),
        email="grower@example.com",
        name="Anita Devi",
        mobile_number="9000000002",
        role=UserRole.CUSTOMER,
    )
    admin = User(
        id=uuid4(),
        email="admin@example.com",
        name="Store Admin",
        mobile_number="9000000003",
        role=UserRole.ADMIN,
    )
    address = Address(
        id=uuid4(),
        user_id=customer.id,
        name="Ravi Kumar",
        mobile_number="9000000001",
        street="12 Mandi Road",
        city="Ludhiana",
        state="Punjab",
        pin_code="141001",
    )
    other_address = Address(
        id=uuid4(),
        user_id=other_customer.id,
        name="Anita Devi",
        mobile_number="9000000002",
        street="4 Canal Street",
        city="Karnal",
        state="Haryana",
        pin_code="132001",
    )
    urea = Product(
        id=uuid4(),
        name="Urea Plus",
        category="wheat",
        presentation="Granules",
        presentation_size="1kg",
        price=Decimal("100.00"),
        discount=Decimal("10"),
        quantity_in_stock=5,
    )
    potash = Product(
        id=uuid4(),
        name="Potash Gold",
        category="rice",
        presentation="Powder Form",
        presentation_size="500gm",
        price=Decimal("50.00"),
        discount=Decimal("0"),
        quantity_in_stock=20,
    )
    retired = Product(
        id=uuid4(),
        name="Old Mix",
        price=Decimal("80.00"),
        discount=Decimal("0"),
        quantity_in_stock=10,
        is_active=False,
    )

    async with session_factory() as session:
        session.add_all([customer, other_customer, admin])
        await session.flush()
        session.add_all([address, other_address, urea, potash, retired])
        await session.commit()

    return SimpleNamespace(
        customer_id=customer.id,
        other_customer_id=other_customer.id,
        admin_id=admin.id,
        address_id=address.id,
        other_address_id=other_address.id,
        urea_id=urea.id,
        potash_id=potash.id,
        retired_id=retired.id,
    )


@pytest.fixture
def stock_of(session_factory: async_sessionmaker[AsyncSession]) -> Callable:
    """Read a product's stock through a fresh session."""

    async def read(product_id: UUID) -> int:
        async with session_factory() as session:
            result = await session.execute(
                select(Product.quantity_in_stock).where(Product.id == product_id)
            )
            return result.scalar_one()

    return read


@pytest.fixture
def gateway_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
def razorpay_client(gateway_requests: list[httpx.Request]) -> RazorpayClient:
    """RazorpayClient backed by a transport that accepts every order."""

    def handler(request: httpx.Request) -> httpx.Response:
        gateway_requests.append(request)
        body = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "id": f"order_{uuid4().hex[:14]}",
                "entity": "order",
                "amount": body["amount"],
                "currency": body["currency"],
                "receipt": body["receipt"],
                "status": "created",
            },
        )

    return RazorpayClient(
        key_id="rzp_test_key",
        key_secret=RAZORPAY_SECRET,
        base_url=RAZORPAY_BASE_URL,
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
def failing_razorpay_client() -> RazorpayClient:
    """RazorpayClient backed by a transport that rejects every call."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={
                "error": {
                    "code": "BAD_REQUEST_ERROR",
                    "description": "Authentication failed",
                }
            },
        )

    return RazorpayClient(
        key_id="rzp_test_key",
        key_secret=RAZORPAY_SECRET,
        base_url=RAZORPAY_BASE_URL,
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
def sign() -> Callable[[str, str], str]:
    """Produce the signature the checkout widget would return."""

    def _sign(razorpay_order_id: str, razorpay_payment_id: str) -> str:
        return compute_signature(razorpay_order_id, razorpay_payment_id, RAZORPAY_SECRET)

    return _sign


@pytest.fixture
def auth_headers() -> Callable[[UUID], dict[str, Any]]:
    def _headers(user_id: UUID) -> dict[str, Any]:
        return {"Authorization": f"Bearer {create_access_token(str(user_id))}"}

    return _headers
