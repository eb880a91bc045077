"""Pytest configuration for checkout tests

Provides an in-memory SQLite database (one shared aiosqlite connection), a
seeded tenant with one campaign offer, the FastAPI app wired to that
database, and a scriptable payment gateway.
"""

import os
import uuid
from decimal import Decimal
from typing import List, Optional

# Set test environment before the app reads its settings
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CACHE_ENABLED"] = "false"
os.environ["DEMO_MODE"] = "false"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.database import Base, custom_json_dumps, get_db, register_models
from app.models.catalog import Campaign, Offer, Product
from app.models.gateway import Gateway
from app.models.tenant import Tenant
from app.services.spreedly_client import (
    GatewayResult,
    GatewayTransactionRequest,
    PaymentGatewayClient,
    get_gateway_client,
)

register_models()


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
async def engine():
    """In-memory database; StaticPool keeps every session on one connection."""
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        json_serializer=custom_json_dumps,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_factory):
    """Session for seeding and direct service tests."""
    async with session_factory() as session:
        yield session


# ============================================================================
# Seed Data
# ============================================================================

@pytest.fixture
async def tenant(db_session) -> Tenant:
    tenant = Tenant(name="Acme Supplements", subdomain="acme")
    db_session.add(tenant)
    await db_session.commit()
    return tenant


@pytest.fixture
async def product(db_session, tenant) -> Product:
    product = Product(
        tenant_id=tenant.id,
        name="Daily Greens",
        sku="DG-30",
        price=Decimal("50.00"),
        shipping_cost=Decimal("4.95"),
    )
    db_session.add(product)
    await db_session.commit()
    return product


@pytest.fixture
async def campaign(db_session, tenant) -> Campaign:
    campaign = Campaign(
        tenant_id=tenant.id,
        display_id=1,
        name="Spring Launch",
        currency="USD",
    )
    db_session.add(campaign)
    await db_session.commit()
    return campaign


@pytest.fixture
async def offer(db_session, campaign, product) -> Offer:
    """Offer 1 of campaign 1: 50.00 with 10% off, 4.95 default shipping."""
    offer = Offer(
        campaign_id=campaign.id,
        product_id=product.id,
        display_id=1,
        name="Daily Greens - 30 day",
        discount_type="percentage",
        discount_value=Decimal("10"),
    )
    db_session.add(offer)
    await db_session.commit()
    return offer


@pytest.fixture
async def gateway(db_session, tenant) -> Gateway:
    gateway = Gateway(
        tenant_id=tenant.id,
        name="Test Gateway",
        gateway_type="test",
        gateway_token="gw_test_token",
        priority=10,
    )
    db_session.add(gateway)
    await db_session.commit()
    return gateway


# ============================================================================
# Payment Gateway
# ============================================================================

class FakeGatewayClient(PaymentGatewayClient):
    """
    Records every charge; approves unless the next outcome is scripted.

    decline_next(...) makes the next charge return a Spreedly-style decline.
    """

    def __init__(self):
        self.calls: List[dict] = []
        self._declines: List[dict] = []
        self.raise_on_charge: Optional[Exception] = None

    def decline_next(self, message: str = "Insufficient funds", error_code: str = "51"):
        self._declines.append({"message": message, "error_code": error_code})

    def _transaction(self, succeeded: bool, amount, message: str, error_code=None) -> GatewayResult:
        return GatewayResult(
            success=succeeded,
            data={"transaction": {
                "token": f"txn_{uuid.uuid4().hex[:12]}",
                "succeeded": succeeded,
                "amount": amount,
                "message": message,
                "response": {"error_code": error_code, "avs_code": "Y", "cvv_code": "M"},
            }},
        )

    async def _charge(self, kind: str, gateway_token, request: GatewayTransactionRequest) -> GatewayResult:
        self.calls.append({"kind": kind, "gateway_token": gateway_token, "request": request})
        if self.raise_on_charge is not None:
            raise self.raise_on_charge
        if self._declines:
            decline = self._declines.pop(0)
            return self._transaction(False, request.amount, decline["message"], decline["error_code"])
        return self._transaction(True, request.amount, "Succeeded!")

    async def purchase(self, gateway_token, request):
        return await self._charge("purchase", gateway_token, request)

    async def authorize(self, gateway_token, request):
        return await self._charge("authorize", gateway_token, request)

    async def capture(self, transaction_token, amount=None):
        return self._transaction(True, amount, "Succeeded!")

    async def refund(self, transaction_token, amount=None):
        return self._transaction(True, amount, "Succeeded!")

    async def void(self, transaction_token):
        return self._transaction(True, None, "Succeeded!")

    async def get_payment_method(self, payment_method_token):
        return GatewayResult(success=True, data={"payment_method": {"token": payment_method_token}})


@pytest.fixture
def gateway_client() -> FakeGatewayClient:
    return FakeGatewayClient()


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def app(session_factory, gateway_client):
    """FastAPI app with the test database and gateway."""
    from app.main import app as fastapi_app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_gateway_client] = lambda: gateway_client
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app, tenant):
    """HTTP client scoped to the seeded tenant."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-Tenant-ID": str(tenant.id)},
    ) as http_client:
        yield http_client


@pytest.fixture
def lead_payload():
    return {
        "campaign_id": 1,
        "product_id": 1,
        "email": "jane@acme.io",
        "first_name": "Jane",
        "last_name": "Doe",
        "utm_source": "facebook",
    }


@pytest.fixture
def address_payload():
    return {
        "shipping_address": {
            "address_1": "1 Market St",
            "city": "San Francisco",
            "state": "CA",
            "postal_code": "94105",
            "country": "us",
        },
        "bill_same_as_ship": True,
    }
