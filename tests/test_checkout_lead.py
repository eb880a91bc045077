"""POST/GET /api/v1/checkout/lead"""

import uuid

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select

from app.models.customer import Customer, CustomerStatusHistory
from app.models.tenant import Tenant

LEAD_URL = "/api/v1/checkout/lead"


async def load_customer(session_factory, customer_id) -> Customer:
    async with session_factory() as session:
        return await session.get(Customer, uuid.UUID(str(customer_id)))


async def test_new_lead_creates_customer(client, offer, lead_payload, session_factory):
    response = await client.post(
        LEAD_URL,
        json=lead_payload,
        headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1", "User-Agent": "pytest-agent"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["status"] == "lead"
    assert body["existing"] is False
    assert body["session_id"]

    customer = await load_customer(session_factory, body["customer_id"])
    assert customer.email == "jane@acme.io"
    assert customer.first_name == "Jane"
    assert customer.source_campaign_id is not None
    assert customer.source_offer_id == offer.id
    assert customer.utm_source == "facebook"
    assert customer.ip_address == "203.0.113.9"
    assert customer.user_agent == "pytest-agent"

    async with session_factory() as session:
        statuses = (await session.execute(
            select(CustomerStatusHistory.to_status).where(CustomerStatusHistory.customer_id == customer.id)
        )).scalars().all()
    assert sorted(statuses) == ["lead", "prospect"]


async def test_repeat_lead_is_idempotent_and_write_once(client, offer, lead_payload, session_factory):
    first = (await client.post(LEAD_URL, json=lead_payload)).json()

    repeat = dict(lead_payload, utm_source="google", utm_medium="cpc", first_name="Janet", session_id="other")
    second = (await client.post(LEAD_URL, json=repeat)).json()

    assert second["customer_id"] == first["customer_id"]
    assert second["existing"] is True
    assert second["session_id"] == first["session_id"]

    customer = await load_customer(session_factory, first["customer_id"])
    assert customer.utm_source == "facebook"
    assert customer.utm_medium == "cpc"
    assert customer.first_name == "Janet"

    async with session_factory() as session:
        count = (await session.execute(select(func.count(Customer.id)))).scalar()
    assert count == 1


async def test_email_is_matched_case_insensitively(client, offer, lead_payload):
    first = (await client.post(LEAD_URL, json=lead_payload)).json()
    second = (await client.post(LEAD_URL, json=dict(lead_payload, email="Jane@Acme.io"))).json()

    assert second["customer_id"] == first["customer_id"]


async def test_custom_fields_are_merged(client, offer, lead_payload, session_factory):
    first = (await client.post(LEAD_URL, json=dict(lead_payload, custom_fields={"goal": "energy"}))).json()
    await client.post(LEAD_URL, json=dict(lead_payload, custom_fields={"age": "34"}))

    customer = await load_customer(session_factory, first["customer_id"])
    assert customer.custom_fields == {"goal": "energy", "age": "34"}


async def test_customer_id_takes_precedence(client, offer, lead_payload):
    first = (await client.post(LEAD_URL, json=lead_payload)).json()

    response = await client.post(
        LEAD_URL,
        json=dict(lead_payload, customer_id=first["customer_id"], email="jane.doe@acme.io"),
    )

    assert response.status_code == 200
    assert response.json()["customer_id"] == first["customer_id"]
    assert response.json()["existing"] is True


async def test_customer_id_cannot_take_another_customers_email(client, offer, lead_payload):
    first = (await client.post(LEAD_URL, json=lead_payload)).json()
    await client.post(LEAD_URL, json=dict(lead_payload, email="john@acme.io"))

    response = await client.post(
        LEAD_URL,
        json=dict(lead_payload, customer_id=first["customer_id"], email="john@acme.io"),
    )

    assert response.status_code == 400
    assert "already registered" in response.json()["error"]


async def test_unknown_customer_id_falls_back_to_email(client, offer, lead_payload):
    response = await client.post(LEAD_URL, json=dict(lead_payload, customer_id=str(uuid.uuid4())))

    assert response.status_code == 200
    assert response.json()["existing"] is False


async def test_lead_does_not_downgrade_status(client, offer, lead_payload, session_factory):
    body = (await client.post(LEAD_URL, json=lead_payload)).json()
    async with session_factory() as session:
        customer = await session.get(Customer, uuid.UUID(body["customer_id"]))
        customer.status = "partial"
        await session.commit()

    response = await client.post(LEAD_URL, json=lead_payload)

    assert response.json()["status"] == "partial"


async def test_converted_customer_is_rejected(client, offer, lead_payload, session_factory):
    body = (await client.post(LEAD_URL, json=lead_payload)).json()
    async with session_factory() as session:
        customer = await session.get(Customer, uuid.UUID(body["customer_id"]))
        customer.status = "customer"
        await session.commit()

    response = await client.post(LEAD_URL, json=dict(lead_payload, first_name="Changed"))

    assert response.status_code == 400
    assert response.json()["error"] == "This customer has already completed a purchase"
    customer = await load_customer(session_factory, body["customer_id"])
    assert customer.first_name == "Jane"


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"campaign_id": 99}, "Campaign with ID 99 not found"),
        ({"product_id": 7}, "Product with ID 7 not found in campaign 1"),
        ({"campaign_id": "abc"}, "campaign_id: must be numeric"),
        ({"product_id": 0}, "product_id: must be a positive number"),
    ],
)
async def test_invalid_campaign_or_offer(client, offer, lead_payload, overrides, message):
    response = await client.post(LEAD_URL, json=dict(lead_payload, **overrides))

    assert response.status_code == 400
    assert response.json()["error"] == message


async def test_invalid_email(client, offer, lead_payload):
    response = await client.post(LEAD_URL, json=dict(lead_payload, email="not-an-email"))

    assert response.status_code == 400
    assert response.json()["error"].startswith("email:")


async def test_inactive_campaign_is_rejected(client, offer, campaign, lead_payload, db_session):
    campaign.status = "inactive"
    db_session.add(campaign)
    await db_session.commit()

    response = await client.post(LEAD_URL, json=lead_payload)

    assert response.status_code == 400
    assert response.json()["error"] == "Campaign 1 is not active"


# ==================== Tenant resolution ====================

async def test_missing_tenant(app, offer, lead_payload):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as anonymous:
        response = await anonymous.post(LEAD_URL, json=lead_payload)

    assert response.status_code == 400
    assert "Tenant not specified" in response.json()["error"]


async def test_unknown_tenant(client, offer, lead_payload):
    response = await client.post(LEAD_URL, json=lead_payload, headers={"X-Tenant-ID": "nobody"})

    assert response.status_code == 400
    assert response.json()["error"] == "Tenant not found"


async def test_tenant_by_subdomain_header(client, offer, lead_payload):
    response = await client.post(LEAD_URL, json=lead_payload, headers={"X-Tenant-ID": "acme"})

    assert response.status_code == 200


async def test_inactive_tenant(client, offer, lead_payload, db_session):
    suspended = Tenant(name="Old Co", subdomain="oldco", status="suspended")
    db_session.add(suspended)
    await db_session.commit()

    response = await client.post(LEAD_URL, json=lead_payload, headers={"X-Tenant-ID": str(suspended.id)})

    assert response.status_code == 403


async def test_campaigns_are_tenant_scoped(client, offer, lead_payload, db_session):
    other = Tenant(name="Other Co", subdomain="other")
    db_session.add(other)
    await db_session.commit()

    response = await client.post(LEAD_URL, json=lead_payload, headers={"X-Tenant-ID": str(other.id)})

    assert response.status_code == 400
    assert response.json()["error"] == "Campaign with ID 1 not found"


# ==================== GET ====================

async def test_get_lead(client, offer, lead_payload):
    created = (await client.post(LEAD_URL, json=lead_payload)).json()

    response = await client.get(LEAD_URL, params={"id": created["customer_id"]})

    assert response.status_code == 200
    body = response.json()
    assert body["email"] == "jane@acme.io"
    assert body["status"] == "lead"
    assert body["campaign_id"] == 1
    assert body["product_id"] == 1


async def test_get_lead_requires_id(client, tenant):
    response = await client.get(LEAD_URL)

    assert response.status_code == 400
    assert response.json()["error"] == "id is required"


async def test_get_unknown_lead(client, tenant):
    response = await client.get(LEAD_URL, params={"id": str(uuid.uuid4())})

    assert response.status_code == 404
    assert response.json()["error"] == "Customer not found"
