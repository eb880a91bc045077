"""GET /api/v1/checkout/validate"""

from decimal import Decimal

import pytest

from app.models.catalog import Coupon, CustomField, ShippingOption, TaxRule, TermsOfService
from app.services.cache_service import CacheService, InMemoryCache

VALIDATE_URL = "/api/v1/checkout/validate"


async def test_validate_returns_configuration_and_baseline_pricing(client, offer, campaign, db_session):
    db_session.add_all([
        ShippingOption(campaign_id=campaign.id, name="Express", base_cost=Decimal("12.00"), position=2),
        ShippingOption(campaign_id=campaign.id, name="Standard", base_cost=Decimal("5.00"),
                       free_threshold=Decimal("40.00"), position=1),
        ShippingOption(campaign_id=campaign.id, name="Retired", base_cost=Decimal("1.00"), is_active=False),
        TaxRule(campaign_id=campaign.id, country_code="US", state_code="CA", tax_rate=Decimal("8")),
        CustomField(campaign_id=campaign.id, field_name="goal", field_label="Your goal"),
        Coupon(campaign_id=campaign.id, code="save10", discount_type="fixed", discount_value=Decimal("10")),
    ])
    await db_session.commit()

    response = await client.get(VALIDATE_URL, params={"c": "1", "o": "1"})

    assert response.status_code == 200
    body = response.json()
    assert body["campaign"]["campaign_id"] == 1
    assert body["campaign"]["name"] == "Spring Launch"
    assert body["offer"]["product_id"] == 1
    assert body["product"]["sku"] == "DG-30"

    pricing = body["pricing"]
    assert Decimal(pricing["base_price"]) == Decimal("50.00")
    assert Decimal(pricing["offer_discount"]) == Decimal("5.00")
    assert Decimal(pricing["subtotal"]) == Decimal("45.00")
    assert Decimal(pricing["shipping"]) == Decimal("4.95")
    assert Decimal(pricing["tax"]) == Decimal("0")
    assert Decimal(pricing["total"]) == Decimal("49.95")
    assert pricing["currency"] == "USD"

    assert [o["name"] for o in body["shipping_options"]] == ["Standard", "Express"]
    assert body["sales_tax_rules"][0]["state_code"] == "CA"
    assert body["custom_fields"][0]["field_name"] == "goal"
    assert body["has_coupons"] is True
    assert body["terms_of_service"] is None


async def test_terms_included_when_campaign_requires_agreement(client, offer, campaign, db_session):
    campaign.must_agree_tos = True
    db_session.add_all([
        campaign,
        TermsOfService(campaign_id=campaign.id, version=1, title="Terms v1", content="Old"),
        TermsOfService(campaign_id=campaign.id, version=2, title="Terms v2", content="New"),
    ])
    await db_session.commit()

    body = (await client.get(VALIDATE_URL, params={"c": 1, "o": 1})).json()

    assert body["campaign"]["must_agree_tos"] is True
    assert body["terms_of_service"]["version"] == 2


@pytest.mark.parametrize(
    "params, message",
    [
        ({"o": "1"}, "c is required"),
        ({"c": "1"}, "o is required"),
        ({"c": "abc", "o": "1"}, "c must be numeric"),
        ({"c": "1", "o": "-3"}, "o must be a positive number"),
    ],
)
async def test_bad_query_parameters(client, offer, params, message):
    response = await client.get(VALIDATE_URL, params=params)

    assert response.status_code == 400
    assert response.json()["error"] == message


async def test_unknown_campaign_is_404(client, offer):
    response = await client.get(VALIDATE_URL, params={"c": "9", "o": "1"})

    assert response.status_code == 404
    assert response.json()["error"] == "Campaign with ID 9 not found"


async def test_unknown_offer_is_404(client, offer):
    response = await client.get(VALIDATE_URL, params={"c": "1", "o": "5"})

    assert response.status_code == 404
    assert response.json()["error"] == "Product with ID 5 not found in campaign 1"


async def test_inactive_offer_is_404(client, offer, db_session):
    offer.is_active = False
    db_session.add(offer)
    await db_session.commit()

    response = await client.get(VALIDATE_URL, params={"c": "1", "o": "1"})

    assert response.status_code == 404


async def test_price_override_wins_over_product_price(client, offer, db_session):
    offer.price_override = Decimal("30.00")
    offer.discount_type = "none"
    offer.ship_price = Decimal("0")
    db_session.add(offer)
    await db_session.commit()

    pricing = (await client.get(VALIDATE_URL, params={"c": "1", "o": "1"})).json()["pricing"]

    assert Decimal(pricing["subtotal"]) == Decimal("30.00")
    assert Decimal(pricing["shipping"]) == Decimal("0")
    assert Decimal(pricing["total"]) == Decimal("30.00")


async def test_validate_payload_is_cached_per_tenant(client, offer, campaign, db_session, monkeypatch):
    from app.config import settings
    from app.services import checkout_service

    cache = CacheService(InMemoryCache())
    monkeypatch.setattr(settings, "CACHE_ENABLED", True)
    monkeypatch.setattr(checkout_service, "get_cache", lambda: cache)

    first = (await client.get(VALIDATE_URL, params={"c": "1", "o": "1"})).json()

    campaign.name = "Renamed"
    db_session.add(campaign)
    await db_session.commit()
    cached = (await client.get(VALIDATE_URL, params={"c": "1", "o": "1"})).json()

    assert cached["campaign"]["name"] == first["campaign"]["name"] == "Spring Launch"

    await cache.invalidate_campaign(str(campaign.tenant_id), 1)
    fresh = (await client.get(VALIDATE_URL, params={"c": "1", "o": "1"})).json()

    assert fresh["campaign"]["name"] == "Renamed"
