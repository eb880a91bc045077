"""
Checkout Orchestrator.

Sequences Catalog Resolver -> Funnel State Machine -> Pricing Engine for
the lead and address steps, and serves the public checkout configuration.
The payment and retry steps live in app.services.payment_service.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    CatalogNotFoundError,
    CheckoutStateError,
    CheckoutValidationError,
    CustomerNotFoundError,
)
from app.database import insert_for
from app.models.catalog import Campaign, Offer
from app.models.customer import Customer, CustomerStatus
from app.schemas.checkout import (
    AddressInput,
    AddressRequest,
    AddressResponse,
    CampaignDescriptor,
    CheckoutTotals,
    CustomerFunnelResponse,
    CustomFieldOut,
    LeadRequest,
    LeadResponse,
    OfferDescriptor,
    PricingBreakdown,
    ProductDescriptor,
    ShippingOptionOut,
    TaxRuleOut,
    TermsOfServiceOut,
    ValidateResponse,
)
from app.services.cache_service import get_cache
from app.services.catalog_resolver import CatalogResolver
from app.services.funnel_state_machine import FunnelStateMachine, ensure_not_converted
from app.services.pricing_engine import (
    CouponTerms,
    Destination,
    OfferTerms,
    PriceBreakdown,
    ShippingTerms,
    TaxRuleTerms,
    calculate_price,
)

logger = logging.getLogger(__name__)

REQUIRED_ADDRESS_FIELDS = ("address_1", "city", "state", "postal_code", "country")


def build_totals_snapshot(breakdown: PriceBreakdown) -> CheckoutTotals:
    """Full-precision totals persisted for the payment step."""
    return CheckoutTotals(
        subtotal=breakdown.subtotal,
        offer_discount=breakdown.offer_discount,
        coupon_discount=breakdown.coupon_discount,
        discount=breakdown.discount,
        shipping=breakdown.shipping,
        tax=breakdown.tax,
        total=breakdown.total,
        currency=breakdown.currency,
        shipping_option_id=breakdown.shipping_option_id,
        coupon_code=breakdown.coupon_code if breakdown.coupon_applied else None,
        coupon_id=breakdown.coupon_id,
        priced_at=datetime.now(timezone.utc),
    )


def validate_address(address: Optional[AddressInput], label: str) -> dict:
    """
    Check required address fields.

    Raises:
        CheckoutValidationError: "<Label> <field> is required" for the first missing field
    """
    if address is None:
        raise CheckoutValidationError(f"{label} address is required")

    values = address.model_dump()
    for field in REQUIRED_ADDRESS_FIELDS:
        value = values.get(field)
        if value is None or not str(value).strip():
            raise CheckoutValidationError(
                f"{label} {field.replace('_', ' ')} is required",
                {"field": f"{label.lower()}_address.{field}"},
            )

    cleaned = {key: (value.strip() if isinstance(value, str) else value) for key, value in values.items()}
    country = cleaned["country"].upper()
    if len(country) != 2 or not country.isalpha():
        raise CheckoutValidationError(
            f"{label} country must be a 2-letter country code",
            {"field": f"{label.lower()}_address.country"},
        )
    cleaned["country"] = country
    cleaned["address_2"] = cleaned.get("address_2") or None
    return cleaned


class CheckoutService:
    """Lead capture, checkout configuration and address/pricing steps for one tenant."""

    def __init__(self, db: AsyncSession, tenant_id: uuid.UUID):
        self.db = db
        self.tenant_id = tenant_id
        self.catalog = CatalogResolver(db, tenant_id)
        self.funnel = FunnelStateMachine(db)

    # ==================== Customers ====================

    async def get_customer(self, customer_id: uuid.UUID) -> Optional[Customer]:
        result = await self.db.execute(
            select(Customer).where(
                Customer.id == customer_id,
                Customer.tenant_id == self.tenant_id,
            )
        )
        return result.scalar_one_or_none()

    async def require_customer(self, customer_id: uuid.UUID) -> Customer:
        customer = await self.get_customer(customer_id)
        if not customer:
            raise CustomerNotFoundError(customer_id)
        return customer

    async def get_customer_by_email(self, email: str) -> Optional[Customer]:
        result = await self.db.execute(
            select(Customer).where(
                Customer.tenant_id == self.tenant_id,
                Customer.email == email,
            )
        )
        return result.scalar_one_or_none()

    async def upsert_customer_by_email(self, email: str) -> Tuple[Customer, bool]:
        """
        Create the customer for this email unless it already exists.

        Single INSERT ... ON CONFLICT DO NOTHING on (tenant_id, email), so
        concurrent first-time checkouts with the same email converge on one row.

        Returns:
            (customer, created)
        """
        insert = insert_for(self.db)
        stmt = (
            insert(Customer.__table__)
            .values(
                id=uuid.uuid4(),
                tenant_id=self.tenant_id,
                email=email,
                status=CustomerStatus.PROSPECT.value,
            )
            .on_conflict_do_nothing(index_elements=["tenant_id", "email"])
        )
        result = await self.db.execute(stmt)
        created = result.rowcount == 1

        customer = await self.get_customer_by_email(email)
        if created:
            await self.funnel.record_created(customer)
        return customer, created

    # ==================== Lead Step ====================

    async def capture_lead(
        self,
        data: LeadRequest,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        referrer: Optional[str] = None,
    ) -> LeadResponse:
        """
        Resolve or create the customer and move prospect -> lead.

        A supplied customer_id takes precedence over email lookup; an unknown
        id falls through to the email upsert.
        """
        try:
            resolved = await self.catalog.resolve(data.campaign_id, data.product_id)
        except CatalogNotFoundError as e:
            raise CheckoutValidationError(e.message, e.details) from e

        email = str(data.email)
        customer = await self.get_customer(data.customer_id) if data.customer_id else None
        if customer is not None:
            existing = True
            ensure_not_converted(customer)
            if customer.email != email:
                other = await self.get_customer_by_email(email)
                if other and other.id != customer.id:
                    raise CheckoutStateError("This email is already registered to another customer")
                customer.email = email
        else:
            customer, created = await self.upsert_customer_by_email(email)
            existing = not created
            ensure_not_converted(customer)

        # Identity: new non-empty values replace old ones
        if data.first_name:
            customer.first_name = data.first_name
        if data.last_name:
            customer.last_name = data.last_name
        if data.phone:
            customer.phone = data.phone
        if data.custom_fields:
            customer.custom_fields = {**(customer.custom_fields or {}), **data.custom_fields}

        await self.funnel.apply_attribution(customer, {
            "source_campaign_id": resolved.campaign.id,
            "source_offer_id": resolved.offer.id,
            "utm_source": data.utm_source,
            "utm_medium": data.utm_medium,
            "utm_campaign": data.utm_campaign,
            "utm_content": data.utm_content,
            "utm_term": data.utm_term,
            "session_id": data.session_id or str(uuid.uuid4()),
            "ip_address": ip_address,
            "user_agent": user_agent,
            "referrer": referrer,
        })
        await self.funnel.advance(customer, CustomerStatus.LEAD)

        logger.info(
            f"Lead captured for campaign {data.campaign_id}/{data.product_id}: "
            f"customer={customer.id} status={customer.status} existing={existing}"
        )
        return LeadResponse(
            customer_id=customer.id,
            status=customer.status,
            session_id=customer.session_id,
            existing=existing,
        )

    async def get_funnel_view(self, customer_id: uuid.UUID) -> CustomerFunnelResponse:
        customer = await self.require_customer(customer_id)

        campaign_display_id = offer_display_id = None
        if customer.source_campaign_id:
            campaign_display_id = (await self.db.execute(
                select(Campaign.display_id).where(Campaign.id == customer.source_campaign_id)
            )).scalar_one_or_none()
        if customer.source_offer_id:
            offer_display_id = (await self.db.execute(
                select(Offer.display_id).where(Offer.id == customer.source_offer_id)
            )).scalar_one_or_none()

        return CustomerFunnelResponse(
            id=customer.id,
            email=customer.email,
            first_name=customer.first_name,
            last_name=customer.last_name,
            phone=customer.phone,
            status=customer.status,
            campaign_id=campaign_display_id,
            product_id=offer_display_id,
            decline_count=customer.decline_count,
            converted_at=customer.converted_at,
        )

    # ==================== Checkout Configuration ====================

    async def get_checkout_config(self, campaign_display_id: int, offer_display_id: int) -> ValidateResponse:
        """Public configuration for a campaign offer with baseline pricing (no address, tax 0)."""
        cache = get_cache() if settings.CACHE_ENABLED else None
        tenant_key = str(self.tenant_id)
        if cache:
            cached = await cache.get_checkout_config(tenant_key, campaign_display_id, offer_display_id)
            if cached:
                return ValidateResponse.model_validate(cached)

        resolved = await self.catalog.resolve(campaign_display_id, offer_display_id)
        campaign, offer, product = resolved.campaign, resolved.offer, resolved.product

        currency = campaign.currency or settings.DEFAULT_CURRENCY
        breakdown = calculate_price(OfferTerms.from_models(offer, product), currency)
        terms = await self.catalog.get_terms_of_service(campaign.id) if campaign.must_agree_tos else None

        response = ValidateResponse(
            campaign=CampaignDescriptor(
                campaign_id=campaign.display_id,
                name=campaign.name,
                description=campaign.description,
                currency=currency,
                must_agree_tos=campaign.must_agree_tos,
                preauth_only=campaign.preauth_only,
            ),
            offer=OfferDescriptor(
                product_id=offer.display_id,
                name=offer.name,
                description=offer.description,
                offer_type=offer.offer_type,
                billing_type=offer.billing_type,
                trial_enabled=offer.trial_enabled,
                trial_days=offer.trial_days,
                trial_price=offer.trial_price,
            ),
            product=ProductDescriptor.model_validate(product) if product else None,
            pricing=PricingBreakdown(**breakdown.to_display()),
            shipping_options=[
                ShippingOptionOut.model_validate(o) for o in await self.catalog.list_shipping_options(campaign.id)
            ],
            sales_tax_rules=[TaxRuleOut.model_validate(r) for r in await self.catalog.list_tax_rules(campaign.id)],
            custom_fields=[CustomFieldOut.model_validate(f) for f in await self.catalog.list_custom_fields(campaign.id)],
            terms_of_service=TermsOfServiceOut.model_validate(terms) if terms else None,
            has_coupons=await self.catalog.has_coupons(campaign.id),
        )

        if cache:
            await cache.set_checkout_config(
                tenant_key, campaign_display_id, offer_display_id, response.model_dump(mode="json")
            )
        return response

    # ==================== Address Step ====================

    async def submit_address(self, data: AddressRequest) -> AddressResponse:
        """
        Validate addresses, price the order, persist addresses and the totals
        snapshot, and move lead -> partial.
        """
        if not data.customer_id:
            raise CheckoutValidationError("customer_id is required")

        customer = await self.require_customer(data.customer_id)
        ensure_not_converted(customer)

        shipping = validate_address(data.shipping_address, "Shipping")
        billing = None
        if not data.bill_same_as_ship:
            billing = validate_address(data.billing_address, "Billing")

        try:
            resolved = await self.catalog.resolve_internal(customer.source_campaign_id, customer.source_offer_id)
        except CatalogNotFoundError as e:
            raise CheckoutValidationError(e.message, e.details) from e
        campaign = resolved.campaign

        coupon = None
        if data.coupon_code:
            coupon = await self.catalog.get_coupon(campaign.id, data.coupon_code)

        shipping_option = None
        if data.shipping_option_id:
            shipping_option = await self.catalog.get_shipping_option(campaign.id, data.shipping_option_id)
            if shipping_option is None:
                raise CheckoutValidationError(
                    "Shipping option not found",
                    {"shipping_option_id": str(data.shipping_option_id)},
                )

        tax_rules = await self.catalog.list_tax_rules(campaign.id, shipping["country"])

        breakdown = calculate_price(
            OfferTerms.from_models(resolved.offer, resolved.product),
            campaign.currency or settings.DEFAULT_CURRENCY,
            coupon=CouponTerms.from_model(coupon) if coupon else None,
            coupon_code=data.coupon_code,
            shipping_option=ShippingTerms.from_model(shipping_option) if shipping_option else None,
            tax_rules=[TaxRuleTerms.from_model(rule) for rule in tax_rules],
            destination=Destination(country=shipping["country"], state=shipping["state"]),
        )
        totals = build_totals_snapshot(breakdown)

        for field, value in shipping.items():
            setattr(customer, f"ship_{field}", value)
        customer.bill_same_as_ship = data.bill_same_as_ship
        for field in AddressInput.model_fields:
            setattr(customer, f"bill_{field}", billing[field] if billing else None)
        customer.checkout_totals = totals.model_dump(mode="json")

        await self.funnel.advance(customer, CustomerStatus.PARTIAL)

        logger.info(
            f"Address captured for customer {customer.id}: total={breakdown.total} {breakdown.currency} "
            f"coupon={breakdown.coupon_code or '-'} applied={breakdown.coupon_applied}"
        )
        return AddressResponse(
            customer_id=customer.id,
            status=customer.status,
            pricing=PricingBreakdown(**breakdown.to_display()),
            checkout_totals=totals,
        )
