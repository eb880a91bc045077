"""
Catalog Resolver.

Maps public display ids from checkout URLs (campaign ?c=, offer ?o=) to
internal rows. Campaign display ids are unique per tenant; offer display ids
only within their campaign, so the campaign is always resolved first.
Read-only.
"""
import uuid
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    CampaignNotFound, CampaignInactive, OfferNotFound, OfferInactive, CheckoutStateError,
)
from app.models.catalog import (
    Campaign, Offer, Product, Coupon, ShippingOption, TaxRule, CustomField, TermsOfService,
)


@dataclass
class ResolvedOffer:
    campaign: Campaign
    offer: Offer
    product: Optional[Product]


class CatalogResolver:
    """Resolves display ids and loads campaign-scoped checkout configuration."""

    def __init__(self, db: AsyncSession, tenant_id: uuid.UUID):
        self.db = db
        self.tenant_id = tenant_id

    async def resolve(self, campaign_display_id: int, offer_display_id: int) -> ResolvedOffer:
        """
        Resolve (campaign display id, offer display id) for the tenant.

        Raises:
            CampaignNotFound, CampaignInactive, OfferNotFound, OfferInactive
        """
        result = await self.db.execute(
            select(Campaign).where(
                Campaign.tenant_id == self.tenant_id,
                Campaign.display_id == campaign_display_id,
            )
        )
        campaign = result.scalar_one_or_none()
        if not campaign:
            raise CampaignNotFound(campaign_display_id)
        if not campaign.is_active:
            raise CampaignInactive(campaign_display_id)

        result = await self.db.execute(
            select(Offer).where(
                Offer.campaign_id == campaign.id,
                Offer.display_id == offer_display_id,
            )
        )
        offer = result.scalar_one_or_none()
        if not offer:
            raise OfferNotFound(offer_display_id, campaign_display_id)
        if not offer.is_active:
            raise OfferInactive(offer_display_id, campaign_display_id)

        return ResolvedOffer(campaign=campaign, offer=offer, product=await self._get_product(offer))

    async def resolve_internal(self, campaign_id: uuid.UUID, offer_id: uuid.UUID) -> ResolvedOffer:
        """
        Re-load a customer's source campaign/offer by internal id and re-check
        that both are still active.
        """
        campaign = await self.db.get(Campaign, campaign_id) if campaign_id else None
        offer = await self.db.get(Offer, offer_id) if offer_id else None
        if (
            not campaign
            or campaign.tenant_id != self.tenant_id
            or not offer
            or offer.campaign_id != campaign.id
        ):
            raise CheckoutStateError("Checkout offer not found for this customer. Please start checkout again.")
        if not campaign.is_active:
            raise CampaignInactive(campaign.display_id)
        if not offer.is_active:
            raise OfferInactive(offer.display_id, campaign.display_id)

        return ResolvedOffer(campaign=campaign, offer=offer, product=await self._get_product(offer))

    async def _get_product(self, offer: Offer) -> Optional[Product]:
        if offer.product_id is None:
            return None
        return await self.db.get(Product, offer.product_id)

    # ==================== Campaign configuration ====================

    async def get_coupon(self, campaign_id: uuid.UUID, code: str) -> Optional[Coupon]:
        """Active coupon by code (case-insensitive; codes are stored uppercase)."""
        result = await self.db.execute(
            select(Coupon).where(
                Coupon.campaign_id == campaign_id,
                Coupon.code == code.strip().upper(),
                Coupon.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def has_coupons(self, campaign_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(Coupon.id).where(
                Coupon.campaign_id == campaign_id,
                Coupon.is_active.is_(True),
            ).limit(1)
        )
        return result.first() is not None

    async def get_shipping_option(self, campaign_id: uuid.UUID, option_id: uuid.UUID) -> Optional[ShippingOption]:
        result = await self.db.execute(
            select(ShippingOption).where(
                ShippingOption.id == option_id,
                ShippingOption.campaign_id == campaign_id,
                ShippingOption.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def list_shipping_options(self, campaign_id: uuid.UUID) -> List[ShippingOption]:
        result = await self.db.execute(
            select(ShippingOption)
            .where(ShippingOption.campaign_id == campaign_id, ShippingOption.is_active.is_(True))
            .order_by(ShippingOption.position, ShippingOption.name)
        )
        return list(result.scalars().all())

    async def list_tax_rules(self, campaign_id: uuid.UUID, country_code: Optional[str] = None) -> List[TaxRule]:
        query = select(TaxRule).where(TaxRule.campaign_id == campaign_id, TaxRule.is_active.is_(True))
        if country_code:
            query = query.where(TaxRule.country_code == country_code.strip().upper())
        result = await self.db.execute(query.order_by(TaxRule.country_code, TaxRule.state_code))
        return list(result.scalars().all())

    async def list_custom_fields(self, campaign_id: uuid.UUID) -> List[CustomField]:
        result = await self.db.execute(
            select(CustomField)
            .where(CustomField.campaign_id == campaign_id, CustomField.is_active.is_(True))
            .order_by(CustomField.position)
        )
        return list(result.scalars().all())

    async def get_terms_of_service(self, campaign_id: uuid.UUID) -> Optional[TermsOfService]:
        """Latest active terms version."""
        result = await self.db.execute(
            select(TermsOfService)
            .where(TermsOfService.campaign_id == campaign_id, TermsOfService.is_active.is_(True))
            .order_by(TermsOfService.version.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()
