"""
Campaign catalog models for checkout.

A Campaign is the tenant's selling unit. It owns offers (campaign products),
coupons, shipping options, tax rules, custom checkout fields and terms of
service. Campaigns and offers carry a small public display_id used in
checkout URLs; every join uses the internal UUID.
"""

import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    String, Boolean, DateTime, Date, Integer, Text, ForeignKey, UniqueConstraint, Index,
)
from sqlalchemy.orm import Mapped, mapped_column, validates

from app.database import Base
from app.db_types import UUIDType, JSONType, MoneyType, RateType


class CampaignStatus(str, Enum):
    """Campaign status enumeration."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    DRAFT = "draft"


class DiscountType(str, Enum):
    """Discount type shared by offers and coupons."""
    NONE = "none"
    FIXED = "fixed"  # flat amount off
    PERCENTAGE = "percentage"  # e.g. 10% off
    FREE = "free"  # whole base price (offers only)


class OfferType(str, Enum):
    STANDARD = "standard"
    UPSELL = "upsell"
    DOWNSELL = "downsell"


class BillingType(str, Enum):
    ONE_TIME = "one_time"
    SUBSCRIPTION = "subscription"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Campaign(Base):
    """Tenant-scoped marketing/selling unit."""
    __tablename__ = "campaigns"
    __table_args__ = (
        UniqueConstraint("tenant_id", "display_id", name="uq_campaigns_tenant_display_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    display_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Public numeric id used in checkout URLs (?c=)"
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CampaignStatus.ACTIVE.value,
        comment="active, inactive, draft"
    )
    must_agree_tos: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    preauth_only: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Authorize only; capture happens later"
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    @property
    def is_active(self) -> bool:
        return self.status == CampaignStatus.ACTIVE.value

    def __repr__(self) -> str:
        return f"<Campaign(display_id={self.display_id}, name='{self.name}')>"


class Product(Base):
    """Catalog item an offer may sell."""
    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    shipping_cost: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def __repr__(self) -> str:
        return f"<Product(sku='{self.sku}', price={self.price})>"


class Offer(Base):
    """
    A purchasable configuration of a product within a campaign.

    display_id is unique within the owning campaign only.
    """
    __tablename__ = "campaign_products"
    __table_args__ = (
        UniqueConstraint("campaign_id", "display_id", name="uq_campaign_products_campaign_display_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("products.id", ondelete="SET NULL"),
        nullable=True,
        comment="Null for pure service offers"
    )
    gateway_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("gateways.id", ondelete="SET NULL"),
        nullable=True,
        comment="Gateway override; falls back to highest-priority tenant gateway"
    )
    display_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Public numeric id used in checkout URLs (?o=)"
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    offer_type: Mapped[str] = mapped_column(String(20), nullable=False, default=OfferType.STANDARD.value)
    billing_type: Mapped[str] = mapped_column(String(20), nullable=False, default=BillingType.ONE_TIME.value)

    # Pricing
    price_override: Mapped[Optional[Decimal]] = mapped_column(
        MoneyType,
        nullable=True,
        comment="Overrides the product price when set"
    )
    ship_price: Mapped[Optional[Decimal]] = mapped_column(
        MoneyType,
        nullable=True,
        comment="Overrides the product shipping cost when set"
    )
    discount_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DiscountType.NONE.value,
        comment="none, fixed, percentage, free"
    )
    discount_value: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)

    # Trial
    trial_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    trial_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    trial_price: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def __repr__(self) -> str:
        return f"<Offer(display_id={self.display_id}, name='{self.name}')>"


class Coupon(Base):
    """Campaign coupon. Codes are stored uppercase and matched case-insensitively."""
    __tablename__ = "campaign_coupons"
    __table_args__ = (
        UniqueConstraint("campaign_id", "code", name="uq_campaign_coupons_campaign_code"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    discount_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DiscountType.PERCENTAGE.value,
        comment="fixed, percentage (free is stored but not applied)"
    )
    discount_value: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    min_order_value: Mapped[Optional[Decimal]] = mapped_column(
        MoneyType,
        nullable=True,
        comment="Gate checked against the base price"
    )
    max_uses: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    uses_per_customer: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    current_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    @validates("code")
    def _normalize_code(self, key, value):
        return value.strip().upper() if value else value

    def __repr__(self) -> str:
        return f"<Coupon(code='{self.code}', uses={self.current_uses}/{self.max_uses})>"


class ShippingOption(Base):
    """Campaign shipping option."""
    __tablename__ = "campaign_shipping_options"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    carrier: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    method: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    base_cost: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    per_item_cost: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    free_threshold: Mapped[Optional[Decimal]] = mapped_column(
        MoneyType,
        nullable=True,
        comment="Subtotal at or above which shipping is free"
    )
    estimated_days_min: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    estimated_days_max: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<ShippingOption(name='{self.name}', base_cost={self.base_cost})>"


class TaxRule(Base):
    """Campaign sales tax rule. A null state_code is the country-wide fallback."""
    __tablename__ = "campaign_sales_tax"
    __table_args__ = (
        Index("ix_campaign_sales_tax_lookup", "campaign_id", "country_code"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False
    )
    country_code: Mapped[str] = mapped_column(String(2), nullable=False)
    state_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    tax_rate: Mapped[Decimal] = mapped_column(RateType, nullable=False, comment="Percentage, e.g. 8.25")
    tax_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<TaxRule({self.country_code}/{self.state_code or '*'} @ {self.tax_rate}%)>"


class CustomField(Base):
    """Extra checkout field collected for a campaign."""
    __tablename__ = "campaign_custom_fields"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    field_name: Mapped[str] = mapped_column(String(100), nullable=False)
    field_label: Mapped[str] = mapped_column(String(200), nullable=False)
    field_type: Mapped[str] = mapped_column(String(20), nullable=False, default="text")
    placeholder: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    options: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class TermsOfService(Base):
    """Versioned campaign terms of service."""
    __tablename__ = "campaign_terms_of_service"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    effective_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CampaignAnalytics(Base):
    """Daily order counters per campaign, maintained by an upsert on order placement."""
    __tablename__ = "campaign_analytics"
    __table_args__ = (
        UniqueConstraint("campaign_id", "metric_date", name="uq_campaign_analytics_campaign_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False
    )
    metric_date: Mapped[date] = mapped_column(Date, nullable=False)
    orders_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    orders_value: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
