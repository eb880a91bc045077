"""
Customer funnel models.

The Customer row is the funnel entity: it is created on first contact at the
lead step and mutated at each checkout step. Status changes go through
app.services.funnel_state_machine; rows are never deleted during the funnel.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Integer, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType, JSONType, MoneyType


class CustomerStatus(str, Enum):
    """Funnel status enumeration."""
    PROSPECT = "prospect"
    LEAD = "lead"
    PARTIAL = "partial"
    CUSTOMER = "customer"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class AddressType(str, Enum):
    SHIPPING = "shipping"
    BILLING = "billing"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Customer(Base):
    """Checkout funnel customer, unique by email within a tenant."""
    __tablename__ = "customers"
    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_customers_tenant_email"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Identity
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CustomerStatus.PROSPECT.value,
        index=True,
        comment="prospect, lead, partial, customer, declined, cancelled, refunded"
    )

    # First-touch attribution (write-once)
    source_campaign_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType, ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True
    )
    source_offer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType, ForeignKey("campaign_products.id", ondelete="SET NULL"), nullable=True
    )
    utm_source: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    utm_medium: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    utm_campaign: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    utm_content: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    utm_term: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    referrer: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Shipping address
    ship_address_1: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    ship_address_2: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    ship_city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    ship_state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    ship_postal_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    ship_country: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)

    # Billing address
    bill_same_as_ship: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    bill_address_1: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    bill_address_2: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    bill_city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    bill_state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    bill_postal_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    bill_country: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)

    # Priced totals from the address step, charged verbatim at payment
    checkout_totals: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    # Declines
    decline_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_decline_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_decline_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Conversion
    converted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    first_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    lifetime_value: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    total_orders: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    custom_fields: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    customer_metadata: Mapped[dict] = mapped_column("metadata", JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    def shipping_address(self) -> dict:
        return {
            "address_1": self.ship_address_1,
            "address_2": self.ship_address_2,
            "city": self.ship_city,
            "state": self.ship_state,
            "postal_code": self.ship_postal_code,
            "country": self.ship_country,
        }

    def billing_address(self) -> dict:
        if self.bill_same_as_ship:
            return self.shipping_address()
        return {
            "address_1": self.bill_address_1,
            "address_2": self.bill_address_2,
            "city": self.bill_city,
            "state": self.bill_state,
            "postal_code": self.bill_postal_code,
            "country": self.bill_country,
        }

    def __repr__(self) -> str:
        return f"<Customer(email='{self.email}', status='{self.status}')>"


class CustomerStatusHistory(Base):
    """Audit trail of funnel status changes."""
    __tablename__ = "customer_status_history"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    from_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class CustomerAddress(Base):
    """Address saved on order placement."""
    __tablename__ = "customer_addresses"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    address_type: Mapped[str] = mapped_column(String(20), nullable=False, comment="shipping, billing")
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    address_1: Mapped[str] = mapped_column(String(255), nullable=False)
    address_2: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    postal_code: Mapped[str] = mapped_column(String(20), nullable=False)
    country: Mapped[str] = mapped_column(String(2), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class CustomerPaymentMethod(Base):
    """Retained gateway payment method. Only the token and display metadata are stored."""
    __tablename__ = "customer_payment_methods"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    payment_method_token: Mapped[str] = mapped_column(String(100), nullable=False)
    card_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    last_four: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    exp_month: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    exp_year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
