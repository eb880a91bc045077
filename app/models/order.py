"""
Order, order item and payment transaction models.

Orders are materialized by the payment step once the gateway approves a
charge. Every gateway attempt (approved or declined) leaves a Transaction.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, Integer, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType, JSONType, MoneyType


class OrderStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    AUTHORIZED = "authorized"
    PAID = "paid"
    REFUNDED = "refunded"
    VOIDED = "voided"


class FulfillmentStatus(str, Enum):
    UNFULFILLED = "unfulfilled"
    FULFILLED = "fulfilled"


class TransactionType(str, Enum):
    AUTHORIZE = "authorize"
    SALE = "sale"
    CAPTURE = "capture"
    REFUND = "refund"
    VOID = "void"


class TransactionStatus(str, Enum):
    SUCCESS = "success"
    DECLINED = "declined"
    ERROR = "error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(Base):
    """Order placed through the checkout funnel."""
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("tenant_id", "display_id", name="uq_orders_tenant_display_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    display_id: Mapped[int] = mapped_column(Integer, nullable=False)
    order_number: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        index=True,
        comment="Human-readable order number: ORD-00001001"
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("customers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    campaign_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType, ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True
    )
    gateway_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType, ForeignKey("gateways.id", ondelete="SET NULL"), nullable=True
    )

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=OrderStatus.PROCESSING.value)
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default=PaymentStatus.PAID.value)
    fulfillment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=FulfillmentStatus.UNFULFILLED.value
    )

    # Amounts
    subtotal: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    shipping_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    coupon_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    shipping_option_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    shipping_address: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    billing_address: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    order_metadata: Mapped[dict] = mapped_column("metadata", JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:
        return f"<Order(order_number='{self.order_number}', total={self.total})>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    offer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType, ForeignKey("campaign_products.id", ondelete="SET NULL"), nullable=True
    )
    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType, ForeignKey("products.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    total: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)


class Transaction(Base):
    """A single gateway attempt."""
    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True
    )
    gateway_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType, ForeignKey("gateways.id", ondelete="SET NULL"), nullable=True
    )
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    gateway_transaction_token: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    response_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    response_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    avs_result: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    cvv_result: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    error_detail: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def __repr__(self) -> str:
        return f"<Transaction(type='{self.transaction_type}', status='{self.status}', amount={self.amount})>"
