"""Pydantic schemas for the checkout funnel endpoints."""
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from app.schemas.base import BaseResponseSchema, BaseCreateSchema


def parse_display_id(value: Any) -> int:
    """Public display ids are positive integers; numeric strings are accepted."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError("is required")
    if isinstance(value, bool):
        raise ValueError("must be numeric")
    try:
        parsed = int(str(value).strip())
    except ValueError:
        raise ValueError("must be numeric")
    if parsed <= 0:
        raise ValueError("must be a positive number")
    return parsed


# ==================== Requests ====================

class LeadRequest(BaseCreateSchema):
    """Lead step: contact details for a campaign offer."""
    campaign_id: int = Field(..., description="Campaign display id")
    product_id: int = Field(..., description="Offer display id within the campaign")
    customer_id: Optional[UUID] = None
    email: EmailStr
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=30)
    session_id: Optional[str] = Field(None, max_length=100)
    utm_source: Optional[str] = Field(None, max_length=255)
    utm_medium: Optional[str] = Field(None, max_length=255)
    utm_campaign: Optional[str] = Field(None, max_length=255)
    utm_content: Optional[str] = Field(None, max_length=255)
    utm_term: Optional[str] = Field(None, max_length=255)
    custom_fields: Optional[Dict[str, Any]] = None

    @field_validator("campaign_id", "product_id", mode="before")
    @classmethod
    def validate_display_id(cls, v):
        return parse_display_id(v)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        # Customers are unique per (tenant, email)
        return str(v).lower()


class AddressInput(BaseModel):
    """Address as submitted. Required fields are checked by the checkout service."""
    address_1: Optional[str] = Field(None, max_length=255)
    address_2: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    postal_code: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, max_length=2)


class AddressRequest(BaseCreateSchema):
    customer_id: Optional[UUID] = None
    shipping_address: Optional[AddressInput] = None
    billing_address: Optional[AddressInput] = None
    bill_same_as_ship: bool = True
    shipping_option_id: Optional[UUID] = None
    coupon_code: Optional[str] = Field(None, max_length=50)


class PaymentRequest(BaseCreateSchema):
    """Tokenized payment method plus card metadata for display."""
    customer_id: UUID
    payment_method_token: str = Field(..., min_length=1, max_length=100)
    card_type: Optional[str] = Field(None, max_length=30)
    card_last_four: Optional[str] = Field(None, min_length=4, max_length=4)
    card_exp_month: Optional[int] = Field(None, ge=1, le=12)
    card_exp_year: Optional[int] = Field(None, ge=2000)


class RetryRequest(PaymentRequest):
    """Retry after a decline: a new payment method only."""
    pass


# ==================== Responses ====================

class LeadResponse(BaseModel):
    success: bool = True
    customer_id: UUID
    status: str
    session_id: str
    existing: bool = False


class CustomerFunnelResponse(BaseModel):
    id: UUID
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    status: str
    campaign_id: Optional[int] = None
    product_id: Optional[int] = None
    decline_count: int = 0
    converted_at: Optional[datetime] = None


class PricingBreakdown(BaseModel):
    """Price figures rounded to the currency's minor unit."""
    base_price: Decimal
    discount_type: Optional[str] = None
    offer_discount: Decimal
    coupon_discount: Decimal
    discount_amount: Decimal
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    tax_rate: Decimal = Decimal("0")
    tax_name: Optional[str] = None
    total: Decimal
    currency: str
    coupon_code: Optional[str] = None
    coupon_applied: bool = False
    coupon_message: Optional[str] = None


class CheckoutTotals(BaseModel):
    """
    Totals snapshot persisted at the address step and charged verbatim at
    payment. Amounts are full precision.
    """
    subtotal: Decimal
    offer_discount: Decimal
    coupon_discount: Decimal
    discount: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal
    currency: str
    shipping_option_id: Optional[UUID] = None
    coupon_code: Optional[str] = None
    coupon_id: Optional[UUID] = None
    priced_at: datetime


class CampaignDescriptor(BaseModel):
    campaign_id: int
    name: str
    description: Optional[str] = None
    currency: str
    must_agree_tos: bool
    preauth_only: bool


class OfferDescriptor(BaseModel):
    product_id: int
    name: str
    description: Optional[str] = None
    offer_type: str
    billing_type: str
    trial_enabled: bool = False
    trial_days: Optional[int] = None
    trial_price: Optional[Decimal] = None


class ProductDescriptor(BaseResponseSchema):
    name: str
    description: Optional[str] = None
    sku: Optional[str] = None
    image_url: Optional[str] = None


class ShippingOptionOut(BaseResponseSchema):
    id: UUID
    name: str
    carrier: Optional[str] = None
    method: Optional[str] = None
    base_cost: Decimal
    free_threshold: Optional[Decimal] = None
    estimated_days_min: Optional[int] = None
    estimated_days_max: Optional[int] = None
    position: int = 0


class TaxRuleOut(BaseResponseSchema):
    country_code: str
    state_code: Optional[str] = None
    tax_rate: Decimal
    tax_name: Optional[str] = None


class CustomFieldOut(BaseResponseSchema):
    field_name: str
    field_label: str
    field_type: str
    placeholder: Optional[str] = None
    is_required: bool = False
    options: Optional[List[Any]] = None
    position: int = 0


class TermsOfServiceOut(BaseResponseSchema):
    version: int
    title: str
    content: str
    effective_date: Optional[date] = None


class ValidateResponse(BaseModel):
    """Public checkout configuration for a campaign offer."""
    campaign: CampaignDescriptor
    offer: OfferDescriptor
    product: Optional[ProductDescriptor] = None
    pricing: PricingBreakdown
    shipping_options: List[ShippingOptionOut] = []
    sales_tax_rules: List[TaxRuleOut] = []
    custom_fields: List[CustomFieldOut] = []
    terms_of_service: Optional[TermsOfServiceOut] = None
    has_coupons: bool = False


class AddressResponse(BaseModel):
    success: bool = True
    customer_id: UUID
    status: str
    pricing: PricingBreakdown
    checkout_totals: CheckoutTotals


class PaymentResponse(BaseModel):
    """Payment/retry outcome. A decline is success=False with status 'declined'."""
    success: bool
    status: str
    customer_id: UUID
    order_id: Optional[UUID] = None
    order_number: Optional[str] = None
    error: Optional[str] = None
    response_code: Optional[str] = None
    decline_count: Optional[int] = None
    retry_success: Optional[bool] = None
