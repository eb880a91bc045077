"""
Pricing Engine for Checkout.

Computes the itemized price of a campaign offer, in this fixed order
(each stage consumes the previous stage's output):
1. Base price (offer price override, else product price, else 0)
2. Offer discount (fixed, percentage or free)
3. Coupon discount (usage, minimum-order and validity gates against base price)
4. Subtotal, floored at zero
5. Shipping (offer/product default, or the selected option; free over threshold)
6. Tax on subtotal for the destination (state rule beats country-wide rule)
7. Total

This module does no database access. Callers load rows and convert them to
the frozen *Terms objects below; the engine only sees those typed values.
Amounts keep full Decimal precision. Rounding to the currency's minor unit
happens in PriceBreakdown.to_display() and to_minor_units() only.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Tuple
import uuid

from app.models.catalog import DiscountType


ZERO = Decimal("0")
HUNDRED = Decimal("100")

# ISO 4217 minor units for currencies that don't use two decimals
CURRENCY_EXPONENTS = {
    "JPY": 0, "KRW": 0, "VND": 0, "CLP": 0, "ISK": 0, "UGX": 0,
    "BHD": 3, "KWD": 3, "OMR": 3, "JOD": 3, "TND": 3,
}


def to_decimal(value) -> Decimal:
    """Convert a DB/JSON value to Decimal without going through float."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def currency_exponent(currency: str) -> int:
    return CURRENCY_EXPONENTS.get((currency or "").upper(), 2)


def round_money(amount: Decimal, currency: str) -> Decimal:
    """Round to the currency's minor unit, half-up."""
    quantum = Decimal(1).scaleb(-currency_exponent(currency))
    return to_decimal(amount).quantize(quantum, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Amount in the smallest currency unit (cents for USD), as gateways expect."""
    return int(round_money(amount, currency).scaleb(currency_exponent(currency)))


# =============================================================================
# TYPED INPUTS
# =============================================================================

@dataclass(frozen=True)
class OfferTerms:
    """Offer + product pricing terms."""
    base_price: Decimal
    discount_type: str = DiscountType.NONE.value
    discount_value: Decimal = ZERO
    default_shipping: Decimal = ZERO

    @classmethod
    def from_models(cls, offer, product=None) -> "OfferTerms":
        if offer.price_override is not None:
            base_price = to_decimal(offer.price_override)
        elif product is not None:
            base_price = to_decimal(product.price)
        else:
            base_price = ZERO

        if offer.ship_price is not None:
            default_shipping = to_decimal(offer.ship_price)
        elif product is not None and product.shipping_cost is not None:
            default_shipping = to_decimal(product.shipping_cost)
        else:
            default_shipping = ZERO

        return cls(
            base_price=base_price,
            discount_type=offer.discount_type or DiscountType.NONE.value,
            discount_value=to_decimal(offer.discount_value),
            default_shipping=default_shipping,
        )


@dataclass(frozen=True)
class CouponTerms:
    code: str
    discount_type: str
    discount_value: Decimal
    id: Optional[uuid.UUID] = None
    min_order_value: Optional[Decimal] = None
    max_uses: Optional[int] = None
    current_uses: int = 0
    is_active: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @classmethod
    def from_model(cls, coupon) -> "CouponTerms":
        return cls(
            id=coupon.id,
            code=coupon.code,
            discount_type=coupon.discount_type,
            discount_value=to_decimal(coupon.discount_value),
            min_order_value=(
                to_decimal(coupon.min_order_value) if coupon.min_order_value is not None else None
            ),
            max_uses=coupon.max_uses,
            current_uses=coupon.current_uses or 0,
            is_active=coupon.is_active,
            start_date=coupon.start_date,
            end_date=coupon.end_date,
        )


@dataclass(frozen=True)
class ShippingTerms:
    base_cost: Decimal
    free_threshold: Optional[Decimal] = None
    id: Optional[uuid.UUID] = None

    @classmethod
    def from_model(cls, option) -> "ShippingTerms":
        return cls(
            id=option.id,
            base_cost=to_decimal(option.base_cost),
            free_threshold=(
                to_decimal(option.free_threshold) if option.free_threshold is not None else None
            ),
        )


@dataclass(frozen=True)
class TaxRuleTerms:
    country_code: str
    tax_rate: Decimal
    state_code: Optional[str] = None
    tax_name: Optional[str] = None

    @classmethod
    def from_model(cls, rule) -> "TaxRuleTerms":
        return cls(
            country_code=rule.country_code,
            state_code=rule.state_code,
            tax_rate=to_decimal(rule.tax_rate),
            tax_name=rule.tax_name,
        )


@dataclass(frozen=True)
class Destination:
    """Tax jurisdiction taken from the shipping address."""
    country: str
    state: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "country", (self.country or "").strip().upper())
        state = (self.state or "").strip().upper()
        object.__setattr__(self, "state", state or None)


# =============================================================================
# OUTPUT
# =============================================================================

@dataclass(frozen=True)
class PriceBreakdown:
    """Every intermediate figure of a price computation, at full precision."""
    currency: str
    base_price: Decimal
    discount_type: str
    offer_discount: Decimal
    coupon_discount: Decimal
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal
    tax_rate: Decimal = ZERO
    tax_name: Optional[str] = None
    coupon_code: Optional[str] = None
    coupon_id: Optional[uuid.UUID] = None
    coupon_applied: bool = False
    coupon_message: Optional[str] = None
    shipping_option_id: Optional[uuid.UUID] = None

    @property
    def discount(self) -> Decimal:
        return self.offer_discount + self.coupon_discount

    def to_display(self) -> dict:
        """Figures rounded to the currency's minor unit for rendering."""
        def r(value: Decimal) -> Decimal:
            return round_money(value, self.currency)

        return {
            "base_price": r(self.base_price),
            "discount_type": self.discount_type,
            "offer_discount": r(self.offer_discount),
            "coupon_discount": r(self.coupon_discount),
            "discount_amount": r(self.discount),
            "subtotal": r(self.subtotal),
            "shipping": r(self.shipping),
            "tax": r(self.tax),
            "tax_rate": self.tax_rate,
            "tax_name": self.tax_name,
            "total": r(self.total),
            "currency": self.currency,
            "coupon_code": self.coupon_code,
            "coupon_applied": self.coupon_applied,
            "coupon_message": self.coupon_message,
        }


# =============================================================================
# STAGES
# =============================================================================

def discount_amount(base: Decimal, discount_type: Optional[str], value: Decimal) -> Decimal:
    """Offer-style discount on base; never more than base, never negative."""
    if discount_type == DiscountType.FIXED.value:
        amount = value
    elif discount_type == DiscountType.PERCENTAGE.value:
        amount = base * value / HUNDRED
    elif discount_type == DiscountType.FREE.value:
        amount = base
    else:
        amount = ZERO
    return min(max(amount, ZERO), max(base, ZERO))


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def evaluate_coupon(
    coupon: CouponTerms,
    base_price: Decimal,
    now: Optional[datetime] = None,
) -> Tuple[bool, Optional[str]]:
    """
    Check whether a coupon may be applied to an order with this base price.

    Returns:
        (eligible, reason) - reason is None when eligible
    """
    now = now or datetime.now(timezone.utc)

    if not coupon.is_active:
        return False, "Coupon is not active"
    start, end = _as_utc(coupon.start_date), _as_utc(coupon.end_date)
    if start and now < start:
        return False, "Coupon is not yet valid"
    if end and now > end:
        return False, "Coupon has expired"
    if coupon.max_uses is not None and coupon.current_uses >= coupon.max_uses:
        return False, "Coupon usage limit reached"
    if coupon.min_order_value is not None and base_price < coupon.min_order_value:
        return False, f"Minimum order value of {coupon.min_order_value} not met"
    if coupon.discount_type not in (DiscountType.FIXED.value, DiscountType.PERCENTAGE.value):
        # Only offers support FREE
        return False, "Coupon type is not supported"
    return True, None


def shipping_cost(default_shipping: Decimal, option: Optional[ShippingTerms], subtotal: Decimal) -> Decimal:
    if option is None:
        return default_shipping
    if option.free_threshold and subtotal >= option.free_threshold:
        return ZERO
    return option.base_cost


def select_tax_rule(rules: Iterable[TaxRuleTerms], destination: Optional[Destination]) -> Optional[TaxRuleTerms]:
    """State-specific rule for the destination, else the country-wide rule, else None."""
    if destination is None or not destination.country:
        return None

    country_rule = None
    for rule in rules:
        if (rule.country_code or "").upper() != destination.country:
            continue
        state_code = (rule.state_code or "").strip().upper()
        if not state_code:
            country_rule = country_rule or rule
        elif destination.state and state_code == destination.state:
            return rule
    return country_rule


def calculate_price(
    offer: OfferTerms,
    currency: str,
    coupon: Optional[CouponTerms] = None,
    coupon_code: Optional[str] = None,
    shipping_option: Optional[ShippingTerms] = None,
    tax_rules: Iterable[TaxRuleTerms] = (),
    destination: Optional[Destination] = None,
    now: Optional[datetime] = None,
) -> PriceBreakdown:
    """
    Price an offer.

    Args:
        offer: Offer/product terms
        currency: Campaign currency
        coupon: Coupon looked up by the caller for coupon_code (None if unknown)
        coupon_code: Code the shopper entered, if any
        shipping_option: Selected campaign shipping option
        tax_rules: Active tax rules of the campaign
        destination: Shipping address country/state; None means no tax
    """
    base = max(offer.base_price, ZERO)
    offer_discount = discount_amount(base, offer.discount_type, offer.discount_value)

    coupon_discount = ZERO
    coupon_applied = False
    coupon_message = None
    code = coupon_code.strip().upper() if coupon_code and coupon_code.strip() else None
    if code:
        if coupon is None:
            coupon_message = "Invalid coupon code"
        else:
            eligible, coupon_message = evaluate_coupon(coupon, base, now)
            if eligible:
                remaining = base - offer_discount
                coupon_discount = min(
                    discount_amount(base, coupon.discount_type, coupon.discount_value),
                    remaining,
                )
                coupon_applied = True

    subtotal = max(ZERO, base - offer_discount - coupon_discount)
    shipping = shipping_cost(offer.default_shipping, shipping_option, subtotal)

    rule = select_tax_rule(tax_rules, destination)
    tax_rate = rule.tax_rate if rule else ZERO
    tax = subtotal * tax_rate / HUNDRED

    return PriceBreakdown(
        currency=currency,
        base_price=base,
        discount_type=offer.discount_type,
        offer_discount=offer_discount,
        coupon_discount=coupon_discount,
        subtotal=subtotal,
        shipping=shipping,
        tax=tax,
        total=subtotal + shipping + tax,
        tax_rate=tax_rate,
        tax_name=rule.tax_name if rule else None,
        coupon_code=code,
        coupon_id=coupon.id if coupon_applied and coupon else None,
        coupon_applied=coupon_applied,
        coupon_message=coupon_message,
        shipping_option_id=shipping_option.id if shipping_option else None,
    )
