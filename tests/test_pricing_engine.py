"""Pricing engine tests: pure functions, no database."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.services.pricing_engine import (
    CouponTerms,
    Destination,
    OfferTerms,
    ShippingTerms,
    TaxRuleTerms,
    calculate_price,
    discount_amount,
    evaluate_coupon,
    round_money,
    select_tax_rule,
    to_minor_units,
)

D = Decimal
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

US_RULES = [
    TaxRuleTerms(country_code="US", state_code=None, tax_rate=D("5"), tax_name="US Sales Tax"),
    TaxRuleTerms(country_code="US", state_code="CA", tax_rate=D("8"), tax_name="CA Sales Tax"),
]


def test_percentage_offer_discount_sets_subtotal():
    offer = OfferTerms(base_price=D("50.00"), discount_type="percentage", discount_value=D("10"))

    breakdown = calculate_price(offer, "USD")

    assert breakdown.offer_discount == D("5")
    assert breakdown.subtotal == D("45")
    assert breakdown.total == D("45")


def test_coupon_below_minimum_order_is_not_applied():
    offer = OfferTerms(base_price=D("15"))
    coupon = CouponTerms(code="SAVE10", discount_type="fixed", discount_value=D("10"), min_order_value=D("20"))

    breakdown = calculate_price(offer, "USD", coupon=coupon, coupon_code="save10", now=NOW)

    assert breakdown.coupon_applied is False
    assert breakdown.coupon_discount == D("0")
    assert breakdown.subtotal == D("15")
    assert "Minimum order value" in breakdown.coupon_message
    assert breakdown.coupon_id is None


def test_free_shipping_over_threshold():
    offer = OfferTerms(base_price=D("50"), discount_type="percentage", discount_value=D("10"), default_shipping=D("4.95"))
    option = ShippingTerms(base_cost=D("5.00"), free_threshold=D("40.00"))

    breakdown = calculate_price(
        offer, "USD", shipping_option=option, tax_rules=US_RULES, destination=Destination("US", "NY")
    )

    assert breakdown.subtotal == D("45")
    assert breakdown.shipping == D("0")
    assert breakdown.total == breakdown.subtotal + breakdown.tax


def test_shipping_option_below_threshold_charges_base_cost():
    offer = OfferTerms(base_price=D("30"), default_shipping=D("4.95"))
    option = ShippingTerms(base_cost=D("5.00"), free_threshold=D("40.00"))

    breakdown = calculate_price(offer, "USD", shipping_option=option)

    assert breakdown.shipping == D("5.00")


def test_zero_threshold_means_no_free_shipping():
    option = ShippingTerms(base_cost=D("7"), free_threshold=D("0"))

    breakdown = calculate_price(OfferTerms(base_price=D("10")), "USD", shipping_option=option)

    assert breakdown.shipping == D("7")


def test_state_rule_beats_country_rule():
    offer = OfferTerms(base_price=D("100"))

    breakdown = calculate_price(offer, "USD", tax_rules=US_RULES, destination=Destination("us", "ca"))

    assert breakdown.tax_rate == D("8")
    assert breakdown.tax == D("8")
    assert breakdown.tax_name == "CA Sales Tax"


def test_country_rule_applies_when_no_state_rule_matches():
    rule = select_tax_rule(US_RULES, Destination("US", "TX"))

    assert rule.tax_rate == D("5")


def test_no_tax_for_other_country_or_missing_destination():
    assert select_tax_rule(US_RULES, Destination("CA", "ON")) is None
    assert select_tax_rule(US_RULES, None) is None


def test_tax_is_on_subtotal_only():
    offer = OfferTerms(base_price=D("100"), default_shipping=D("10"))

    breakdown = calculate_price(offer, "USD", tax_rules=US_RULES, destination=Destination("US", "TX"))

    assert breakdown.tax == D("5")
    assert breakdown.total == D("115")


def test_full_pipeline_order():
    offer = OfferTerms(base_price=D("50"), discount_type="percentage", discount_value=D("10"), default_shipping=D("4.95"))
    coupon = CouponTerms(code="SAVE10", discount_type="fixed", discount_value=D("10"), min_order_value=D("20"))

    breakdown = calculate_price(
        offer,
        "USD",
        coupon=coupon,
        coupon_code="SAVE10",
        tax_rules=US_RULES,
        destination=Destination("US", "CA"),
        now=NOW,
    )
    display = breakdown.to_display()

    assert breakdown.coupon_applied is True
    assert display["offer_discount"] == D("5.00")
    assert display["coupon_discount"] == D("10.00")
    assert display["discount_amount"] == D("15.00")
    assert display["subtotal"] == D("35.00")
    assert display["shipping"] == D("4.95")
    assert display["tax"] == D("2.80")
    assert display["total"] == D("42.75")


def test_unknown_coupon_code_reports_invalid():
    breakdown = calculate_price(OfferTerms(base_price=D("20")), "USD", coupon=None, coupon_code="NOPE")

    assert breakdown.coupon_applied is False
    assert breakdown.coupon_message == "Invalid coupon code"
    assert breakdown.coupon_code == "NOPE"


def test_coupon_discount_never_exceeds_remaining_price():
    offer = OfferTerms(base_price=D("20"), discount_type="fixed", discount_value=D("15"))
    coupon = CouponTerms(code="BIG", discount_type="fixed", discount_value=D("50"))

    breakdown = calculate_price(offer, "USD", coupon=coupon, coupon_code="BIG", now=NOW)

    assert breakdown.coupon_discount == D("5")
    assert breakdown.subtotal == D("0")


def test_free_offer_prices_to_zero_but_keeps_shipping():
    offer = OfferTerms(base_price=D("39.99"), discount_type="free", default_shipping=D("6.95"))

    breakdown = calculate_price(offer, "USD")

    assert breakdown.subtotal == D("0")
    assert breakdown.total == D("6.95")


@pytest.mark.parametrize(
    "coupon, reason",
    [
        (CouponTerms(code="X", discount_type="fixed", discount_value=D("5"), is_active=False), "Coupon is not active"),
        (
            CouponTerms(code="X", discount_type="fixed", discount_value=D("5"), end_date=NOW - timedelta(days=1)),
            "Coupon has expired",
        ),
        (
            CouponTerms(code="X", discount_type="fixed", discount_value=D("5"), start_date=NOW + timedelta(days=1)),
            "Coupon is not yet valid",
        ),
        (
            CouponTerms(code="X", discount_type="fixed", discount_value=D("5"), max_uses=3, current_uses=3),
            "Coupon usage limit reached",
        ),
        (CouponTerms(code="X", discount_type="free", discount_value=D("0")), "Coupon type is not supported"),
    ],
)
def test_ineligible_coupons(coupon, reason):
    eligible, message = evaluate_coupon(coupon, D("100"), NOW)

    assert eligible is False
    assert message == reason


def test_naive_coupon_dates_are_treated_as_utc():
    coupon = CouponTerms(
        code="X",
        discount_type="percentage",
        discount_value=D("10"),
        start_date=datetime(2026, 1, 1),
        end_date=datetime(2026, 12, 31),
    )

    assert evaluate_coupon(coupon, D("100"), NOW) == (True, None)


def test_discount_amount_is_clamped():
    assert discount_amount(D("10"), "fixed", D("25")) == D("10")
    assert discount_amount(D("10"), "percentage", D("150")) == D("10")
    assert discount_amount(D("10"), "fixed", D("-5")) == D("0")
    assert discount_amount(D("10"), "none", D("5")) == D("0")


def test_money_rounding_is_half_up_per_currency():
    assert round_money(D("0.125"), "USD") == D("0.13")
    assert round_money(D("1234.5"), "JPY") == D("1235")
    assert round_money(D("1.2345"), "KWD") == D("1.235")


def test_minor_units():
    assert to_minor_units(D("42.745"), "USD") == 4275
    assert to_minor_units(D("1200"), "JPY") == 1200
    assert to_minor_units(D("1.5"), "BHD") == 1500


def test_full_precision_is_kept_until_display():
    offer = OfferTerms(base_price=D("19.99"), discount_type="percentage", discount_value=D("15"))

    breakdown = calculate_price(offer, "USD")

    assert breakdown.offer_discount == D("2.9985")
    assert breakdown.to_display()["offer_discount"] == D("3.00")
    assert breakdown.to_display()["subtotal"] == D("16.99")
