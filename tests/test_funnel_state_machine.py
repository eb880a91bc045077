"""Funnel state machine: transition rules and persisted upgrades."""

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from app.core.exceptions import CheckoutStateError, CustomerAlreadyConvertedError, InvalidFunnelTransition
from app.models.customer import Customer, CustomerStatus, CustomerStatusHistory
from app.services.funnel_state_machine import (
    FunnelStateMachine,
    can_pay,
    can_transition,
    ensure_not_converted,
    is_terminal,
    merge_write_once,
    upgraded_status,
    validate_transition,
)


# ==================== Rules ====================

@pytest.mark.parametrize(
    "current, target, allowed",
    [
        ("prospect", "lead", True),
        ("lead", "partial", True),
        ("partial", "customer", True),
        ("partial", "declined", True),
        ("declined", "customer", True),
        ("customer", "refunded", True),
        ("customer", "lead", False),
        ("partial", "lead", False),
        ("refunded", "customer", False),
    ],
)
def test_can_transition(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_terminal_statuses_cannot_move():
    assert is_terminal("cancelled")
    assert is_terminal(CustomerStatus.REFUNDED)
    with pytest.raises(InvalidFunnelTransition, match="terminal state"):
        validate_transition("refunded", "customer")


def test_invalid_transition_lists_allowed_targets():
    with pytest.raises(InvalidFunnelTransition, match="Allowed transitions: partial"):
        validate_transition("lead", "customer")


def test_upgrades_are_monotonic():
    assert upgraded_status("prospect", "lead") == "lead"
    assert upgraded_status("lead", "lead") == "lead"
    assert upgraded_status("partial", "lead") == "partial"
    assert upgraded_status("declined", "partial") == "declined"
    assert upgraded_status("customer", "partial") == "customer"


def test_payable_statuses():
    assert can_pay("partial")
    assert can_pay("declined")
    assert not can_pay("lead")
    assert not can_pay("customer")


def test_merge_write_once_fills_only_null_slots():
    current = {"utm_source": "google", "utm_medium": None, "session_id": None}
    incoming = {"utm_source": "facebook", "utm_medium": "cpc", "session_id": "", "not_tracked": "x"}

    assert merge_write_once(current, incoming) == {"utm_medium": "cpc"}


def test_converted_customer_is_rejected():
    with pytest.raises(CustomerAlreadyConvertedError):
        ensure_not_converted(Customer(email="a@acme.io", status="customer"))


# ==================== Persisted transitions ====================

@pytest.fixture
async def customer(db_session, tenant) -> Customer:
    customer = Customer(tenant_id=tenant.id, email="funnel@acme.io", status="prospect")
    db_session.add(customer)
    await db_session.commit()
    return customer


async def history(db_session, customer):
    result = await db_session.execute(
        select(CustomerStatusHistory.to_status)
        .where(CustomerStatusHistory.customer_id == customer.id)
        .order_by(CustomerStatusHistory.created_at)
    )
    return list(result.scalars())


async def test_advance_moves_forward_once(db_session, customer):
    funnel = FunnelStateMachine(db_session)

    assert await funnel.advance(customer, CustomerStatus.LEAD) is True
    assert await funnel.advance(customer, CustomerStatus.LEAD) is False
    await db_session.commit()

    assert customer.status == "lead"
    assert await history(db_session, customer) == ["lead"]


async def test_advance_never_downgrades(db_session, customer):
    funnel = FunnelStateMachine(db_session)
    await funnel.advance(customer, "lead")
    await funnel.advance(customer, "partial")

    assert await funnel.advance(customer, "lead") is False
    assert customer.status == "partial"


async def test_advance_rejects_non_step_targets(db_session, customer):
    with pytest.raises(ValueError):
        await FunnelStateMachine(db_session).advance(customer, "customer")


async def test_attribution_is_write_once(db_session, customer):
    funnel = FunnelStateMachine(db_session)

    filled = await funnel.apply_attribution(customer, {"utm_source": "facebook", "session_id": "s-1"})
    assert filled == {"utm_source": "facebook", "session_id": "s-1"}

    filled = await funnel.apply_attribution(
        customer, {"utm_source": "google", "utm_medium": "cpc", "session_id": "s-2"}
    )
    assert filled == {"utm_medium": "cpc"}
    assert customer.utm_source == "facebook"
    assert customer.utm_medium == "cpc"
    assert customer.session_id == "s-1"


async def test_decline_then_convert(db_session, customer):
    funnel = FunnelStateMachine(db_session)
    await funnel.advance(customer, "lead")
    await funnel.advance(customer, "partial")

    await funnel.record_decline(customer, "Insufficient funds", "51")
    await funnel.record_decline(customer, "Do not honor", "05")
    assert customer.status == "declined"
    assert customer.decline_count == 2
    assert customer.last_decline_code == "05"

    order_id = uuid.uuid4()
    await funnel.convert(customer, order_id, Decimal("42.75"))
    await db_session.commit()

    assert customer.status == "customer"
    assert customer.first_order_id == order_id
    assert customer.converted_at is not None
    assert customer.total_orders == 1
    assert customer.lifetime_value == Decimal("42.75")
    assert await history(db_session, customer) == ["lead", "partial", "declined", "customer"]


async def test_convert_requires_payable_status(db_session, customer):
    with pytest.raises(InvalidFunnelTransition):
        await FunnelStateMachine(db_session).convert(customer, uuid.uuid4(), Decimal("10"))
    assert customer.status == "prospect"


async def test_operator_transition_refund(db_session, customer):
    funnel = FunnelStateMachine(db_session)
    await funnel.advance(customer, "lead")
    await funnel.advance(customer, "partial")
    await funnel.convert(customer, uuid.uuid4(), Decimal("10"))

    await funnel.transition(customer, CustomerStatus.REFUNDED, reason="Chargeback")

    assert customer.status == "refunded"
    with pytest.raises(InvalidFunnelTransition):
        await funnel.transition(customer, CustomerStatus.CANCELLED)


async def test_claim_for_payment_on_payable_customer(db_session, customer):
    funnel = FunnelStateMachine(db_session)
    await funnel.advance(customer, "lead")
    await funnel.advance(customer, "partial")

    await funnel.claim_for_payment(customer)

    assert customer.status == "partial"


async def test_claim_for_payment_sees_concurrent_conversion(db_session, customer):
    funnel = FunnelStateMachine(db_session)
    await funnel.advance(customer, "lead")
    await funnel.advance(customer, "partial")
    # Another request converted the customer after this one read it
    await db_session.execute(
        update(Customer)
        .where(Customer.id == customer.id)
        .values(status="customer")
        .execution_options(synchronize_session=False)
    )
    assert customer.status == "partial"

    with pytest.raises(CustomerAlreadyConvertedError):
        await funnel.claim_for_payment(customer)


async def test_claim_for_payment_requires_payable_status(db_session, customer):
    with pytest.raises(CheckoutStateError):
        await FunnelStateMachine(db_session).claim_for_payment(customer)
