"""
Customer Funnel State Machine

This module is the SINGLE SOURCE OF TRUTH for customer funnel status
transitions and for the write-once attribution merge rule. Checkout
services never assign Customer.status or attribution columns directly.

Lifecycle:
    prospect -> lead -> partial -> customer
    partial/declined -> declined (payment failed, retry allowed)
    partial/declined/customer -> cancelled
    customer -> refunded

Funnel steps only ever move a customer forward: each step names the exact
statuses it may upgrade from, and the upgrade is a conditional UPDATE so a
late or repeated request never drags a customer backwards.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy import update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import CheckoutStateError, CustomerAlreadyConvertedError, InvalidFunnelTransition
from app.models.customer import Customer, CustomerStatus, CustomerStatusHistory

logger = logging.getLogger(__name__)


# =============================================================================
# STATUS DEFINITIONS
# =============================================================================

FunnelStatus = CustomerStatus


# =============================================================================
# TRANSITION RULES
# =============================================================================

# Format: current_status -> [list of allowed next statuses]
FUNNEL_TRANSITIONS: Dict[str, List[str]] = {
    FunnelStatus.PROSPECT.value: [
        FunnelStatus.LEAD.value,        # Email captured
    ],
    FunnelStatus.LEAD.value: [
        FunnelStatus.PARTIAL.value,     # Shipping address captured and priced
    ],
    FunnelStatus.PARTIAL.value: [
        FunnelStatus.CUSTOMER.value,    # Payment approved
        FunnelStatus.DECLINED.value,    # Payment declined
        FunnelStatus.CANCELLED.value,
    ],
    FunnelStatus.DECLINED.value: [
        FunnelStatus.CUSTOMER.value,    # Retry approved
        FunnelStatus.DECLINED.value,    # Retry declined again
        FunnelStatus.CANCELLED.value,
    ],
    FunnelStatus.CUSTOMER.value: [
        FunnelStatus.REFUNDED.value,
        FunnelStatus.CANCELLED.value,
    ],
    FunnelStatus.CANCELLED.value: [],   # Terminal state
    FunnelStatus.REFUNDED.value: [],    # Terminal state
}

TRANSITION_ACTIONS: Dict[tuple, str] = {
    (FunnelStatus.PROSPECT.value, FunnelStatus.LEAD.value): "Capture Lead",
    (FunnelStatus.LEAD.value, FunnelStatus.PARTIAL.value): "Capture Address",
    (FunnelStatus.PARTIAL.value, FunnelStatus.CUSTOMER.value): "Payment Approved",
    (FunnelStatus.PARTIAL.value, FunnelStatus.DECLINED.value): "Payment Declined",
    (FunnelStatus.DECLINED.value, FunnelStatus.CUSTOMER.value): "Retry Approved",
    (FunnelStatus.DECLINED.value, FunnelStatus.DECLINED.value): "Retry Declined",
    (FunnelStatus.CUSTOMER.value, FunnelStatus.REFUNDED.value): "Refund",
}

# Funnel steps: target -> statuses it may upgrade from. Anything else is left as is.
FORWARD_STEPS: Dict[str, Sequence[str]] = {
    FunnelStatus.LEAD.value: (FunnelStatus.PROSPECT.value,),
    FunnelStatus.PARTIAL.value: (FunnelStatus.LEAD.value,),
}

PAYABLE_STATUSES = (FunnelStatus.PARTIAL.value, FunnelStatus.DECLINED.value)

# First-touch attribution: only null slots are ever filled
WRITE_ONCE_FIELDS = (
    "source_campaign_id",
    "source_offer_id",
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_content",
    "utm_term",
    "session_id",
    "ip_address",
    "user_agent",
    "referrer",
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _value(status) -> str:
    return status.value if isinstance(status, CustomerStatus) else status


def can_transition(current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed."""
    return _value(new_status) in FUNNEL_TRANSITIONS.get(_value(current_status), [])


def get_allowed_transitions(current_status: str) -> List[str]:
    return FUNNEL_TRANSITIONS.get(_value(current_status), [])


def get_transition_action(current_status: str, new_status: str) -> str:
    current_status, new_status = _value(current_status), _value(new_status)
    return TRANSITION_ACTIONS.get((current_status, new_status), f"{current_status} -> {new_status}")


def validate_transition(current_status: str, new_status: str) -> None:
    """Raise InvalidFunnelTransition if current -> new is not allowed."""
    current_status, new_status = _value(current_status), _value(new_status)
    if current_status == new_status and current_status != FunnelStatus.DECLINED.value:
        return

    if not can_transition(current_status, new_status):
        allowed = get_allowed_transitions(current_status)
        if not allowed:
            raise InvalidFunnelTransition(
                f"Customer in '{current_status}' status cannot be modified. This is a terminal state."
            )
        raise InvalidFunnelTransition(
            f"Cannot change customer from '{current_status}' to '{new_status}'. "
            f"Allowed transitions: {', '.join(allowed)}"
        )


def is_terminal(status: str) -> bool:
    return not get_allowed_transitions(status)


def is_converted(status: str) -> bool:
    return _value(status) == FunnelStatus.CUSTOMER.value


def can_pay(status: str) -> bool:
    return _value(status) in PAYABLE_STATUSES


def upgraded_status(current_status: str, target_status: str) -> str:
    """Status after a funnel step: the target if current is its predecessor, else unchanged."""
    current_status, target_status = _value(current_status), _value(target_status)
    if current_status in FORWARD_STEPS.get(target_status, ()):
        return target_status
    return current_status


def ensure_not_converted(customer: Customer) -> None:
    """Converted customers are read-only to the checkout funnel."""
    if is_converted(customer.status):
        raise CustomerAlreadyConvertedError()


def merge_write_once(current: Dict, incoming: Dict) -> Dict:
    """
    First non-null wins.

    Returns the subset of incoming write-once values that would fill a slot
    that is currently null.
    """
    merged = {}
    for field in WRITE_ONCE_FIELDS:
        value = incoming.get(field)
        if value is None or value == "":
            continue
        if current.get(field) is None:
            merged[field] = value
    return merged


def coalesce_assignments(incoming: Dict) -> Dict:
    """UPDATE ... SET col = COALESCE(col, :value) for each supplied write-once field."""
    assignments = {}
    for field in WRITE_ONCE_FIELDS:
        value = incoming.get(field)
        if value is None or value == "":
            continue
        column = getattr(Customer, field)
        assignments[field] = func.coalesce(column, value)
    return assignments


# =============================================================================
# TRANSITION EXECUTOR
# =============================================================================

class FunnelStateMachine:
    """Applies funnel transitions to persisted customers."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _update(self, customer: Customer, *criteria, **values) -> bool:
        # Pending attribute changes must reach the row before it is re-read
        await self.db.flush()
        stmt = (
            update(Customer)
            .where(Customer.id == customer.id, *criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.refresh(customer)
        return result.rowcount == 1

    async def _record_history(self, customer: Customer, from_status: Optional[str], to_status: str, reason: str = None):
        self.db.add(CustomerStatusHistory(
            customer_id=customer.id,
            from_status=from_status,
            to_status=to_status,
            reason=reason,
        ))
        logger.info(
            f"Customer {customer.id}: {from_status or '-'} -> {to_status}"
            + (f" ({reason})" if reason else "")
        )

    async def record_created(self, customer: Customer) -> None:
        await self._record_history(customer, None, customer.status, "Created")

    async def apply_attribution(self, customer: Customer, incoming: Dict) -> Dict:
        """
        Fill write-once attribution fields that are still null.

        Returns the fields that were filled.
        """
        filled = merge_write_once({f: getattr(customer, f) for f in WRITE_ONCE_FIELDS}, incoming)
        assignments = coalesce_assignments(incoming)
        if assignments:
            await self._update(customer, **assignments)
        return filled

    async def advance(self, customer: Customer, target_status: str, reason: str = None) -> bool:
        """
        Funnel step upgrade (prospect -> lead, lead -> partial).

        Only upgrades from the exact predecessor; any other current status is
        left unchanged. Returns True if the status changed.
        """
        target_status = _value(target_status)
        predecessors = FORWARD_STEPS.get(target_status)
        if predecessors is None:
            raise ValueError(f"'{target_status}' is not a funnel step")

        previous = customer.status
        changed = await self._update(
            customer,
            Customer.status.in_(predecessors),
            status=target_status,
        )
        if changed:
            await self._record_history(
                customer, previous, target_status, get_transition_action(previous, target_status)
            )
        return changed

    async def claim_for_payment(self, customer: Customer) -> None:
        """
        Lock a payable customer for the current transaction before charging.

        The conditional UPDATE holds the customer row until commit, so a
        concurrent payment for the same customer blocks and then finds the
        customer already converted instead of charging twice.

        Raises:
            CustomerAlreadyConvertedError: converted since it was read
            CheckoutStateError: no longer payable
        """
        changed = await self._update(
            customer,
            Customer.status.in_(PAYABLE_STATUSES),
            updated_at=datetime.now(timezone.utc),
        )
        if not changed:
            ensure_not_converted(customer)
            raise CheckoutStateError("Please complete all checkout steps before payment")

    async def record_decline(self, customer: Customer, reason: str, code: str) -> None:
        """Payment declined: -> declined, counter + 1, last reason/code."""
        previous = customer.status
        changed = await self._update(
            customer,
            Customer.status.in_(PAYABLE_STATUSES),
            status=FunnelStatus.DECLINED.value,
            decline_count=Customer.decline_count + 1,
            last_decline_reason=reason,
            last_decline_code=code,
        )
        if not changed:
            ensure_not_converted(customer)
            validate_transition(customer.status, FunnelStatus.DECLINED.value)
        if previous != FunnelStatus.DECLINED.value:
            await self._record_history(customer, previous, FunnelStatus.DECLINED.value, code)
        logger.warning(f"Customer {customer.id} declined ({code}), decline_count={customer.decline_count}")

    async def convert(self, customer: Customer, order_id, amount: Decimal) -> None:
        """Payment approved: -> customer with conversion marker and order totals."""
        previous = customer.status
        now = datetime.now(timezone.utc)
        changed = await self._update(
            customer,
            Customer.status.in_(PAYABLE_STATUSES),
            status=FunnelStatus.CUSTOMER.value,
            converted_at=func.coalesce(Customer.converted_at, now),
            first_order_id=func.coalesce(Customer.first_order_id, order_id),
            lifetime_value=Customer.lifetime_value + amount,
            total_orders=Customer.total_orders + 1,
        )
        if not changed:
            ensure_not_converted(customer)
            validate_transition(customer.status, FunnelStatus.CUSTOMER.value)
        await self._record_history(
            customer, previous, FunnelStatus.CUSTOMER.value, get_transition_action(previous, FunnelStatus.CUSTOMER.value)
        )

    async def transition(self, customer: Customer, new_status: str, reason: str = None) -> None:
        """
        Operator-initiated transition (cancel, refund).

        Validates against FUNNEL_TRANSITIONS and applies the change only if
        the customer is still in the status it was read in.
        """
        new_status = _value(new_status)
        current = customer.status
        validate_transition(current, new_status)
        if current == new_status:
            return

        changed = await self._update(customer, Customer.status == current, status=new_status)
        if not changed:
            raise InvalidFunnelTransition(
                f"Customer status changed from '{current}' to '{customer.status}' concurrently"
            )
        await self._record_history(customer, current, new_status, reason or get_transition_action(current, new_status))
