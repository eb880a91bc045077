"""
Payment Service - checkout payment and decline retry.

Charges the totals snapshot persisted by the address step (never re-priced)
through the configured gateway:
- Approved: order, order item, transaction, saved address/payment method,
  customer -> customer, daily campaign analytics
- Declined: declined transaction, customer -> declined with counters
- Transport failure: nothing is recorded, the caller may retry the step
- Zero total: the order is placed without a gateway call

The retry flow reuses the same charge with a new payment method token for a
declined customer, without touching identity, address or pricing data.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    CatalogNotFoundError,
    CheckoutStateError,
    CheckoutValidationError,
    CustomerNotFoundError,
    GatewayNotConfiguredError,
    RetryNotAllowedError,
)
from app.database import insert_for
from app.models.catalog import CampaignAnalytics, Coupon
from app.models.customer import (
    AddressType,
    Customer,
    CustomerAddress,
    CustomerPaymentMethod,
    CustomerStatus,
)
from app.models.gateway import Gateway
from app.models.order import (
    FulfillmentStatus,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from app.models.tenant import Tenant
from app.schemas.checkout import CheckoutTotals, PaymentRequest, PaymentResponse
from app.services.catalog_resolver import CatalogResolver, ResolvedOffer
from app.services.funnel_state_machine import FunnelStateMachine, can_pay, ensure_not_converted
from app.services.pricing_engine import round_money, to_minor_units
from app.services.spreedly_client import GatewayResult, GatewayTransactionRequest, PaymentGatewayClient

logger = logging.getLogger(__name__)

# First order is ORD-00001001
ORDER_NUMBER_START = 1000


def format_order_number(display_id: int) -> str:
    return f"ORD-{display_id:08d}"


def decline_code(result: GatewayResult) -> str:
    """Gateway error code; SPREEDLY_ERROR when the gateway returned no transaction."""
    if result.transaction is None:
        return "SPREEDLY_ERROR"
    return result.response.get("error_code") or "DECLINED"


class PaymentService:
    """
    Payment step and retry flow for one tenant.
    """

    def __init__(self, db: AsyncSession, tenant_id: uuid.UUID, gateway_client: PaymentGatewayClient):
        self.db = db
        self.tenant_id = tenant_id
        self.gateway_client = gateway_client
        self.catalog = CatalogResolver(db, tenant_id)
        self.funnel = FunnelStateMachine(db)

    async def _require_customer(self, customer_id: uuid.UUID) -> Customer:
        result = await self.db.execute(
            select(Customer).where(Customer.id == customer_id, Customer.tenant_id == self.tenant_id)
        )
        customer = result.scalar_one_or_none()
        if not customer:
            raise CustomerNotFoundError(customer_id)
        return customer

    @staticmethod
    def _load_totals(customer: Customer) -> CheckoutTotals:
        if not customer.checkout_totals:
            raise CheckoutStateError("Please complete all checkout steps before payment")
        return CheckoutTotals.model_validate(customer.checkout_totals)

    # ==================== Entry points ====================

    async def process_payment(self, data: PaymentRequest, ip_address: Optional[str] = None) -> PaymentResponse:
        """Payment step for a customer at partial (or declined)."""
        customer = await self._require_customer(data.customer_id)
        ensure_not_converted(customer)
        if not can_pay(customer.status):
            raise CheckoutStateError("Please complete all checkout steps before payment")
        totals = self._load_totals(customer)
        return await self._charge(customer, totals, data, ip_address)

    async def retry_payment(self, data: PaymentRequest, ip_address: Optional[str] = None) -> PaymentResponse:
        """
        Retry a declined payment with a new payment method.

        Raises:
            RetryNotAllowedError: customer is not declined, or has hit MAX_PAYMENT_RETRIES
        """
        customer = await self._require_customer(data.customer_id)
        ensure_not_converted(customer)
        if customer.status != CustomerStatus.DECLINED.value:
            raise RetryNotAllowedError("This customer is not eligible for payment retry")
        if customer.decline_count >= settings.MAX_PAYMENT_RETRIES:
            raise RetryNotAllowedError("Maximum retry attempts reached. Please contact support.")
        totals = self._load_totals(customer)
        return await self._charge(customer, totals, data, ip_address, retry_attempt=customer.decline_count + 1)

    # ==================== Charge ====================

    async def _charge(
        self,
        customer: Customer,
        totals: CheckoutTotals,
        data: PaymentRequest,
        ip_address: Optional[str],
        retry_attempt: Optional[int] = None,
    ) -> PaymentResponse:
        try:
            resolved = await self.catalog.resolve_internal(customer.source_campaign_id, customer.source_offer_id)
        except CatalogNotFoundError as e:
            raise CheckoutValidationError(e.message, e.details) from e
        campaign = resolved.campaign
        amount = to_minor_units(totals.total, totals.currency)

        # Row lock on the customer until commit: a second concurrent payment waits, then sees the conversion
        await self.funnel.claim_for_payment(customer)

        if amount == 0:
            await self._claim_coupon(totals)
            logger.info(f"Zero-total checkout for customer {customer.id}, no gateway call")
            return await self._handle_success(customer, totals, data, resolved, None, None, retry_attempt)

        gateway = await self._select_gateway(resolved)
        coupon_claimed = await self._claim_coupon(totals)

        order_ref = f"CUST-{customer.id.hex[:12].upper()}"
        if retry_attempt:
            order_ref = f"{order_ref}-RETRY-{retry_attempt}"

        request = GatewayTransactionRequest(
            amount=amount,
            currency_code=totals.currency,
            payment_method_token=data.payment_method_token,
            order_id=order_ref,
            description=f"{campaign.name} - {resolved.offer.name}",
            email=customer.email,
            ip=ip_address,
            card_last_four=data.card_last_four,
        )
        gateway_token = gateway.gateway_token if gateway else None

        logger.info(
            f"Charging customer {customer.id}: {request.amount} {request.currency_code} "
            f"({'authorize' if campaign.preauth_only else 'purchase'}, ref={order_ref})"
        )
        # GatewayTransportError propagates; the request transaction rolls back the coupon claim
        if campaign.preauth_only:
            result = await self.gateway_client.authorize(gateway_token, request)
        else:
            result = await self.gateway_client.purchase(gateway_token, request)

        if not result.succeeded:
            return await self._handle_decline(customer, totals, gateway, result, coupon_claimed, retry_attempt)
        return await self._handle_success(customer, totals, data, resolved, gateway, result, retry_attempt)

    async def _select_gateway(self, resolved: ResolvedOffer) -> Optional[Gateway]:
        """Offer's gateway, else the highest-priority active tenant gateway."""
        if resolved.offer.gateway_id:
            gateway = await self.db.get(Gateway, resolved.offer.gateway_id)
            if gateway and gateway.is_active and gateway.tenant_id == self.tenant_id:
                return gateway

        result = await self.db.execute(
            select(Gateway)
            .where(Gateway.tenant_id == self.tenant_id, Gateway.is_active.is_(True))
            .order_by(Gateway.priority.desc(), Gateway.created_at)
            .limit(1)
        )
        gateway = result.scalar_one_or_none()
        if gateway is None and self.gateway_client.requires_gateway_token:
            raise GatewayNotConfiguredError()
        return gateway

    async def _claim_coupon(self, totals: CheckoutTotals) -> bool:
        """
        Count one use of the snapshot's coupon, only while uses remain.

        Raises:
            CheckoutStateError: coupon was used up or deactivated since pricing
        """
        if not totals.coupon_id:
            return False

        result = await self.db.execute(
            update(Coupon)
            .where(
                Coupon.id == totals.coupon_id,
                Coupon.is_active.is_(True),
                or_(Coupon.max_uses.is_(None), Coupon.current_uses < Coupon.max_uses),
            )
            .values(current_uses=Coupon.current_uses + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(f"Coupon {totals.coupon_code} no longer available at payment")
            raise CheckoutStateError(
                "Coupon is no longer available. Please review your order.",
                {"coupon_code": totals.coupon_code},
            )
        return True

    async def _release_coupon(self, totals: CheckoutTotals) -> None:
        await self.db.execute(
            update(Coupon)
            .where(Coupon.id == totals.coupon_id, Coupon.current_uses > 0)
            .values(current_uses=Coupon.current_uses - 1)
            .execution_options(synchronize_session=False)
        )

    # ==================== Outcomes ====================

    async def _handle_decline(
        self,
        customer: Customer,
        totals: CheckoutTotals,
        gateway: Optional[Gateway],
        result: GatewayResult,
        coupon_claimed: bool,
        retry_attempt: Optional[int],
    ) -> PaymentResponse:
        reason = result.message or "Payment declined"
        code = decline_code(result)

        if coupon_claimed:
            await self._release_coupon(totals)

        self.db.add(Transaction(
            tenant_id=self.tenant_id,
            customer_id=customer.id,
            gateway_id=gateway.id if gateway else None,
            transaction_type=TransactionType.SALE.value,
            status=TransactionStatus.DECLINED.value,
            amount=round_money(totals.total, totals.currency),
            currency=totals.currency,
            gateway_transaction_token=result.transaction_token,
            response_code=code,
            response_message=reason,
            error_detail={"retry_attempt": retry_attempt} if retry_attempt else None,
        ))
        await self.funnel.record_decline(customer, reason, code)

        return PaymentResponse(
            success=False,
            status=CustomerStatus.DECLINED.value,
            customer_id=customer.id,
            error=reason,
            response_code=code,
            decline_count=customer.decline_count,
        )

    async def _handle_success(
        self,
        customer: Customer,
        totals: CheckoutTotals,
        data: PaymentRequest,
        resolved: ResolvedOffer,
        gateway: Optional[Gateway],
        result: Optional[GatewayResult],
        retry_attempt: Optional[int],
    ) -> PaymentResponse:
        """Materialize the order. result is None for a zero-total order that never reached the gateway."""
        campaign, offer, product = resolved.campaign, resolved.offer, resolved.product
        preauth = campaign.preauth_only and result is not None
        currency = totals.currency

        shipping_address = customer.shipping_address()
        billing_address = customer.billing_address()
        self._save_addresses(customer, shipping_address, billing_address)
        self.db.add(CustomerPaymentMethod(
            customer_id=customer.id,
            payment_method_token=data.payment_method_token,
            card_type=data.card_type,
            last_four=data.card_last_four,
            exp_month=data.card_exp_month,
            exp_year=data.card_exp_year,
        ))

        metadata = {
            "utm_source": customer.utm_source,
            "utm_medium": customer.utm_medium,
            "utm_campaign": customer.utm_campaign,
            "session_id": customer.session_id,
            "custom_fields": customer.custom_fields or {},
        }
        if retry_attempt:
            metadata.update({"retry_conversion": True, "retry_count": customer.decline_count})

        display_id = await self._next_order_display_id()
        order = Order(
            id=uuid.uuid4(),
            tenant_id=self.tenant_id,
            display_id=display_id,
            order_number=format_order_number(display_id),
            customer_id=customer.id,
            campaign_id=campaign.id,
            gateway_id=gateway.id if gateway else None,
            status=OrderStatus.PROCESSING.value,
            payment_status=(PaymentStatus.AUTHORIZED if preauth else PaymentStatus.PAID).value,
            fulfillment_status=FulfillmentStatus.UNFULFILLED.value,
            subtotal=round_money(totals.subtotal, currency),
            discount_amount=round_money(totals.discount, currency),
            shipping_amount=round_money(totals.shipping, currency),
            tax_amount=round_money(totals.tax, currency),
            total=round_money(totals.total, currency),
            currency=currency,
            coupon_code=totals.coupon_code,
            shipping_option_id=totals.shipping_option_id,
            shipping_address=shipping_address,
            billing_address=billing_address,
            order_metadata=metadata,
        )
        self.db.add(order)
        # No ORM relationships: the order row must exist before its children
        await self.db.flush()

        line_total = round_money(totals.subtotal, currency)
        self.db.add(OrderItem(
            order_id=order.id,
            offer_id=offer.id,
            product_id=product.id if product else None,
            name=offer.name,
            sku=product.sku if product else None,
            quantity=1,
            unit_price=line_total,
            total=line_total,
        ))

        response = result.response if result else {}
        self.db.add(Transaction(
            tenant_id=self.tenant_id,
            customer_id=customer.id,
            order_id=order.id,
            gateway_id=gateway.id if gateway else None,
            transaction_type=(TransactionType.AUTHORIZE if preauth else TransactionType.SALE).value,
            status=TransactionStatus.SUCCESS.value,
            amount=order.total,
            currency=currency,
            gateway_transaction_token=result.transaction_token if result else None,
            response_code=response.get("error_code"),
            response_message=result.message if result else "No charge required",
            avs_result=response.get("avs_code"),
            cvv_result=response.get("cvv_code"),
        ))
        await self.db.flush()

        await self.funnel.convert(customer, order.id, order.total)
        await self._record_analytics(campaign.id, order.total)

        logger.info(
            f"Order {order.order_number} placed for customer {customer.id}: {order.total} {currency}"
            + (f" (retry {retry_attempt})" if retry_attempt else "")
        )
        return PaymentResponse(
            success=True,
            status=order.payment_status,
            customer_id=customer.id,
            order_id=order.id,
            order_number=order.order_number,
            retry_success=True if retry_attempt else None,
        )

    def _save_addresses(self, customer: Customer, shipping_address: dict, billing_address: dict) -> None:
        self.db.add(CustomerAddress(
            customer_id=customer.id,
            address_type=AddressType.SHIPPING.value,
            first_name=customer.first_name,
            last_name=customer.last_name,
            is_default=True,
            **shipping_address,
        ))
        if not customer.bill_same_as_ship:
            self.db.add(CustomerAddress(
                customer_id=customer.id,
                address_type=AddressType.BILLING.value,
                first_name=customer.first_name,
                last_name=customer.last_name,
                is_default=True,
                **billing_address,
            ))

    async def _next_order_display_id(self) -> int:
        """Next per-tenant order sequence; the tenant row lock serializes concurrent orders."""
        await self.db.execute(
            select(Tenant.id).where(Tenant.id == self.tenant_id).with_for_update()
        )
        result = await self.db.execute(
            select(func.max(Order.display_id)).where(Order.tenant_id == self.tenant_id)
        )
        current = result.scalar()
        return max(current or 0, ORDER_NUMBER_START) + 1

    async def _record_analytics(self, campaign_id: uuid.UUID, amount) -> None:
        """Daily per-campaign order counters, incremented in one upsert."""
        table = CampaignAnalytics.__table__
        insert = insert_for(self.db)
        stmt = insert(table).values(
            id=uuid.uuid4(),
            campaign_id=campaign_id,
            metric_date=datetime.now(timezone.utc).date(),
            orders_count=1,
            orders_value=amount,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["campaign_id", "metric_date"],
            set_={
                "orders_count": table.c.orders_count + 1,
                "orders_value": table.c.orders_value + stmt.excluded.orders_value,
            },
        )
        await self.db.execute(stmt)
