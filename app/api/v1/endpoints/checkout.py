"""Public checkout funnel endpoints.

No authentication: a checkout is identified by the tenant (X-Tenant-ID header
or subdomain) and the customer id returned by the lead step.

Flow:
    POST /lead -> POST /address -> POST /payment [-> POST /retry]
"""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, Request

from app.api.deps import DB, CurrentTenant, GatewayClient
from app.core.exceptions import CheckoutValidationError
from app.schemas.checkout import (
    AddressRequest,
    AddressResponse,
    CustomerFunnelResponse,
    LeadRequest,
    LeadResponse,
    PaymentRequest,
    PaymentResponse,
    RetryRequest,
    ValidateResponse,
    parse_display_id,
)
from app.services.checkout_service import CheckoutService
from app.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter()


def get_client_ip(request: Request) -> Optional[str]:
    """First X-Forwarded-For hop, else X-Real-IP, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def _display_id(value: Optional[str], name: str) -> int:
    try:
        return parse_display_id(value)
    except ValueError as e:
        raise CheckoutValidationError(f"{name} {e}", {"field": name})


# ==================== Lead ====================

@router.post("/lead", response_model=LeadResponse)
async def capture_lead(
    data: LeadRequest,
    request: Request,
    db: DB,
    tenant: CurrentTenant,
):
    """
    Capture a lead for a campaign offer.

    Idempotent per (tenant, email): repeated calls return the same customer.
    """
    service = CheckoutService(db, tenant.id)
    return await service.capture_lead(
        data,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        referrer=request.headers.get("referer"),
    )


@router.get("/lead", response_model=CustomerFunnelResponse)
async def get_lead(
    db: DB,
    tenant: CurrentTenant,
    id: Optional[UUID] = Query(None, description="Customer id returned by POST /lead"),
):
    """Get a customer's funnel status."""
    if id is None:
        raise CheckoutValidationError("id is required", {"field": "id"})
    service = CheckoutService(db, tenant.id)
    return await service.get_funnel_view(id)


# ==================== Configuration ====================

@router.get("/validate", response_model=ValidateResponse)
async def validate_checkout(
    db: DB,
    tenant: CurrentTenant,
    c: Optional[str] = Query(None, description="Campaign display id"),
    o: Optional[str] = Query(None, description="Offer display id"),
):
    """
    Checkout configuration for a campaign offer.

    Baseline pricing only: no coupon, no shipping option, tax 0.
    """
    campaign_id = _display_id(c, "c")
    offer_id = _display_id(o, "o")
    service = CheckoutService(db, tenant.id)
    return await service.get_checkout_config(campaign_id, offer_id)


# ==================== Address ====================

@router.post("/address", response_model=AddressResponse)
async def submit_address(
    data: AddressRequest,
    db: DB,
    tenant: CurrentTenant,
):
    """Save shipping/billing addresses and price the order."""
    service = CheckoutService(db, tenant.id)
    return await service.submit_address(data)


# ==================== Payment ====================

@router.post("/payment", response_model=PaymentResponse, response_model_exclude_none=True)
async def process_payment(
    data: PaymentRequest,
    request: Request,
    db: DB,
    tenant: CurrentTenant,
    gateway_client: GatewayClient,
):
    """
    Charge the priced checkout.

    A decline is a 200 response with success=false and status 'declined'.
    """
    service = PaymentService(db, tenant.id, gateway_client)
    return await service.process_payment(data, ip_address=get_client_ip(request))


@router.post("/retry", response_model=PaymentResponse, response_model_exclude_none=True)
async def retry_payment(
    data: RetryRequest,
    request: Request,
    db: DB,
    tenant: CurrentTenant,
    gateway_client: GatewayClient,
):
    """Retry a declined payment with a new payment method token."""
    service = PaymentService(db, tenant.id, gateway_client)
    return await service.retry_payment(data, ip_address=get_client_ip(request))
