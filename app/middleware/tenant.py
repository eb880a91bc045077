"""
Tenant middleware for multi-tenant request handling
"""
import logging
import uuid
from typing import Optional

from fastapi import Request, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.tenant import Tenant

logger = logging.getLogger(__name__)

PUBLIC_ROUTES = [
    "/",
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
]

# Hosts whose first label is not a tenant subdomain
RESERVED_SUBDOMAINS = ["www", "api", "admin", "localhost", "checkout"]


def extract_tenant_reference(request: Request) -> Optional[str]:
    """
    Tenant reference carried by the request.

    Priority:
    1. Custom header (X-Tenant-ID) - for API calls
    2. Subdomain - for hosted checkout pages
    """
    tenant_id = request.headers.get("X-Tenant-ID")
    if tenant_id:
        return tenant_id.strip()

    host = request.headers.get("host", "").split(":")[0]
    if host.count(".") >= 2:
        subdomain = host.split(".")[0]
        if subdomain not in RESERVED_SUBDOMAINS:
            return subdomain
    return None


async def get_tenant_by_subdomain(db: AsyncSession, subdomain: str) -> Optional[Tenant]:
    """Get tenant by subdomain"""
    result = await db.execute(select(Tenant).where(Tenant.subdomain == subdomain))
    return result.scalar_one_or_none()


async def get_tenant_by_id(db: AsyncSession, tenant_id: str) -> Optional[Tenant]:
    """Get tenant by ID"""
    try:
        tenant_uuid = uuid.UUID(tenant_id)
    except ValueError:
        return None
    result = await db.execute(select(Tenant).where(Tenant.id == tenant_uuid))
    return result.scalar_one_or_none()


async def get_tenant_from_request(request: Request, db: AsyncSession) -> Tenant:
    """
    Load the tenant referenced by the request.

    The reference may be a tenant id or a subdomain.

    Raises:
        HTTPException: 400 if no tenant is referenced or it does not exist,
            403 if the tenant is not active
    """
    reference = getattr(request.state, "tenant_ref", None) or extract_tenant_reference(request)
    if not reference:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Tenant not specified. Send the X-Tenant-ID header.",
        )

    tenant = await get_tenant_by_id(db, reference) or await get_tenant_by_subdomain(db, reference)
    if tenant is None:
        logger.warning(f"Tenant not found: {reference}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Tenant not found",
        )

    if not tenant.is_active:
        logger.warning(f"Request for inactive tenant {tenant.subdomain}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Tenant is not active",
        )

    request.state.tenant = tenant
    request.state.tenant_id = str(tenant.id)
    return tenant


async def tenant_middleware(request: Request, call_next):
    """
    Middleware to inject the tenant reference into request.state

    The tenant row itself is loaded by the get_current_tenant dependency
    inside the request's database session.

    Public routes (health check, docs, etc.) skip tenant check.
    """
    if request.url.path in PUBLIC_ROUTES:
        return await call_next(request)

    request.state.tenant_ref = extract_tenant_reference(request)
    return await call_next(request)
