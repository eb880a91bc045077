from typing import Annotated
import logging

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.middleware.tenant import get_tenant_from_request
from app.models.tenant import Tenant
from app.services.spreedly_client import PaymentGatewayClient, get_gateway_client


logger = logging.getLogger(__name__)


async def get_current_tenant(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Tenant:
    """
    Dependency to get the tenant for the current request.

    Loaded in the request's session so every checkout query runs in the same
    transaction.
    """
    return await get_tenant_from_request(request, db)


# Type aliases for cleaner dependency injection
DB = Annotated[AsyncSession, Depends(get_db)]
CurrentTenant = Annotated[Tenant, Depends(get_current_tenant)]
GatewayClient = Annotated[PaymentGatewayClient, Depends(get_gateway_client)]
