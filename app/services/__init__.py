# Services module
from app.services.catalog_resolver import CatalogResolver
from app.services.pricing_engine import calculate_price
from app.services.funnel_state_machine import FunnelStateMachine
from app.services.checkout_service import CheckoutService
from app.services.payment_service import PaymentService

# Gateway / Cache
from app.services.spreedly_client import SpreedlyClient, DemoGatewayClient
from app.services.cache_service import CacheService

__all__ = [
    "CatalogResolver",
    "calculate_price",
    "FunnelStateMachine",
    "CheckoutService",
    "PaymentService",
    # Gateway / Cache
    "SpreedlyClient",
    "DemoGatewayClient",
    "CacheService",
]
