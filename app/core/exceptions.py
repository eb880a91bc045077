"""
Checkout exceptions.

Services raise these; the application exception handler in app.main turns
them into JSON responses with the carried status code. A gateway decline is
not an exception, it is a normal payment outcome.
"""
from typing import Dict, Optional


class CheckoutError(Exception):
    """Base exception for checkout errors."""
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict] = None, status_code: Optional[int] = None):
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class CheckoutValidationError(CheckoutError):
    """Malformed or missing request data."""
    status_code = 400


# ==================== Catalog ====================

class CatalogNotFoundError(CheckoutError):
    status_code = 404


class CampaignNotFound(CatalogNotFoundError):
    def __init__(self, campaign_display_id: int):
        super().__init__(
            f"Campaign with ID {campaign_display_id} not found",
            {"campaign_id": campaign_display_id},
        )


class CampaignInactive(CatalogNotFoundError):
    def __init__(self, campaign_display_id: int):
        super().__init__(
            f"Campaign {campaign_display_id} is not active",
            {"campaign_id": campaign_display_id},
        )


class OfferNotFound(CatalogNotFoundError):
    def __init__(self, offer_display_id: int, campaign_display_id: int):
        super().__init__(
            f"Product with ID {offer_display_id} not found in campaign {campaign_display_id}",
            {"campaign_id": campaign_display_id, "product_id": offer_display_id},
        )


class OfferInactive(CatalogNotFoundError):
    def __init__(self, offer_display_id: int, campaign_display_id: int):
        super().__init__(
            f"Product {offer_display_id} in campaign {campaign_display_id} is not active",
            {"campaign_id": campaign_display_id, "product_id": offer_display_id},
        )


# ==================== Funnel ====================

class CustomerNotFoundError(CheckoutError):
    status_code = 404

    def __init__(self, customer_id=None):
        super().__init__("Customer not found", {"customer_id": str(customer_id)} if customer_id else None)


class CheckoutStateError(CheckoutError):
    """Request is valid but the customer is not in a state that allows it."""
    status_code = 400


class CustomerAlreadyConvertedError(CheckoutStateError):
    def __init__(self):
        super().__init__("This customer has already completed a purchase")


class InvalidFunnelTransition(CheckoutStateError):
    pass


class RetryNotAllowedError(CheckoutStateError):
    pass


# ==================== Gateway ====================

class GatewayNotConfiguredError(CheckoutError):
    status_code = 503

    def __init__(self):
        super().__init__("No payment gateway configured")


class GatewayTransportError(CheckoutError):
    """Gateway could not be reached or timed out. No charge outcome is known."""
    status_code = 502

    def __init__(self, message: str = "Payment gateway unavailable, please try again"):
        super().__init__(message)
