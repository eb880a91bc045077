"""
Spreedly Payment Gateway Client.

Handles all Spreedly API interactions used by checkout:
- Purchase / authorize against a gateway token
- Capture, refund (credit) and void of a transaction
- Payment method lookup, retain and redact
- Transaction and gateway lookups

Spreedly answers a declined charge with HTTP 422 and a transaction body whose
`succeeded` is false; that is returned as a normal result. Only network
failures and timeouts raise (GatewayTransportError).

API Docs: https://docs.spreedly.com/reference/api/v1/
"""
import httpx
import logging
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any
import uuid

from pydantic import BaseModel, Field

from app.config import settings
from app.core.exceptions import GatewayTransportError

logger = logging.getLogger(__name__)

DEMO_DECLINE_LAST_FOUR = ("0002", "9999")


class GatewayTransactionRequest(BaseModel):
    """Charge request. amount is in the currency's minor unit."""
    amount: int = Field(..., gt=0)
    currency_code: str
    payment_method_token: str
    order_id: str
    description: Optional[str] = None
    email: Optional[str] = None
    ip: Optional[str] = None
    retain_on_success: bool = True
    stored_credential_initiator: str = "cardholder"
    stored_credential_usage: str = "first"
    # Display metadata only, never sent to the gateway
    card_last_four: Optional[str] = Field(None, exclude=True)

    def to_payload(self) -> Dict[str, Any]:
        payload = self.model_dump(exclude_none=True)
        return {"transaction": payload}


class GatewayResult(BaseModel):
    """Normalized gateway response: success, parsed body, first error message."""
    success: bool
    data: Dict[str, Any] = {}
    error: Optional[str] = None

    @property
    def transaction(self) -> Optional[Dict[str, Any]]:
        return self.data.get("transaction")

    @property
    def succeeded(self) -> bool:
        return bool(self.transaction and self.transaction.get("succeeded"))

    @property
    def transaction_token(self) -> Optional[str]:
        return (self.transaction or {}).get("token")

    @property
    def message(self) -> Optional[str]:
        if self.transaction and self.transaction.get("message"):
            return self.transaction["message"]
        return self.error

    @property
    def response(self) -> Dict[str, Any]:
        return (self.transaction or {}).get("response") or {}


class PaymentGatewayClient(ABC):
    """Gateway capability set used by checkout."""

    # False for clients that can charge without a tenant Gateway row
    requires_gateway_token = True

    @abstractmethod
    async def purchase(self, gateway_token: Optional[str], request: GatewayTransactionRequest) -> GatewayResult:
        pass

    @abstractmethod
    async def authorize(self, gateway_token: Optional[str], request: GatewayTransactionRequest) -> GatewayResult:
        pass

    @abstractmethod
    async def capture(self, transaction_token: str, amount: Optional[int] = None) -> GatewayResult:
        pass

    @abstractmethod
    async def refund(self, transaction_token: str, amount: Optional[int] = None) -> GatewayResult:
        pass

    @abstractmethod
    async def void(self, transaction_token: str) -> GatewayResult:
        pass

    @abstractmethod
    async def get_payment_method(self, payment_method_token: str) -> GatewayResult:
        pass


class SpreedlyClient(PaymentGatewayClient):
    """Spreedly Core API client (basic auth with the environment key pair)."""

    def __init__(
        self,
        environment_key: Optional[str] = None,
        access_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.environment_key = environment_key if environment_key is not None else settings.SPREEDLY_ENVIRONMENT_KEY
        self.access_secret = access_secret if access_secret is not None else settings.SPREEDLY_ACCESS_SECRET
        self.base_url = (base_url or settings.SPREEDLY_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.GATEWAY_TIMEOUT_SECONDS
        self._transport = transport

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
    ) -> GatewayResult:
        """Make authenticated request to Spreedly API."""
        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        try:
            async with httpx.AsyncClient(
                auth=(self.environment_key, self.access_secret),
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method.upper(),
                    url,
                    json=data,
                    headers={"Accept": "application/json"},
                )
        except httpx.TimeoutException as e:
            logger.error(f"Spreedly timeout on {method} {endpoint}: {e}")
            raise GatewayTransportError("Payment gateway timed out, please try again")
        except httpx.TransportError as e:
            logger.error(f"Spreedly transport error on {method} {endpoint}: {e}")
            raise GatewayTransportError()

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {}

        if response.is_success:
            return GatewayResult(success=True, data=body)

        errors = body.get("errors") or []
        error = errors[0].get("message") if errors and isinstance(errors[0], dict) else None
        logger.warning(f"Spreedly API error: {response.status_code} on {method} {endpoint}")
        return GatewayResult(success=False, data=body, error=error or "Request failed")

    # ==================== TRANSACTIONS ====================

    async def purchase(self, gateway_token: Optional[str], request: GatewayTransactionRequest) -> GatewayResult:
        return await self._request("POST", f"/gateways/{gateway_token}/purchase.json", request.to_payload())

    async def authorize(self, gateway_token: Optional[str], request: GatewayTransactionRequest) -> GatewayResult:
        return await self._request("POST", f"/gateways/{gateway_token}/authorize.json", request.to_payload())

    async def capture(self, transaction_token: str, amount: Optional[int] = None) -> GatewayResult:
        data = {"transaction": {"amount": amount}} if amount is not None else None
        return await self._request("POST", f"/transactions/{transaction_token}/capture.json", data)

    async def refund(self, transaction_token: str, amount: Optional[int] = None) -> GatewayResult:
        data = {"transaction": {"amount": amount}} if amount is not None else None
        return await self._request("POST", f"/transactions/{transaction_token}/credit.json", data)

    async def void(self, transaction_token: str) -> GatewayResult:
        return await self._request("POST", f"/transactions/{transaction_token}/void.json")

    async def get_transaction(self, transaction_token: str) -> GatewayResult:
        return await self._request("GET", f"/transactions/{transaction_token}.json")

    # ==================== PAYMENT METHODS ====================

    async def get_payment_method(self, payment_method_token: str) -> GatewayResult:
        return await self._request("GET", f"/payment_methods/{payment_method_token}.json")

    async def retain_payment_method(self, payment_method_token: str) -> GatewayResult:
        return await self._request("PUT", f"/payment_methods/{payment_method_token}/retain.json")

    async def redact_payment_method(self, payment_method_token: str) -> GatewayResult:
        return await self._request("PUT", f"/payment_methods/{payment_method_token}/redact.json")

    # ==================== GATEWAYS ====================

    async def list_gateways(self) -> GatewayResult:
        return await self._request("GET", "/gateways.json")


class DemoGatewayClient(PaymentGatewayClient):
    """
    Simulated gateway for demos and local runs.

    Cards whose last four digits are 0002 or 9999 are declined; everything
    else is approved.
    """

    requires_gateway_token = False

    def _transaction(self, succeeded: bool, amount: Optional[int], message: str, error_code: str = None) -> GatewayResult:
        transaction = {
            "token": f"demo_{uuid.uuid4().hex[:16]}",
            "succeeded": succeeded,
            "amount": amount,
            "message": message,
            "response": {"error_code": error_code, "avs_code": "Y", "cvv_code": "M"},
        }
        return GatewayResult(success=succeeded, data={"transaction": transaction})

    async def _charge(self, request: GatewayTransactionRequest) -> GatewayResult:
        if request.card_last_four in DEMO_DECLINE_LAST_FOUR:
            logger.info(f"Demo gateway declined order {request.order_id}")
            return self._transaction(False, request.amount, "Card declined (demo)", "DEMO_DECLINE")
        return self._transaction(True, request.amount, "Succeeded!")

    async def purchase(self, gateway_token: Optional[str], request: GatewayTransactionRequest) -> GatewayResult:
        return await self._charge(request)

    async def authorize(self, gateway_token: Optional[str], request: GatewayTransactionRequest) -> GatewayResult:
        return await self._charge(request)

    async def capture(self, transaction_token: str, amount: Optional[int] = None) -> GatewayResult:
        return self._transaction(True, amount, "Succeeded!")

    async def refund(self, transaction_token: str, amount: Optional[int] = None) -> GatewayResult:
        return self._transaction(True, amount, "Succeeded!")

    async def void(self, transaction_token: str) -> GatewayResult:
        return self._transaction(True, None, "Succeeded!")

    async def get_payment_method(self, payment_method_token: str) -> GatewayResult:
        return GatewayResult(success=True, data={"payment_method": {"token": payment_method_token}})


# Singleton instance
_gateway_client: Optional[PaymentGatewayClient] = None


def get_gateway_client() -> PaymentGatewayClient:
    """Get the payment gateway client (demo client when DEMO_MODE is set)."""
    global _gateway_client
    if _gateway_client is None:
        if settings.DEMO_MODE:
            logger.info("Payment gateway: demo mode")
            _gateway_client = DemoGatewayClient()
        else:
            _gateway_client = SpreedlyClient()
    return _gateway_client
