"""PayPal Orders v2 client.

Covers the three calls the checkout needs:
1. OAuth2 client-credentials token (cached until shortly before expiry)
2. Create an order with intent CAPTURE
3. Capture an approved order

Token fetches and order lookups are idempotent and retried on transport
errors. Create and capture are sent once, each with a ``PayPal-Request-Id``
so PayPal itself de-duplicates a replay.
"""

import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Optional

import httpx
from fastapi import Depends
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import Settings, get_settings
from ..errors import GatewayError
from ..logging_config import get_logger

logger = get_logger("flexhunt.gateway")

SANDBOX_BASE_URL = "https://api-m.sandbox.paypal.com"
LIVE_BASE_URL = "https://api-m.paypal.com"

CURRENCY = "USD"
ORDER_ALREADY_CAPTURED = "ORDER_ALREADY_CAPTURED"

# Refresh the token this many seconds before PayPal says it expires
TOKEN_EXPIRY_MARGIN_SECONDS = 60

_retry_idempotent = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    retry=retry_if_exception_type(httpx.TransportError),
    reraise=True,
)


@dataclass
class GatewayOrder:
    """A PayPal checkout order."""

    id: str
    status: str  # CREATED, APPROVED, COMPLETED, ...


@dataclass
class GatewayCapture:
    """Outcome of a capture call."""

    order_id: str
    status: str
    capture_id: Optional[str] = None


def format_amount(amount: Decimal) -> str:
    """PayPal wants USD values as strings with exactly two decimals."""
    return str(Decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _extract_capture_id(order: dict) -> Optional[str]:
    try:
        return order["purchase_units"][0]["payments"]["captures"][0]["id"]
    except (KeyError, IndexError, TypeError):
        return None


def _error_issue(body: dict) -> Optional[str]:
    details = body.get("details") or []
    if details and isinstance(details[0], dict):
        return details[0].get("issue")
    return None


def _json_body(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _parse(response: httpx.Response, action: str) -> dict:
    """Return the JSON body of a 2xx response or raise GatewayError."""
    body = _json_body(response)
    if response.is_error:
        name = body.get("name") or response.reason_phrase
        logger.warning(
            f"PayPal {action} failed | status={response.status_code} | "
            f"name={name} | debug_id={body.get('debug_id')}"
        )
        raise GatewayError(
            f"PayPal {action} failed: {name}",
            httpStatus=response.status_code,
            debugId=body.get("debug_id"),
            issue=_error_issue(body),
        )
    if not body:
        raise GatewayError(f"PayPal {action} returned an empty or invalid body")
    return body


class PayPalClient:
    """Async PayPal REST client bound to one set of API credentials."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        environment: str = "sandbox",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.environment = environment
        self.base_url = LIVE_BASE_URL if environment == "live" else SANDBOX_BASE_URL
        self._http = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)
        self._token: str | None = None
        self._token_expires_at = 0.0

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    @_retry_idempotent
    async def _fetch_token(self) -> httpx.Response:
        return await self._http.post(
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.client_id, self.client_secret),
            headers={"Accept": "application/json"},
        )

    async def get_access_token(self) -> str:
        """Return a valid OAuth2 access token, fetching a new one if needed."""
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        if not self.client_id or not self.client_secret:
            raise GatewayError("PayPal credentials are not configured")

        try:
            response = await self._fetch_token()
        except httpx.HTTPError as e:
            raise GatewayError(f"Could not reach PayPal: {e}") from e

        body = _parse(response, "authentication")
        token = body.get("access_token")
        if not token:
            raise GatewayError("PayPal authentication returned no access token")

        expires_in = int(body.get("expires_in") or 0)
        self._token = token
        self._token_expires_at = time.monotonic() + max(0, expires_in - TOKEN_EXPIRY_MARGIN_SECONDS)
        return token

    async def _send(self, method: str, path: str, headers: dict | None = None, **kwargs) -> httpx.Response:
        token = await self.get_access_token()
        all_headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        all_headers.update(headers or {})
        return await self._http.request(method, path, headers=all_headers, **kwargs)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def create_order(
        self,
        amount: Decimal,
        description: str,
        custom_id: str,
        brand_name: str | None = None,
        return_url: str | None = None,
        cancel_url: str | None = None,
    ) -> GatewayOrder:
        """Create a CAPTURE-intent order for a single USD purchase unit."""
        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "amount": {"currency_code": CURRENCY, "value": format_amount(amount)},
                    "description": description,
                    "custom_id": custom_id,
                }
            ],
        }
        application_context = {"landing_page": "NO_PREFERENCE", "user_action": "PAY_NOW"}
        if brand_name:
            application_context["brand_name"] = brand_name
        if return_url:
            application_context["return_url"] = return_url
        if cancel_url:
            application_context["cancel_url"] = cancel_url
        body["application_context"] = application_context

        try:
            response = await self._send(
                "POST",
                "/v2/checkout/orders",
                json=body,
                headers={
                    "Prefer": "return=representation",
                    "PayPal-Request-Id": f"create-{custom_id}",
                },
            )
        except httpx.HTTPError as e:
            raise GatewayError(f"Could not reach PayPal: {e}") from e

        data = _parse(response, "create order")
        order_id = data.get("id")
        if not order_id:
            raise GatewayError("Invalid PayPal order response")

        logger.info(f"PayPal order created | id={order_id} | status={data.get('status')}")
        return GatewayOrder(id=order_id, status=data.get("status") or "CREATED")

    @_retry_idempotent
    async def _fetch_order(self, order_id: str) -> httpx.Response:
        return await self._send("GET", f"/v2/checkout/orders/{order_id}")

    async def get_order(self, order_id: str) -> dict:
        """Fetch the full order representation."""
        try:
            response = await self._fetch_order(order_id)
        except httpx.HTTPError as e:
            raise GatewayError(f"Could not reach PayPal: {e}") from e
        return _parse(response, "get order")

    async def capture_order(self, order_id: str) -> GatewayCapture:
        """Capture an approved order.

        An order PayPal reports as already captured is looked up and
        returned as COMPLETED with its existing capture id.
        """
        try:
            response = await self._send(
                "POST",
                f"/v2/checkout/orders/{order_id}/capture",
                json={},
                headers={
                    "Prefer": "return=representation",
                    "PayPal-Request-Id": f"capture-{order_id}",
                },
            )
        except httpx.HTTPError as e:
            raise GatewayError(f"Could not reach PayPal: {e}") from e

        if response.status_code == 422 and _error_issue(_json_body(response)) == ORDER_ALREADY_CAPTURED:
            logger.info(f"PayPal order already captured | id={order_id}")
            order = await self.get_order(order_id)
            return GatewayCapture(
                order_id=order_id,
                status=order.get("status") or "COMPLETED",
                capture_id=_extract_capture_id(order),
            )

        data = _parse(response, "capture order")
        status = data.get("status")
        if not status:
            raise GatewayError("Invalid PayPal capture response")

        logger.info(f"PayPal capture | order={order_id} | status={status}")
        return GatewayCapture(order_id=order_id, status=status, capture_id=_extract_capture_id(data))


# =============================================================================
# Dependency
# =============================================================================

_paypal_client: PayPalClient | None = None


def get_paypal_client(settings: Settings | None = None) -> PayPalClient:
    """Get cached PayPal client."""
    global _paypal_client
    if _paypal_client is None:
        if settings is None:
            settings = get_settings()
        _paypal_client = PayPalClient(
            client_id=settings.paypal_client_id,
            client_secret=settings.paypal_client_secret,
            environment=settings.paypal_environment,
            timeout=settings.paypal_timeout_seconds,
        )
        logger.info(f"PayPal client initialized | environment={settings.paypal_environment}")
    return _paypal_client


async def close_paypal_client() -> None:
    global _paypal_client
    if _paypal_client is not None:
        await _paypal_client.aclose()
        _paypal_client = None


def get_gateway(settings: Annotated[Settings, Depends(get_settings)]) -> PayPalClient:
    """FastAPI dependency for the payment gateway."""
    return get_paypal_client(settings)


# Type alias for dependency injection
Gateway = Annotated[PayPalClient, Depends(get_gateway)]
